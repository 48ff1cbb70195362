"""
Ragged (CSR) HDF5 store for reconstructed events.

Layout:

/events/evt/cb_energy_sum     (N,) f8
/events/evt/cb_timing         (N,) f8
/events/evt/pid_energy_sum    (N,) f8
/events/evt/is_mc             (N,) u1
/events/evt/true_z_vertex     (N,) f8
/events/evt/mc_channel        (N,) str ("" for data)

/events/cand/event_ptr        (N+1,) i8   candidates of event i: [ptr[i], ptr[i+1])
/events/cand/calo_energy, theta, phi, time, veto_energy, short_energy  (M,) f8
/events/cand/detector, cluster_size                                    (M,) i4

/events/tagger/event_ptr      (N+1,) i8
/events/tagger/channel        (K,) i4
/events/tagger/photon_energy, time  (K,) f8
"""
from __future__ import annotations
from typing import Dict, Iterator, List, Sequence, Tuple
import h5py
import numpy as np

from ..physics.candidates import Candidate, Detector, TaggerHit
from ..physics.events import Event, Trigger

FORMAT_VERSION = "1.0"

CAND_FLOAT_COLS = ("calo_energy", "theta", "phi", "time", "veto_energy", "short_energy")
CAND_INT_COLS = ("detector", "cluster_size")
TAGGER_COLS = ("channel", "photon_energy", "time")
EVENT_COLS = ("cb_energy_sum", "cb_timing", "pid_energy_sum", "is_mc", "true_z_vertex")


def _replace_or_create(grp: h5py.Group, name: str, data: np.ndarray, **kw) -> None:
    if name in grp:
        del grp[name]
    grp.create_dataset(name, data=data, **kw)


def _flatten_events(events: Sequence[Event]) -> Tuple[Dict[str, np.ndarray], Dict[str, np.ndarray], Dict[str, np.ndarray]]:
    """
    Convert events into event-level columns plus CSR candidate and tagger columns.
    """
    n = len(events)
    cand_ptr = np.zeros(n + 1, dtype=np.int64)
    tagg_ptr = np.zeros(n + 1, dtype=np.int64)
    for i, ev in enumerate(events):
        cand_ptr[i + 1] = cand_ptr[i] + len(ev.candidates)
        tagg_ptr[i + 1] = tagg_ptr[i] + len(ev.tagger_hits)

    cands = [c for ev in events for c in ev.candidates]
    hits = [h for ev in events for h in ev.tagger_hits]

    cand_cols: Dict[str, np.ndarray] = {"event_ptr": cand_ptr}
    for key in CAND_FLOAT_COLS:
        cand_cols[key] = np.array([getattr(c, key) for c in cands], dtype=np.float64)
    for key in CAND_INT_COLS:
        cand_cols[key] = np.array([int(getattr(c, key)) for c in cands], dtype=np.int32)

    tagg_cols: Dict[str, np.ndarray] = {
        "event_ptr": tagg_ptr,
        "channel": np.array([h.channel for h in hits], dtype=np.int32),
        "photon_energy": np.array([h.photon_energy for h in hits], dtype=np.float64),
        "time": np.array([h.time for h in hits], dtype=np.float64),
    }

    ev_cols: Dict[str, np.ndarray] = {
        "cb_energy_sum": np.array([ev.trigger.cb_energy_sum for ev in events], dtype=np.float64),
        "cb_timing": np.array([ev.trigger.cb_timing for ev in events], dtype=np.float64),
        "pid_energy_sum": np.array([ev.pid_energy_sum for ev in events], dtype=np.float64),
        "is_mc": np.array([ev.is_mc for ev in events], dtype=np.uint8),
        "true_z_vertex": np.array([ev.true_z_vertex for ev in events], dtype=np.float64),
        "mc_channel": np.array([ev.mc_channel or "" for ev in events], dtype=object),
    }
    return ev_cols, cand_cols, tagg_cols


def write_events(path: str, events: Sequence[Event], *, group: str = "/events") -> None:
    """Write events to a new file (overwrites)."""
    group = group.rstrip("/")
    ev_cols, cand_cols, tagg_cols = _flatten_events(events)
    with h5py.File(path, "w") as f:
        f.attrs["format_version"] = FORMAT_VERSION
        f.attrs["n_events"] = len(events)
        g_ev = f.require_group(f"{group}/evt")
        g_cand = f.require_group(f"{group}/cand")
        g_tagg = f.require_group(f"{group}/tagger")
        for key, arr in ev_cols.items():
            if key == "mc_channel":
                _replace_or_create(g_ev, key, arr, dtype=h5py.string_dtype())
            else:
                _replace_or_create(g_ev, key, arr, compression="gzip")
        for key, arr in cand_cols.items():
            _replace_or_create(g_cand, key, arr, compression="gzip")
        for key, arr in tagg_cols.items():
            _replace_or_create(g_tagg, key, arr, compression="gzip")


def count_events(path: str, *, group: str = "/events") -> int:
    with h5py.File(path, "r") as f:
        return int(f[f"{group.rstrip('/')}/cand/event_ptr"].shape[0] - 1)


def read_events(path: str, *, group: str = "/events", chunk: int = 10_000) -> Iterator[Event]:
    """
    Yield events lazily; columns are loaded `chunk` events at a time.
    """
    group = group.rstrip("/")
    with h5py.File(path, "r") as f:
        g_ev, g_cand, g_tagg = f[f"{group}/evt"], f[f"{group}/cand"], f[f"{group}/tagger"]
        cand_ptr = g_cand["event_ptr"][...]
        tagg_ptr = g_tagg["event_ptr"][...]
        n = cand_ptr.shape[0] - 1
        for start in range(0, n, chunk):
            stop = min(start + chunk, n)
            ev = {k: g_ev[k][start:stop] for k in EVENT_COLS}
            mc_channel = g_ev["mc_channel"].asstr()[start:stop]
            c0, c1 = int(cand_ptr[start]), int(cand_ptr[stop])
            t0, t1 = int(tagg_ptr[start]), int(tagg_ptr[stop])
            cc = {k: g_cand[k][c0:c1] for k in CAND_FLOAT_COLS + CAND_INT_COLS}
            tc = {k: g_tagg[k][t0:t1] for k in TAGGER_COLS}
            for i in range(stop - start):
                j = start + i
                cands: List[Candidate] = [
                    Candidate(
                        calo_energy=float(cc["calo_energy"][k]),
                        theta=float(cc["theta"][k]),
                        phi=float(cc["phi"][k]),
                        time=float(cc["time"][k]),
                        veto_energy=float(cc["veto_energy"][k]),
                        detector=Detector(int(cc["detector"][k])),
                        cluster_size=int(cc["cluster_size"][k]),
                        short_energy=float(cc["short_energy"][k]),
                    )
                    for k in range(int(cand_ptr[j]) - c0, int(cand_ptr[j + 1]) - c0)
                ]
                hits = [
                    TaggerHit(int(tc["channel"][k]), float(tc["photon_energy"][k]), float(tc["time"][k]))
                    for k in range(int(tagg_ptr[j]) - t0, int(tagg_ptr[j + 1]) - t0)
                ]
                yield Event(
                    candidates=cands,
                    tagger_hits=hits,
                    trigger=Trigger(float(ev["cb_energy_sum"][i]), float(ev["cb_timing"][i])),
                    pid_energy_sum=float(ev["pid_energy_sum"][i]),
                    is_mc=bool(ev["is_mc"][i]),
                    true_z_vertex=float(ev["true_z_vertex"][i]),
                    mc_channel=mc_channel[i] or None,
                    meta={"event_index": j},
                )
