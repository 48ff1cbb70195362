"""
antfit.io.adapters

Readers that turn reconstructed-event sources into physics-layer events
(antfit.physics.events.Event) for the analyses.

Design goals
------------
- Keep I/O concerns isolated from physics/fitting.
- Normalize units on ingest: energies MeV, angles rad, times ns.
- Stream (iterate) large files without loading everything into RAM.
- Remain side-effect free: yield Python objects; output is handled downstream.

Entry points
------------
- class HDF5Adapter: reads the ragged event store (antfit.io.event_store).
- class TableAdapter: reads flat candidate tables (CSV/Parquet), one row per
  candidate or tagger hit, grouped by an event id column.
- function make_adapter(cfg): factory from the [io.adapter] TOML section.

Config (example)
----------------
[io.adapter]
kind = "table"               # "hdf5" | "table"
angles_in_degrees = true     # table only
"""
from __future__ import annotations
from pathlib import Path
from typing import Dict, Iterator, Optional
import math

import pandas as pd

from ..physics.candidates import Candidate, Detector, TaggerHit
from ..physics.events import Event, Trigger
from ..config.errors import ConfigurationError
from .event_store import count_events, read_events

# ---------------------------------------------------------------------------
# Base adapter API
# ---------------------------------------------------------------------------

class BaseAdapter:
    """
    Abstract adapter interface.

    Yields physics-layer events in MeV/rad/ns.
    """

    def iter_events(self, path: str) -> Iterator[Event]:
        raise NotImplementedError

    def count(self, path: str) -> Optional[int]:
        """Number of events if cheaply known (used for progress bars)."""
        return None


# ---------------------------------------------------------------------------
# HDF5 (ragged event store)
# ---------------------------------------------------------------------------

class HDF5Adapter(BaseAdapter):

    def __init__(self, group: str = "/events", chunk: int = 10_000) -> None:
        self.group = group
        self.chunk = int(chunk)

    def iter_events(self, path: str) -> Iterator[Event]:
        yield from read_events(path, group=self.group, chunk=self.chunk)

    def count(self, path: str) -> Optional[int]:
        return count_events(path, group=self.group)


# ---------------------------------------------------------------------------
# Flat tables
# ---------------------------------------------------------------------------

class TableAdapter(BaseAdapter):
    """
    Read flat tables exported from other reconstruction chains.

    Supported inputs: CSV (.csv), Parquet (.parquet/.pq).

    One row per object; the 'kind' column says what the row is:
      - "cand":   calo_energy, theta, phi, time, veto_energy, detector
                  [, cluster_size, short_energy]
      - "tagger": channel, photon_energy, time
      - "event":  cb_energy_sum, cb_timing [, pid_energy_sum, is_mc,
                  true_z_vertex, mc_channel]
    All rows carry 'event_id'. detector is either the integer bitmask or a
    "|"-separated list of names ("CB|PID").
    """

    def __init__(self, angles_in_degrees: bool = False) -> None:
        self.angle_scale = math.pi / 180.0 if angles_in_degrees else 1.0

    def _read_table(self, path: str) -> pd.DataFrame:
        p = Path(path)
        suffix = p.suffix.lower()
        if suffix == ".csv":
            df = pd.read_csv(p)
        elif suffix in {".parquet", ".pq"}:
            df = pd.read_parquet(p)
        else:
            raise ValueError(f"Unrecognized TableAdapter input: {p.name} (expected .csv or .parquet)")
        missing = {"event_id", "kind"} - set(df.columns)
        if missing:
            raise ValueError(f"{p.name}: missing required columns {sorted(missing)}")
        return df

    @staticmethod
    def _detector(value) -> Detector:
        # mixed columns come back from CSV as strings, bitmasks included
        if isinstance(value, str) and not value.strip().isdigit():
            det = Detector.NONE
            for name in value.split("|"):
                name = name.strip().upper()
                if name:
                    det |= Detector[name]
            return det
        return Detector(int(value))

    @staticmethod
    def _get(row: pd.Series, key: str, default: float) -> float:
        v = row.get(key, default)
        return default if pd.isna(v) else v

    def _event(self, event_id, rows: pd.DataFrame) -> Event:
        cands = []
        hits = []
        trig = Trigger()
        ev_kw: Dict[str, object] = {}
        for _, r in rows.iterrows():
            kind = r["kind"]
            if kind == "cand":
                cands.append(Candidate(
                    calo_energy=float(r["calo_energy"]),
                    theta=float(r["theta"]) * self.angle_scale,
                    phi=float(r["phi"]) * self.angle_scale,
                    time=float(self._get(r, "time", 0.0)),
                    veto_energy=float(self._get(r, "veto_energy", 0.0)),
                    detector=self._detector(r["detector"]),
                    cluster_size=int(self._get(r, "cluster_size", 1)),
                    short_energy=float(self._get(r, "short_energy", math.nan)),
                ))
            elif kind == "tagger":
                hits.append(TaggerHit(int(r["channel"]), float(r["photon_energy"]), float(r["time"])))
            elif kind == "event":
                trig = Trigger(float(r["cb_energy_sum"]), float(self._get(r, "cb_timing", math.nan)))
                ev_kw["pid_energy_sum"] = float(self._get(r, "pid_energy_sum", 0.0))
                ev_kw["is_mc"] = bool(self._get(r, "is_mc", False))
                ev_kw["true_z_vertex"] = float(self._get(r, "true_z_vertex", math.nan))
                ch = self._get(r, "mc_channel", None)
                ev_kw["mc_channel"] = str(ch) if ch else None
            else:
                raise ValueError(f"event {event_id}: unknown row kind {kind!r}")
        return Event(candidates=cands, tagger_hits=hits, trigger=trig, meta={"event_id": event_id}, **ev_kw)

    def iter_events(self, path: str) -> Iterator[Event]:
        df = self._read_table(path)
        for event_id, rows in df.groupby("event_id", sort=False):
            yield self._event(event_id, rows)

    def count(self, path: str) -> Optional[int]:
        return int(self._read_table(path)["event_id"].nunique())


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def make_adapter(cfg: Dict) -> BaseAdapter:
    """
    Create an adapter from a config dict (from TOML/CLI).

    Expected keys under [io.adapter]:
      kind: "hdf5" | "table"
      group: str                       (hdf5-only, default "/events")
      chunk: int                       (hdf5-only)
      angles_in_degrees: bool          (table-only)
    """
    kind = (cfg.get("kind") or "hdf5").lower()

    if kind == "hdf5":
        return HDF5Adapter(group=cfg.get("group", "/events"), chunk=int(cfg.get("chunk", 10_000)))

    if kind == "table":
        return TableAdapter(angles_in_degrees=bool(cfg.get("angles_in_degrees", False)))

    raise ConfigurationError(f"Unknown adapter kind: {kind}")
