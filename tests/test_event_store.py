import math

import numpy as np
import pandas as pd
import pytest

from antfit.config.errors import ConfigurationError
from antfit.config.setups import get_setup
from antfit.io.adapters import HDF5Adapter, TableAdapter, make_adapter
from antfit.io.event_store import count_events, read_events, write_events
from antfit.physics.candidates import Detector
from antfit.sim.synth import synth_events


def _events(n=7, seed=3):
    return synth_events(
        n, {"EtaPrime_2g": 1.0, "TwoPi0_4g": 1.0}, get_setup("EtapOmegaG"),
        (1450.0, 1600.0), (-5.0, 5.0), rng=np.random.default_rng(seed),
    )


def test_hdf5_roundtrip(tmp_path):
    events = _events()
    path = str(tmp_path / "events.h5")
    write_events(path, events)
    assert count_events(path) == len(events)

    back = list(read_events(path, chunk=3))
    assert len(back) == len(events)
    for j, (a, b) in enumerate(zip(events, back)):
        assert b.meta["event_index"] == j
        assert b.is_mc and b.mc_channel == a.mc_channel
        assert b.true_z_vertex == a.true_z_vertex
        assert b.trigger.cb_energy_sum == a.trigger.cb_energy_sum
        assert len(b.candidates) == len(a.candidates)
        for ca, cb in zip(a.candidates, b.candidates):
            assert (cb.calo_energy, cb.theta, cb.phi, cb.detector) == (ca.calo_energy, ca.theta, ca.phi, ca.detector)
        assert [(h.channel, h.photon_energy, h.time) for h in b.tagger_hits] == \
               [(h.channel, h.photon_energy, h.time) for h in a.tagger_hits]


def test_hdf5_adapter(tmp_path):
    events = _events(4)
    for ev in events[:2]:
        ev.is_mc = False
        ev.mc_channel = None
    path = str(tmp_path / "events.h5")
    write_events(path, events)
    adapter = make_adapter({"kind": "hdf5", "chunk": 2})
    assert isinstance(adapter, HDF5Adapter)
    assert adapter.count(path) == 4
    back = list(adapter.iter_events(path))
    assert [ev.mc_channel for ev in back[:2]] == [None, None]
    assert not back[0].is_mc


def test_table_adapter_csv(tmp_path):
    rows = [
        {"event_id": 1, "kind": "event", "cb_energy_sum": 800.0, "cb_timing": 0.5, "is_mc": 0},
        {"event_id": 1, "kind": "cand", "calo_energy": 300.0, "theta": 60.0, "phi": 10.0,
         "time": 0.1, "veto_energy": 0.0, "detector": "CB"},
        {"event_id": 1, "kind": "cand", "calo_energy": 120.0, "theta": 10.0, "phi": -170.0,
         "time": 0.2, "veto_energy": 3.0, "detector": "TAPS|VETO"},
        {"event_id": 1, "kind": "tagger", "channel": 12, "photon_energy": 1500.0, "time": -1.0},
        {"event_id": 2, "kind": "cand", "calo_energy": 200.0, "theta": 90.0, "phi": 0.0,
         "detector": int(Detector.CB | Detector.PID)},
        {"event_id": 2, "kind": "tagger", "channel": 3, "photon_energy": 1580.0, "time": 20.0},
    ]
    path = tmp_path / "events.csv"
    pd.DataFrame(rows).to_csv(path, index=False)

    adapter = make_adapter({"kind": "table", "angles_in_degrees": True})
    assert isinstance(adapter, TableAdapter)
    assert adapter.count(str(path)) == 2
    ev1, ev2 = list(adapter.iter_events(str(path)))

    assert ev1.meta["event_id"] == 1
    assert ev1.trigger.cb_energy_sum == 800.0
    assert ev1.mc_channel is None
    assert len(ev1.candidates) == 2
    assert ev1.candidates[0].theta == pytest.approx(math.radians(60.0))
    assert ev1.candidates[1].detector == Detector.TAPS | Detector.VETO
    assert ev1.has_taps()
    assert ev1.tagger_hits[0].channel == 12

    assert ev2.candidates[0].detector == Detector.CB | Detector.PID
    assert math.isnan(ev2.trigger.cb_timing)
    assert ev2.candidates[0].time == 0.0


def test_table_adapter_rejects_bad_input(tmp_path):
    path = tmp_path / "events.csv"
    pd.DataFrame([{"event_id": 1, "kind": "cluster"}]).to_csv(path, index=False)
    with pytest.raises(ValueError):
        list(TableAdapter().iter_events(str(path)))
    with pytest.raises(ValueError):
        list(TableAdapter().iter_events(str(tmp_path / "events.txt")))
    with pytest.raises(ConfigurationError):
        make_adapter({"kind": "root"})
