import math

import numpy as np
import pytest

from antfit.config.setups import get_setup
from antfit.physics.kinematics import M_P_MEV, in_cb, in_taps, inv_mass, photon_beam, target_proton
from antfit.physics.topology import get_channel
from antfit.physics.uncertainties import SergeyUncertainty
from antfit.sim.synth import decay_tree, mc_tagger_hits, synth_event, synth_events, tagger_channel, two_body


def test_two_body_conserves_four_momentum():
    rng = np.random.default_rng(0)
    parent = photon_beam(1500.0) + target_proton()
    a, b = two_body(parent, M_P_MEV, 957.78, rng)
    assert np.allclose(a + b, parent)
    assert inv_mass(a) == pytest.approx(M_P_MEV, abs=1e-6)
    with pytest.raises(ValueError):
        two_body(photon_beam(1000.0) + target_proton(), M_P_MEV, 957.78, rng)


def test_decay_tree_leaves():
    rng = np.random.default_rng(1)
    root = get_channel("EtaPrime_gOmega_ggPi0_4g")
    initial = photon_beam(1550.0) + target_proton()
    leaves = decay_tree(root, initial, rng)
    assert [leaf.ptype.name for leaf, _ in leaves] == ["proton", "photon", "photon", "photon", "photon"]
    assert np.allclose(sum(lv for _, lv in leaves), initial)


def test_synth_event_candidates_in_acceptance():
    setup = get_setup("EtapOmegaG")
    rng = np.random.default_rng(2)
    for _ in range(20):
        ev = synth_event("TwoPi0_4g", 1500.0, 1.0, rng, setup, smear_model=SergeyUncertainty())
        assert ev.is_mc and ev.mc_channel == "TwoPi0_4g"
        assert ev.true_z_vertex == 1.0
        assert len(ev.candidates) <= 5
        for c in ev.candidates:
            assert in_cb(c.theta) or in_taps(c.theta) or c.in_cb or c.in_taps
            assert c.calo_energy >= 0
        ev.validate()


def test_mc_tagger_hits():
    setup = get_setup("EtapOmegaG")
    rng = np.random.default_rng(3)
    hits = mc_tagger_hits(1500.0, setup, rng, (1450.0, 1600.0))
    assert hits[0].photon_energy == 1500.0
    assert hits[0].channel == tagger_channel(1500.0, setup)
    lo, hi = setup.mc_tagger.time_window
    assert all(lo <= h.time <= hi for h in hits[1:])
    # 0.22 random hits per ns over 240 ns
    n = np.mean([len(mc_tagger_hits(1500.0, setup, rng, (1450.0, 1600.0))) - 1 for _ in range(200)])
    assert n == pytest.approx(0.22 * 240, rel=0.1)


def test_synth_events_mix():
    setup = get_setup("EtapOmegaG")
    events = synth_events(
        10, {"EtaPrime_2g": 1.0, "Pi0_2g": 0.0}, setup, (1450.0, 1600.0), (-5.0, 5.0),
        tagger=False, rng=np.random.default_rng(4),
    )
    assert len(events) == 10
    assert all(ev.mc_channel == "EtaPrime_2g" for ev in events)
    assert all(len(ev.tagger_hits) == 1 and ev.tagger_hits[0].time == 0.0 for ev in events)
    assert all(-5.0 <= ev.true_z_vertex <= 5.0 for ev in events)
    assert all(1450.0 <= ev.meta["true_beam_energy"] <= 1600.0 for ev in events)
    with pytest.raises(ValueError):
        synth_events(1, {"Pi0_2g": 0.0}, setup, (1450.0, 1600.0), (0.0, 0.0))
    assert not math.isnan(events[0].tagger_hits[0].photon_energy)
