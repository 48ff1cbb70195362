from dataclasses import replace

import numpy as np
import pytest

from antfit.fit.solver import FitStatus
from antfit.fit.treefit import TreeFitter
from antfit.physics.kinematics import M_PI0_MEV, inv_mass, photon_beam, target_proton
from antfit.physics.particles import Particle, PHOTON, PROTON
from antfit.physics.topology import get_channel
from antfit.physics.uncertainties import SergeyUncertainty

from scenarios import two_pi0_event


def _setup(**kw):
    beam, proton, photons, pairs = two_pi0_event()
    fitter = TreeFitter("2pi0", get_channel("TwoPi0_4g"), SergeyUncertainty(), **kw)
    fitter.set_beam_energy(beam)
    fitter.set_proton(Particle.from_candidate(PROTON, proton))
    fitter.set_photons([Particle.from_candidate(PHOTON, g) for g in photons])
    return fitter, photons, pairs


def _pairs(r, photons):
    a = r.assignment
    return {frozenset((photons[a[0]], photons[a[1]])), frozenset((photons[a[2]], photons[a[3]]))}


def test_best_permutation_pairs_true_pi0s():
    fitter, photons, pairs = _setup()
    r = fitter.do_fit()
    assert r.status is FitStatus.Success
    assert r.ndof == 5
    assert r.probability > 0.99
    assert _pairs(r, photons) == pairs
    assert inv_mass(r.nodes["pi0"]) == pytest.approx(M_PI0_MEV, abs=1e-2)
    assert inv_mass(r.nodes["pi0#1"]) == pytest.approx(M_PI0_MEV, abs=1e-2)


def test_every_unique_permutation_is_visited():
    fitter, photons, _ = _setup()
    results = list(fitter.fits())
    assert len(results) == 3
    assert len({r.assignment for r in results}) == 3
    assert fitter.next_fit() is None
    # reconfiguring restarts the permutation loop
    fitter.set_photons([Particle.from_candidate(PHOTON, g) for g in photons])
    assert fitter.next_fit() is not None


def test_predicate_filter():
    fitter, photons, pairs = _setup()
    fitter.set_iteration_filter(lambda m: all(abs(x - M_PI0_MEV) < 20 for x in m.of_type("pi0")))
    results = list(fitter.fits())
    assert len(results) == 1
    assert _pairs(results[0], photons) == pairs

    fitter.set_iteration_filter(lambda m: False)
    assert list(fitter.fits()) == []
    assert fitter.do_fit().status is FitStatus.NotConverged


def test_ranking_filter():
    fitter, photons, pairs = _setup()
    fitter.set_iteration_filter(
        lambda m: -sum(abs(x - M_PI0_MEV) for x in m.of_type("pi0")), max_fits=2
    )
    results = list(fitter.fits())
    assert len(results) == 2
    assert _pairs(results[0], photons) == pairs

    fitter.set_iteration_filter(lambda m: float("nan"), max_fits=2)
    assert list(fitter.fits()) == []
    with pytest.raises(ValueError):
        fitter.set_iteration_filter(lambda m: 0.0, max_fits=0)


def test_photon_count_mismatch():
    fitter, photons, _ = _setup()
    with pytest.raises(ValueError):
        fitter.set_photons([Particle.from_candidate(PHOTON, g) for g in photons[:3]])


def test_node_masses():
    fitter, photons, _ = _setup()
    m = fitter.node_masses((0, 1, 2, 3))
    assert set(m) == {"pi0", "pi0#1"}
    assert np.allclose(m.of_type("pi0"), [M_PI0_MEV, M_PI0_MEV], atol=1e-6)


def test_signal_tree_queries():
    model = SergeyUncertainty()
    signal = get_channel("EtaPrime_gOmega_ggPi0_4g")
    pi0 = TreeFitter("pi0", signal, model, excluded=("etaprime", "omega"))
    omega = TreeFitter("omega", signal, model, excluded=("etaprime",))
    assert pi0.constrained_nodes == ["pi0"]
    assert omega.constrained_nodes == ["omega", "pi0"]
    assert len(pi0.permutations) == 12
    assert pi0.photon_daughters("etaprime") == [0]
    assert pi0.photon_daughters("omega") == [1]
    assert pi0.photon_daughters("pi0") == [2, 3]
    assert omega.get_tree_nodes("pi0") == ["pi0"]
    assert omega.get_tree_nodes("eta") == []


def test_tree_fit_conserves_four_momentum():
    beam, proton, photons, _ = two_pi0_event()
    photons[1] = replace(photons[1], calo_energy=photons[1].calo_energy - 12.0)
    fitter = TreeFitter("2pi0", get_channel("TwoPi0_4g"), SergeyUncertainty())
    r = fitter.fit(beam, Particle.from_candidate(PROTON, proton), [Particle.from_candidate(PHOTON, g) for g in photons])
    assert r.status is FitStatus.Success
    assert r.chi2 > 0.01
    total = r.proton.lv + sum(g.lv for g in r.photons)
    assert np.allclose(total, photon_beam(r.beam_energy) + target_proton(), atol=1e-2)
    assert inv_mass(r.nodes["pi0"]) == pytest.approx(M_PI0_MEV, abs=1e-2)
    assert inv_mass(r.nodes["pi0#1"]) == pytest.approx(M_PI0_MEV, abs=1e-2)


def test_iteration_filter_runs_once_per_configuration():
    calls = []

    def keep_all(m):
        calls.append(m)
        return True

    beam, proton, photons, _ = two_pi0_event()
    fitter = TreeFitter("2pi0", get_channel("TwoPi0_4g"), SergeyUncertainty())
    fitter.set_iteration_filter(keep_all)
    fitter.set_beam_energy(beam)
    fitter.set_photons([Particle.from_candidate(PHOTON, g) for g in photons])
    fitter.set_proton(Particle.from_candidate(PROTON, proton))
    assert calls == []
    assert len(list(fitter.fits())) == 3
    assert len(calls) == 3
    fitter.set_photons([Particle.from_candidate(PHOTON, g) for g in photons])
    assert fitter.do_fit().status is FitStatus.Success
    assert len(calls) == 6
