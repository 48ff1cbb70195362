import math

import pytest

from antfit.filters.combinations import CombinationSet, FilterDiagnostics, make_combinations
from antfit.fit.solver import FitStatus
from antfit.fit.treefit import TreeFitter
from antfit.physics.candidates import Candidate, Detector, TaggerHit
from antfit.physics.kinematics import Interval, M_P_MEV, inv_mass
from antfit.physics.topology import get_channel
from antfit.physics.uncertainties import SergeyUncertainty

from scenarios import two_pi0_event

ALL = Interval(-math.inf, math.inf)


def _cands(*energies):
    return [Candidate(e, 1.0 + 0.1 * i, 0.5 * i, detector=Detector.CB) for i, e in enumerate(energies)]


def test_one_combination_per_proton():
    cands = _cands(100.0, 300.0, 200.0)
    combs = make_combinations(cands)
    assert len(combs) == 3
    assert [c.proton.candidate for c in combs] == [cands[1], cands[2], cands[0]]
    for comb in combs:
        assert len(comb.photons) == 2
        assert comb.proton.candidate not in [g.candidate for g in comb.photons]
        eks = [g.ek for g in comb.photons]
        assert eks == sorted(eks, reverse=True)


def test_identical_candidates_are_distinct():
    a = Candidate(100.0, 1.0, 0.0)
    b = Candidate(100.0, 1.0, 0.0)
    combs = make_combinations([a, b])
    assert [g.candidate for g in combs[0].photons] == [b]
    assert [g.candidate for g in combs[1].photons] == [a]


def test_smear_applied_once_per_particle():
    calls = []

    def smear(p):
        calls.append(p)
        return p.with_kinematics(p.ek + 1.0, p.theta, p.phi)

    combs = make_combinations(_cands(100.0, 300.0, 200.0), smear)
    assert len(calls) == 6
    # photons shared between combinations carry the same smeared values
    assert combs[0].photons[0] is combs[2].photons[1]
    assert combs[0].photons[0].ek == 201.0


def test_filter_too_few_photons():
    diag = FilterDiagnostics()
    cs = CombinationSet(make_combinations(_cands(100.0, 200.0)), TaggerHit(0, 1500.0, 0.0))
    assert not cs.filter(2, 70.0, ALL, ALL, diag)
    assert len(cs) == 0
    assert diag.reasons == {"too few photons": 1}
    empty = CombinationSet([], TaggerHit(0, 1500.0, 0.0))
    assert not empty.filter(1, 70.0, ALL, ALL)


def test_filter_discarded_energy_and_truncation():
    diag = FilterDiagnostics()
    cs = CombinationSet(make_combinations(_cands(400.0, 300.0, 200.0, 60.0, 30.0)), TaggerHit(0, 1500.0, 0.0))
    assert cs.filter(3, 70.0, ALL, ALL, diag)
    # only the two softest candidates can be the proton without discarding > 70 MeV
    assert [c.proton.ek for c in cs] == [60.0, 30.0]
    assert all(len(c.photons) == 3 for c in cs)
    assert [c.discarded_ek for c in cs] == [30.0, 60.0]
    assert diag.seen == 1
    assert diag.seen_protons == 5
    assert diag.disc_ek_ok == 2


def test_copy_is_independent():
    cs = CombinationSet(make_combinations(_cands(400.0, 300.0, 50.0)), TaggerHit(0, 1500.0, 0.0))
    other = cs.copy()
    cs.filter(1, 0.0, ALL, ALL)
    assert len(cs) == 0
    assert len(other) == 3
    assert all(len(c.photons) == 2 for c in other)


def test_only_true_combination_survives():
    beam, proton, photons, _ = two_pi0_event(theta_cm=20.0)
    cs = CombinationSet(make_combinations([proton, *photons]), TaggerHit(0, beam, 0.0))
    above_550 = Interval(550.0, math.inf)
    assert cs.filter(4, 70.0, above_550, above_550)
    assert len(cs) == 1
    comb = cs.combs[0]
    assert comb.proton.candidate is proton
    assert comb.discarded_ek == 0.0
    assert comb.missing_mass == pytest.approx(M_P_MEV, abs=1e-3)
    assert inv_mass(comb.photon_sum) == pytest.approx(600.0, abs=1e-3)

    r = TreeFitter("2pi0", get_channel("TwoPi0_4g"), SergeyUncertainty()).fit(beam, comb.proton, comb.photons)
    assert r.status is FitStatus.Success
    assert r.probability > 0.01


def test_wider_windows_never_lose_combinations():
    events = [two_pi0_event(), two_pi0_event(theta_cm=20.0), two_pi0_event(theta_cm=120.0)]
    windows = [
        Interval(900.0, 1000.0),
        Interval(550.0, 1100.0),
        Interval(550.0, math.inf),
        Interval(0.0, math.inf),
        ALL,
    ]
    for beam, proton, photons, _ in events:
        base = CombinationSet(make_combinations([proton, *photons]), TaggerHit(0, beam, 0.0))
        for fixed in windows:
            mm_counts, im_counts = [], []
            for w in windows:
                cs = base.copy()
                cs.filter(4, 70.0, w, fixed)
                mm_counts.append(len(cs))
                cs = base.copy()
                cs.filter(4, 70.0, fixed, w)
                im_counts.append(len(cs))
            assert mm_counts == sorted(mm_counts)
            assert im_counts == sorted(im_counts)
        cs = base.copy()
        cs.filter(4, 70.0, ALL, ALL)
        assert len(cs) == 5
