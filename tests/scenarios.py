"""
Exact (unsmeared) event kinematics for the fitter and analysis tests.

two_pi0_event(): gamma p -> p X, X(600) -> pi0 pi0, pi0 -> gg at E_beam = 1200.
X is produced at 60 deg in the CM frame; every decay is emitted perpendicular
to the parent's flight direction, so all four photons carry ~259 MeV, one of
them goes into TAPS (~9 deg) and the proton has Ek ~163 MeV.

With theta_cm=20 the proton is soft (Ek ~35 MeV at ~35 deg) and the photons
carry ~291 MeV. Taking any photon as the proton then gives a photon
invariant mass below 550 MeV, so only the true combination passes
[550, inf) mass windows.
"""
from __future__ import annotations
import math
import numpy as np

from antfit.physics.candidates import Candidate, Detector, TaggerHit
from antfit.physics.events import Event, Trigger
from antfit.physics.kinematics import (
    M_P_MEV, M_PI0_MEV, boost, boost_vector, inv_mass, kinetic_energy,
    photon_beam, target_proton, theta_phi, theta_seen_from_origin,
)

Y_AXIS = np.array([0.0, 1.0, 0.0])


def cm_two_body(initial, m1, m2, theta_star, phi_star=0.0):
    beta = boost_vector(initial)
    M = inv_mass(initial)
    p = math.sqrt((M * M - (m1 + m2) ** 2) * (M * M - (m1 - m2) ** 2)) / (2.0 * M)
    u = np.array([math.sin(theta_star) * math.cos(phi_star),
                  math.sin(theta_star) * math.sin(phi_star),
                  math.cos(theta_star)])
    a = np.concatenate(([math.hypot(p, m1)], p * u))
    b = np.concatenate(([math.hypot(p, m2)], -p * u))
    return boost(a, beta), boost(b, beta)


def perp_decay(parent, m1, m2):
    """Two-body decay emitted perpendicular to the parent's flight direction."""
    M = inv_mass(parent)
    p = math.sqrt((M * M - (m1 + m2) ** 2) * (M * M - (m1 - m2) ** 2)) / (2.0 * M)
    perp = np.cross(parent[1:], Y_AXIS)
    perp /= np.linalg.norm(perp)
    a = np.concatenate(([math.hypot(p, m1)], p * perp))
    b = np.concatenate(([math.hypot(p, m2)], -p * perp))
    beta = boost_vector(parent)
    return boost(a, beta), boost(b, beta)


def candidate(lv, charged=False, z_vertex=0.0):
    theta_true, phi = theta_phi(lv)
    taps = math.degrees(theta_true) <= 20.0
    theta = theta_seen_from_origin(theta_true, z_vertex, taps)
    ek = kinetic_energy(lv) if charged else float(lv[0])
    if taps:
        det = Detector.TAPS | (Detector.VETO if charged else Detector.NONE)
    else:
        det = Detector.CB | (Detector.PID if charged else Detector.NONE)
    return Candidate(
        calo_energy=ek, theta=theta, phi=phi, time=0.0,
        veto_energy=2.0 if charged else 0.0, detector=det,
    )


def two_pi0_lvs(beam_energy=1200.0, m_x=600.0, theta_cm=60.0):
    initial = photon_beam(beam_energy) + target_proton()
    x, proton = cm_two_body(initial, m_x, M_P_MEV, math.radians(theta_cm))
    pi0_a, pi0_b = perp_decay(x, M_PI0_MEV, M_PI0_MEV)
    g = [*perp_decay(pi0_a, 0.0, 0.0), *perp_decay(pi0_b, 0.0, 0.0)]
    return proton, g


def two_pi0_event(beam_energy=1200.0, z_vertex=0.0, theta_cm=60.0):
    """
    Returns (beam_energy, proton candidate, [4 photon candidates], true pairs)
    where true pairs holds the candidates of each pi0 as frozensets.
    """
    proton_lv, g_lvs = two_pi0_lvs(beam_energy, theta_cm=theta_cm)
    proton = candidate(proton_lv, charged=True, z_vertex=z_vertex)
    photons = [candidate(lv, z_vertex=z_vertex) for lv in g_lvs]
    pairs = {frozenset(photons[:2]), frozenset(photons[2:])}
    return beam_energy, proton, photons, pairs


def as_event(proton, photons, beam_energy, tagger_time=0.0, is_mc=False):
    cands = [proton, *photons]
    e_cb = sum(c.calo_energy for c in cands if c.in_cb)
    return Event(
        candidates=cands,
        tagger_hits=[TaggerHit(10, beam_energy, tagger_time)],
        trigger=Trigger(cb_energy_sum=e_cb, cb_timing=0.0),
        is_mc=is_mc,
    )
