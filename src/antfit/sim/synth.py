from __future__ import annotations
import math
import numpy as np
from typing import Dict, List, Optional, Sequence, Tuple

from ..config.setups import MCTaggerCfg, Setup
from ..physics.candidates import Candidate, Detector, TaggerHit
from ..physics.events import Event, Trigger
from ..physics.kinematics import (
    boost, boost_vector, in_cb, in_taps, inv_mass, kinetic_energy, photon_beam,
    target_proton, theta_phi, theta_seen_from_origin, TAPS_THETA_DEG,
)
from ..physics.particles import Particle, PHOTON, PROTON
from ..physics.topology import Node, get_channel
from ..physics.uncertainties import MCSmear, UncertaintyModel

TAGGER_CHANNEL_WIDTH_MEV = 4.2


def two_body(parent: np.ndarray, m1: float, m2: float, rng: np.random.Generator) -> Tuple[np.ndarray, np.ndarray]:
    """Isotropic two-body decay of `parent` in its rest frame, boosted back."""
    M = inv_mass(parent)
    if M < m1 + m2:
        raise ValueError(f"Decay below threshold: M={M:.1f} < {m1 + m2:.1f}")
    p = math.sqrt((M * M - (m1 + m2) ** 2) * (M * M - (m1 - m2) ** 2)) / (2.0 * M)
    u = rng.normal(size=3)
    u /= np.linalg.norm(u)
    d1 = np.concatenate(([math.sqrt(p * p + m1 * m1)], p * u))
    d2 = np.concatenate(([math.sqrt(p * p + m2 * m2)], -p * u))
    beta = boost_vector(parent)
    return boost(d1, beta), boost(d2, beta)


def n_body(parent: np.ndarray, masses: Sequence[float], rng: np.random.Generator) -> List[np.ndarray]:
    """
    Sequential two-body splitting; the invariant mass of the remaining
    subsystem is drawn uniformly in its kinematic range.
    """
    out: List[np.ndarray] = []
    rest = parent
    for i, m in enumerate(masses[:-2]):
        lo = sum(masses[i + 1:])
        hi = inv_mass(rest) - m
        m_rest = rng.uniform(lo, hi)
        lv, rest = two_body(rest, m, m_rest, rng)
        out.append(lv)
    out.extend(two_body(rest, masses[-2], masses[-1], rng))
    return out


def decay_tree(node: Node, lv: np.ndarray, rng: np.random.Generator) -> List[Tuple[Node, np.ndarray]]:
    """Decay `lv` along `node`; returns (leaf node, four-momentum) pairs."""
    if node.is_leaf:
        return [(node, lv)]
    lvs = n_body(lv, [c.ptype.mass for c in node.children], rng)
    out: List[Tuple[Node, np.ndarray]] = []
    for child, child_lv in zip(node.children, lvs):
        out.extend(decay_tree(child, child_lv, rng))
    return out


def _detect(leaf: Node, lv: np.ndarray, z_vertex: float, rng: np.random.Generator) -> Optional[Candidate]:
    """Candidate seen from the target centre, or None outside CB/TAPS acceptance."""
    theta_true, phi = theta_phi(lv)
    taps = math.degrees(theta_true) <= TAPS_THETA_DEG[1]
    theta = theta_seen_from_origin(theta_true, z_vertex, taps)
    if not (in_cb(theta) or in_taps(theta)):
        return None
    taps = in_taps(theta)
    charged = leaf.ptype.charged
    ek = kinetic_energy(lv)
    if taps:
        det = Detector.TAPS | (Detector.VETO if charged else Detector.NONE)
        time = rng.normal(0.0, 0.5)
        short_e = 0.8 * ek
    else:
        det = Detector.CB | (Detector.PID if charged else Detector.NONE)
        time = rng.normal(0.0, 1.0)
        short_e = math.nan
    return Candidate(
        calo_energy=ek,
        theta=theta,
        phi=phi,
        time=time,
        veto_energy=rng.uniform(1.0, 4.0) if charged else 0.0,
        detector=det,
        cluster_size=int(rng.integers(1, 10)),
        short_energy=short_e,
    )


def _smear_candidate(c: Candidate, ptype, smear: MCSmear) -> Candidate:
    p = smear(Particle.from_candidate(ptype, c))
    return Candidate(
        calo_energy=p.ek, theta=p.theta, phi=p.phi, time=c.time, veto_energy=c.veto_energy,
        detector=c.detector, cluster_size=c.cluster_size, short_energy=c.short_energy,
    )


def tagger_channel(photon_energy: float, setup: Setup) -> int:
    return int(max(0.0, setup.electron_beam_energy - photon_energy) // TAGGER_CHANNEL_WIDTH_MEV)


def mc_tagger_hits(
    beam_energy: float,
    setup: Setup,
    rng: np.random.Generator,
    energy_range: Tuple[float, float],
    cfg: Optional[MCTaggerCfg] = None,
) -> List[TaggerHit]:
    """
    One prompt hit carrying the true beam energy, plus Poisson-distributed
    random hits spread uniformly over the tagger time window.
    """
    cfg = cfg or setup.mc_tagger
    t0, t1 = cfg.time_window
    hits = [TaggerHit(tagger_channel(beam_energy, setup), beam_energy,
                      rng.normal(cfg.prompt_offset, cfg.prompt_sigma))]
    n_random = rng.poisson(cfg.random_prompt_ratio * (t1 - t0))
    for _ in range(n_random):
        e = rng.uniform(*energy_range)
        hits.append(TaggerHit(tagger_channel(e, setup), e, rng.uniform(t0, t1)))
    return hits


def synth_event(
    channel: str,
    beam_energy: float,
    z_vertex: float,
    rng: np.random.Generator,
    setup: Setup,
    smear_model: Optional[UncertaintyModel] = None,
    tagger: bool = True,
    energy_range: Tuple[float, float] = (1450.0, 1600.0),
    mc_tagger: Optional[MCTaggerCfg] = None,
) -> Event:
    """
    Generate one gamma p -> ... event along the channel's topology and turn
    the accepted final-state particles into reconstructed candidates.
    """
    root = get_channel(channel)
    initial = photon_beam(beam_energy) + target_proton()
    leaves = decay_tree(root, initial, rng)
    smear = MCSmear(smear_model, rng) if smear_model is not None else None

    cands: List[Candidate] = []
    for leaf, lv in leaves:
        c = _detect(leaf, lv, z_vertex, rng)
        if c is None:
            continue
        if smear is not None:
            c = _smear_candidate(c, PROTON if leaf.ptype.charged else PHOTON, smear)
        cands.append(c)

    cb = [c for c in cands if c.in_cb]
    e_cb = sum(c.calo_energy for c in cb)
    cb_time = sum(c.calo_energy * c.time for c in cb) / e_cb if e_cb > 0 else math.nan
    hits = (mc_tagger_hits(beam_energy, setup, rng, energy_range, mc_tagger) if tagger
            else [TaggerHit(tagger_channel(beam_energy, setup), beam_energy, 0.0)])
    return Event(
        candidates=cands,
        tagger_hits=hits,
        trigger=Trigger(cb_energy_sum=e_cb, cb_timing=cb_time),
        pid_energy_sum=sum(c.veto_energy for c in cb),
        is_mc=True,
        true_z_vertex=z_vertex,
        mc_channel=channel,
        meta={"true_beam_energy": beam_energy},
    )


def synth_events(
    n_events: int,
    channels: Dict[str, float],
    setup: Setup,
    beam_energy_range: Tuple[float, float],
    z_vertex_range: Tuple[float, float],
    smear_model: Optional[UncertaintyModel] = None,
    tagger: bool = True,
    rng: np.random.Generator | None = None,
) -> List[Event]:
    """Mix of channels drawn with the given relative weights."""
    rng = rng or np.random.default_rng()
    names = list(channels)
    w = np.array([channels[n] for n in names], dtype=float)
    if w.sum() <= 0:
        raise ValueError("channel weights sum to zero")
    w /= w.sum()
    events: List[Event] = []
    for _ in range(n_events):
        ch = names[rng.choice(len(names), p=w)]
        events.append(synth_event(
            ch,
            rng.uniform(*beam_energy_range),
            rng.uniform(*z_vertex_range),
            rng,
            setup,
            smear_model=smear_model,
            tagger=tagger,
            energy_range=tuple(beam_energy_range),
        ))
    return events
