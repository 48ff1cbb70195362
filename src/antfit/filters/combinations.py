# src/antfit/filters/combinations.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence

import numpy as np

from ..physics.candidates import Candidate, TaggerHit
from ..physics.kinematics import Interval, inv_mass, target_proton
from ..physics.particles import Particle, PHOTON, PROTON

Smear = Callable[[Particle], Particle]


@dataclass
class FilterDiagnostics:
    """Cut-flow counters of CombinationSet.filter(), summed over calls."""
    seen: int = 0
    seen_protons: int = 0
    disc_ek_ok: int = 0
    mm_ok: int = 0
    im_ok: int = 0
    reasons: Dict[str, int] = field(default_factory=dict)

    def inc(self, reason: str) -> None:
        self.reasons[reason] = self.reasons.get(reason, 0) + 1

    def as_dict(self) -> Dict[str, int]:
        return {
            "Seen": self.seen,
            "Seen protons": self.seen_protons,
            "DiscEk ok": self.disc_ek_ok,
            "MM ok": self.mm_ok,
            "IM ok": self.im_ok,
            **self.reasons,
        }


@dataclass
class ProtonPhotonComb:
    """
    One proton hypothesis plus all other candidates as photons.

    photon_sum, discarded_ek and missing_mass are only meaningful after
    CombinationSet.filter() has run on the set holding this combination.
    """
    proton: Particle
    photons: List[Particle]
    photon_sum: np.ndarray = field(default_factory=lambda: np.zeros(4))
    discarded_ek: float = 0.0
    missing_mass: float = float("nan")

    def copy(self) -> "ProtonPhotonComb":
        return ProtonPhotonComb(
            self.proton, list(self.photons), self.photon_sum.copy(), self.discarded_ek, self.missing_mass
        )


def make_combinations(candidates: Sequence[Candidate], smear: Optional[Smear] = None) -> List[ProtonPhotonComb]:
    """
    Build one ProtonPhotonComb per candidate taken as the proton.

    Candidates are ordered by calorimeter energy (highest first, stable), and
    photon lists keep that order. Every candidate is interpreted once as a
    proton and once as a photon; `smear` is applied to each of these particles
    exactly once, so all combinations share the same smeared values.
    """
    ordered = sorted(candidates, key=lambda c: c.calo_energy, reverse=True)
    protons = [Particle.from_candidate(PROTON, c) for c in ordered]
    photons = [Particle.from_candidate(PHOTON, c) for c in ordered]
    if smear is not None:
        protons = [smear(p) for p in protons]
        photons = [smear(g) for g in photons]
    return [
        ProtonPhotonComb(p, [g for g in photons if g.candidate is not p.candidate])
        for p in protons
    ]


class CombinationSet:
    """
    The proton/photon combinations of one event under one beam photon.

    filter() narrows the set in place; use copy() to let several analyses
    narrow the same input independently.
    """

    def __init__(self, combs: Sequence[ProtonPhotonComb], tagger_hit: TaggerHit):
        self.combs: List[ProtonPhotonComb] = list(combs)
        self.tagger_hit = tagger_hit

    def copy(self) -> "CombinationSet":
        return CombinationSet([c.copy() for c in self.combs], self.tagger_hit)

    def __iter__(self) -> Iterator[ProtonPhotonComb]:
        return iter(self.combs)

    def __len__(self) -> int:
        return len(self.combs)

    def __bool__(self) -> bool:
        return bool(self.combs)

    def filter(
        self,
        n: int,
        max_discarded_ek: float,
        missing_mass_window: Interval,
        photon_sum_window: Interval,
        diag: Optional[FilterDiagnostics] = None,
    ) -> bool:
        """
        Keep combinations with >= n photons whose leading n photons pass the
        discarded-energy, missing-mass and photon invariant-mass cuts; survivors
        are truncated to exactly n photons. Returns False if nothing survives.
        """
        if diag is not None:
            diag.seen += 1
        # every combination carries the same number of photons
        if not self.combs or len(self.combs[0].photons) < n:
            self.combs = []
            if diag is not None:
                diag.inc("too few photons")
            return False

        initial = self.tagger_hit.photon_beam() + target_proton()
        kept: List[ProtonPhotonComb] = []
        for comb in self.combs:
            if diag is not None:
                diag.seen_protons += 1

            comb.photon_sum = np.zeros(4)
            for g in comb.photons[:n]:
                comb.photon_sum = comb.photon_sum + g.lv
            comb.discarded_ek = float(sum(g.ek for g in comb.photons[n:]))
            if comb.discarded_ek > max_discarded_ek:
                continue
            if diag is not None:
                diag.disc_ek_ok += 1

            comb.missing_mass = inv_mass(initial - comb.photon_sum)
            if not missing_mass_window.contains(comb.missing_mass):
                continue
            if diag is not None:
                diag.mm_ok += 1

            if not photon_sum_window.contains(inv_mass(comb.photon_sum)):
                continue
            if diag is not None:
                diag.im_ok += 1

            comb.photons = comb.photons[:n]
            kept.append(comb)

        self.combs = kept
        return bool(kept)
