# src/antfit/physics/particles.py
from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Dict, Optional
import math

import numpy as np

from .candidates import Candidate
from .kinematics import (
    Interval,
    four_momentum,
    M_P_MEV, M_PI0_MEV, M_ETA_MEV, M_OMEGA_MEV, M_ETAP_MEV,
)


@dataclass(frozen=True)
class ParticleType:
    name: str
    mass: float
    final_state: bool = False   # may appear as a leaf (detected particle)
    charged: bool = False

    def window(self, width: float) -> Interval:
        """Interval of full width `width` centred on the nominal mass."""
        return Interval.center_width(self.mass, width)


PHOTON = ParticleType("photon", 0.0, final_state=True)
PROTON = ParticleType("proton", M_P_MEV, final_state=True, charged=True)
PI0 = ParticleType("pi0", M_PI0_MEV)
ETA = ParticleType("eta", M_ETA_MEV)
OMEGA = ParticleType("omega", M_OMEGA_MEV)
ETAPRIME = ParticleType("etaprime", M_ETAP_MEV)
# production vertex gamma + p; no fixed mass
BEAM_PROTON = ParticleType("beam_proton", math.nan)

PARTICLE_TYPES: Dict[str, ParticleType] = {
    t.name: t for t in (PHOTON, PROTON, PI0, ETA, OMEGA, ETAPRIME, BEAM_PROTON)
}


def get_type(name: str) -> ParticleType:
    ptype = PARTICLE_TYPES.get(name)
    if ptype is None:
        raise KeyError(f"Unknown particle type '{name}'. Known: {sorted(PARTICLE_TYPES)}")
    return ptype


@dataclass(frozen=True, slots=True, eq=False)
class Particle:
    """
    A candidate interpreted under a mass hypothesis.

    ek/theta/phi default to the candidate's values; smeared or fitted copies
    keep the back-reference to the same candidate.
    """
    type: ParticleType
    ek: float
    theta: float
    phi: float
    candidate: Optional[Candidate] = None

    @classmethod
    def from_candidate(cls, ptype: ParticleType, cand: Candidate) -> "Particle":
        return cls(ptype, cand.calo_energy, cand.theta, cand.phi, cand)

    def with_kinematics(self, ek: float, theta: float, phi: float) -> "Particle":
        return replace(self, ek=ek, theta=theta, phi=phi)

    @property
    def lv(self) -> np.ndarray:
        return four_momentum(self.ek, self.theta, self.phi, self.type.mass)
