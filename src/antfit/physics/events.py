# src/antfit/physics/events.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import math

from .candidates import Candidate, TaggerHit


@dataclass(slots=True)
class Trigger:
    cb_energy_sum: float = 0.0     # [MeV]
    cb_timing: float = math.nan    # energy-weighted CB average time [ns]


@dataclass(slots=True)
class Event:
    """
    One reconstructed event.

    Candidates can arrive in any order; use .sorted_candidates() to get them
    ordered by calorimeter energy (highest first) and .validate() to reject
    malformed input before it reaches the fitters.
    """
    candidates: List[Candidate]
    tagger_hits: List[TaggerHit]
    trigger: Trigger = field(default_factory=Trigger)
    pid_energy_sum: float = 0.0
    is_mc: bool = False
    true_z_vertex: float = math.nan
    mc_channel: Optional[str] = None   # true decay channel for MC, None for data
    meta: Dict[str, Any] = field(default_factory=dict)

    def sorted_candidates(self) -> List[Candidate]:
        return sorted(self.candidates, key=lambda c: c.calo_energy, reverse=True)

    def has_taps(self) -> bool:
        return any(c.in_taps for c in self.candidates)

    def validate(self) -> None:
        """
        Raise ValueError if a candidate or tagger hit carries non-finite numbers.
        """
        for i, c in enumerate(self.candidates):
            if not (math.isfinite(c.calo_energy) and math.isfinite(c.theta) and math.isfinite(c.phi)):
                raise ValueError(
                    f"Event candidate {i} not finite: "
                    f"E={c.calo_energy}, theta={c.theta}, phi={c.phi}"
                )
            if c.calo_energy < 0:
                raise ValueError(f"Event candidate {i} has negative energy {c.calo_energy}")
        for i, th in enumerate(self.tagger_hits):
            if not (math.isfinite(th.photon_energy) and math.isfinite(th.time)):
                raise ValueError(
                    f"Event tagger hit {i} not finite: E={th.photon_energy}, t={th.time}"
                )
