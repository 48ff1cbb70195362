from __future__ import annotations
from dataclasses import dataclass
from enum import IntFlag
import numpy as np

from .kinematics import photon_beam


class Detector(IntFlag):
    NONE = 0
    CB = 1
    PID = 2
    TAPS = 4
    VETO = 8    # TAPS veto


@dataclass(frozen=True, slots=True, eq=False)
class Candidate:
    """
    Reconstructed cluster group (physics layer input).

    calo_energy: calorimeter energy [MeV]
    theta, phi: direction seen from the target centre [rad]
    time: [ns]
    veto_energy: energy in the matched PID/TAPS-veto element [MeV]
    detector: bitmask of contributing detectors

    Candidates compare by identity: two candidates with equal numbers are
    still different clusters.
    """
    calo_energy: float
    theta: float
    phi: float
    time: float = 0.0
    veto_energy: float = 0.0
    detector: Detector = Detector.NONE
    cluster_size: int = 1
    short_energy: float = float("nan")   # TAPS short-gate energy

    @property
    def in_taps(self) -> bool:
        return bool(self.detector & Detector.TAPS)

    @property
    def in_cb(self) -> bool:
        return bool(self.detector & Detector.CB)


@dataclass(frozen=True, slots=True)
class TaggerHit:
    channel: int
    photon_energy: float   # [MeV]
    time: float            # [ns]

    def photon_beam(self) -> np.ndarray:
        return photon_beam(self.photon_energy)
