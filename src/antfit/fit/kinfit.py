# src/antfit/fit/kinfit.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Sequence, Tuple
import math

import numpy as np

from ..physics.particles import Particle
from ..physics.kinematics import M_P_MEV, R_CB_CM, Z_TAPS_CM, in_taps
from ..physics.uncertainties import UncertaintyModel
from .solver import ConstrainedFit, FitSettings, FitStatus, SolverResult


class FitterState(Enum):
    Idle = "idle"
    Configured = "configured"
    Fitting = "fitting"
    Success = "success"
    Failed = "failed"


@dataclass(frozen=True)
class FitResult:
    """
    Outcome of one fit, by value. Nothing in here refers back to the fitter,
    so results from consecutive fits can be compared freely.

    proton/photons are the fitted particles (theta as seen from the fitted
    vertex); they keep the candidate back-reference of the input particle.
    For tree fits `photons` is in leaf order, `assignment[i]` is the index of
    the input photon placed on leaf i, and `nodes` maps internal node names to
    fitted four-momenta.
    """
    status: FitStatus
    probability: float = math.nan
    chi2: float = math.nan
    ndof: int = 0
    n_iterations: int = 0
    z_vertex: float = math.nan
    beam_energy: float = math.nan
    proton: Optional[Particle] = None
    photons: Tuple[Particle, ...] = ()
    nodes: Mapping[str, np.ndarray] = field(default_factory=dict)
    assignment: Tuple[int, ...] = ()

    @property
    def success(self) -> bool:
        return self.status is FitStatus.Success


def _photon_taps_mask(particles: Sequence[Particle]) -> np.ndarray:
    return np.array([
        p.candidate.in_taps if p.candidate is not None else in_taps(p.theta)
        for p in particles
    ], dtype=bool)


class KinFitter:
    """
    Energy-momentum conserving fit of gamma p -> p + n photons.

    Variables: beam energy, (Ek, theta, phi) of the proton and every photon,
    and optionally the z-vertex. Sigmas come from the uncertainty model; a
    sigma of 0 leaves the variable unmeasured (typically the proton Ek).
    """

    n_kinematic = 4

    def __init__(
        self,
        name: str,
        uncertainty_model: UncertaintyModel,
        fit_z_vertex: bool = False,
        settings: FitSettings | None = None,
    ):
        self.name = name
        self.model = uncertainty_model
        self.fit_z_vertex = bool(fit_z_vertex)
        self.z_vertex_sigma = 0.0
        self.settings = settings or FitSettings()
        self._solver = ConstrainedFit(self.settings)

        self._beam_energy = math.nan
        self._proton: Optional[Particle] = None
        self._photons: Tuple[Particle, ...] = ()
        self._have = {"beam": False, "proton": False, "photons": False}
        self._state = FitterState.Idle

        # per-fit workspace, rebuilt by _layout()
        self._x0 = np.zeros(0)
        self._sigmas = np.zeros(0)
        self._masses = np.zeros(0)
        self._taps = np.zeros(0, dtype=bool)

    # --- configuration ------------------------------------------------------

    @property
    def state(self) -> FitterState:
        return self._state

    def set_z_vertex_sigma(self, sigma: float) -> None:
        """sigma > 0: Gaussian prior around z = 0 [cm]; 0: z unmeasured."""
        if not sigma >= 0:
            raise ValueError(f"z-vertex sigma must be >= 0, got {sigma}")
        self.z_vertex_sigma = float(sigma)
        self._reset()

    def set_beam_energy(self, energy: float) -> None:
        self._beam_energy = float(energy)
        self._have["beam"] = True
        self._reset()

    def set_proton(self, proton: Particle) -> None:
        self._proton = proton
        self._have["proton"] = True
        self._reset()

    def set_photons(self, photons: Sequence[Particle]) -> None:
        self._photons = tuple(photons)
        self._have["photons"] = True
        self._reset()

    def _reset(self) -> None:
        self._state = FitterState.Configured if all(self._have.values()) else FitterState.Idle

    def _require_configured(self) -> None:
        if self._state is FitterState.Idle:
            missing = [k for k, v in self._have.items() if not v]
            raise RuntimeError(f"{self.name}: fitter not configured, missing {missing}")

    # --- variable layout ----------------------------------------------------
    # x = [beam_E, (ek, theta, phi) * (proton, photons...), z_vertex?]

    def _layout(self, photons: Sequence[Particle]) -> None:
        particles = (self._proton, *photons)
        n = 1 + 3 * len(particles) + (1 if self.fit_z_vertex else 0)
        if self._x0.size != n:
            self._x0 = np.zeros(n)
            self._sigmas = np.zeros(n)
        x0, sig = self._x0, self._sigmas
        x0[0] = self._beam_energy
        sig[0] = self.model.beam_sigma(self._beam_energy)
        for i, p in enumerate(particles):
            s = self.model.get_sigmas(p)
            j = 1 + 3 * i
            x0[j:j + 3] = (p.ek, p.theta, p.phi)
            sig[j:j + 3] = (s.sigma_ek, s.sigma_theta, s.sigma_phi)
        if self.fit_z_vertex:
            x0[-1] = 0.0
            sig[-1] = self.z_vertex_sigma
        self._masses = np.array([p.type.mass for p in particles])
        self._taps = _photon_taps_mask(particles)

    def _kinematics(self, x: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, float]:
        k = self._masses.size
        block = x[1:1 + 3 * k].reshape(k, 3)
        ek, theta, phi = block[:, 0], block[:, 1], block[:, 2]
        z = float(x[-1]) if self.fit_z_vertex else 0.0
        if z != 0.0:
            theta = self._corrected_theta(theta, z)
        return ek, theta, phi, z

    def _corrected_theta(self, theta: np.ndarray, z: float) -> np.ndarray:
        # cluster position on the CB sphere / TAPS plane, seen from (0, 0, z)
        taps = self._taps
        rho = np.where(taps, Z_TAPS_CM * np.tan(theta), R_CB_CM * np.sin(theta))
        zc = np.where(taps, Z_TAPS_CM, R_CB_CM * np.cos(theta))
        return np.arctan2(rho, zc - z)

    def _final_state(self, x: np.ndarray) -> np.ndarray:
        """(k, 4) four-momenta of proton + photons for variable vector x."""
        ek, theta, phi, _ = self._kinematics(x)
        m = self._masses
        p2 = ek * ek + 2.0 * ek * m
        p = np.sqrt(np.where(p2 >= 0, p2, np.nan))
        st = np.sin(theta)
        out = np.empty((m.size, 4))
        out[:, 0] = ek + m
        out[:, 1] = p * st * np.cos(phi)
        out[:, 2] = p * st * np.sin(phi)
        out[:, 3] = p * np.cos(theta)
        return out

    def _kinematic_constraints(self, x: np.ndarray, lvs: np.ndarray) -> np.ndarray:
        beam = x[0]
        total = lvs.sum(axis=0)
        return np.array([
            beam + M_P_MEV - total[0],
            -total[1],
            -total[2],
            beam - total[3],
        ])

    def _constraints(self, x: np.ndarray) -> np.ndarray:
        return self._kinematic_constraints(x, self._final_state(x))

    # --- fitting ------------------------------------------------------------

    def do_fit(self) -> FitResult:
        self._require_configured()
        return self._fit_photons(self._photons)

    def fit(self, beam_energy: float, proton: Particle, photons: Sequence[Particle]) -> FitResult:
        self.set_beam_energy(beam_energy)
        self.set_proton(proton)
        self.set_photons(photons)
        return self.do_fit()

    def _fit_photons(self, photons: Sequence[Particle], assignment: Tuple[int, ...] = ()) -> FitResult:
        self._state = FitterState.Fitting
        if not photons or self._proton is None:
            self._state = FitterState.Failed
            return FitResult(FitStatus.Underconstrained, assignment=assignment)
        self._layout(photons)
        res = self._solver.solve(self._x0, self._sigmas, self._constraints)
        result = self._make_result(res, photons, assignment)
        self._state = FitterState.Success if result.success else FitterState.Failed
        return result

    def _fitted_nodes(self, lvs: np.ndarray) -> Dict[str, np.ndarray]:
        return {}

    def _make_result(self, res: SolverResult, photons: Sequence[Particle], assignment: Tuple[int, ...]) -> FitResult:
        if res.status is not FitStatus.Success:
            return FitResult(res.status, chi2=res.chi2, ndof=res.ndof,
                             n_iterations=res.n_iterations, assignment=assignment)
        x = res.x
        ek, theta, phi, z = self._kinematics(x)
        fitted = [
            p.with_kinematics(float(ek[i]), float(theta[i]), float(phi[i]))
            for i, p in enumerate((self._proton, *photons))
        ]
        return FitResult(
            status=res.status,
            probability=res.probability,
            chi2=res.chi2,
            ndof=res.ndof,
            n_iterations=res.n_iterations,
            z_vertex=z if self.fit_z_vertex else math.nan,
            beam_energy=float(x[0]),
            proton=fitted[0],
            photons=tuple(fitted[1:]),
            nodes=self._fitted_nodes(self._final_state(x)),
            assignment=assignment,
        )
