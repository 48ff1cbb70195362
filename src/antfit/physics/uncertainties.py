from __future__ import annotations
from dataclasses import dataclass
import numpy as np

from .particles import Particle, PHOTON, PROTON
from .kinematics import in_taps
from ..config.errors import ConfigurationError

# --- Interfaces -------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Uncertainty:
    """Per-particle sigmas. A sigma of 0 marks the variable as unmeasured."""
    sigma_ek: float
    sigma_theta: float
    sigma_phi: float


class UncertaintyModel:
    """Base protocol: resolution of a particle hypothesis and of the tagger."""
    name: str

    def get_sigmas(self, particle: Particle) -> Uncertainty:
        raise NotImplementedError

    def beam_sigma(self, photon_energy: float) -> float:
        raise NotImplementedError


def _is_taps(particle: Particle) -> bool:
    if particle.candidate is not None:
        return particle.candidate.in_taps
    return in_taps(particle.theta)


def _phi_sigma(sigma: float, theta: float) -> float:
    # azimuthal resolution degrades towards the beam axis
    return sigma / max(np.sin(theta), 0.1)

# --- Implementations --------------------------------------------------------

class ConstantUncertainty(UncertaintyModel):
    """Fixed relative energy and absolute angular resolutions, no detector split."""
    name = "constant"

    def __init__(
        self,
        photon_rel_ek: float = 0.05,
        photon_theta_deg: float = 2.5,
        photon_phi_deg: float = 2.5,
        proton_rel_ek: float = 0.0,      # 0 = unmeasured
        proton_theta_deg: float = 5.0,
        proton_phi_deg: float = 5.0,
        tagger_sigma: float = 1.0,
    ):
        self.photon_rel_ek = photon_rel_ek
        self.photon_theta = np.radians(photon_theta_deg)
        self.photon_phi = np.radians(photon_phi_deg)
        self.proton_rel_ek = proton_rel_ek
        self.proton_theta = np.radians(proton_theta_deg)
        self.proton_phi = np.radians(proton_phi_deg)
        self.tagger_sigma = tagger_sigma

    def get_sigmas(self, particle):
        if particle.type == PROTON:
            return Uncertainty(self.proton_rel_ek * max(particle.ek, 1.0), self.proton_theta, self.proton_phi)
        return Uncertainty(self.photon_rel_ek * max(particle.ek, 1.0), self.photon_theta, self.photon_phi)

    def beam_sigma(self, photon_energy):
        return self.tagger_sigma


class SergeyUncertainty(UncertaintyModel):
    """
    CB/TAPS parametrisation used for fitting measured data.

    Photons: sigma_E/E = a / E[GeV]^b in CB, a + c/sqrt(E[GeV]) in TAPS.
    Protons: kinetic energy unmeasured, angles only.
    """
    name = "sergey"

    def __init__(self, tagger_sigma: float = 1.0):
        self.tagger_sigma = tagger_sigma

    def get_sigmas(self, particle):
        taps = _is_taps(particle)
        E_GeV = max(particle.ek, 1.0) / 1000.0
        if particle.type == PHOTON:
            if taps:
                rel = 0.018 + 0.008 / np.sqrt(E_GeV)
                dtheta = np.radians(1.0)
                dphi = np.radians(1.0)
            else:
                rel = 0.02 / E_GeV ** 0.36
                dtheta = np.radians(2.5)
                dphi = np.radians(2.5)
            return Uncertainty(rel * max(particle.ek, 1.0), dtheta, _phi_sigma(dphi, particle.theta))
        if particle.type == PROTON:
            if taps:
                dtheta, dphi = np.radians(2.8), np.radians(4.5)
            else:
                dtheta, dphi = np.radians(5.5), np.radians(5.3)
            return Uncertainty(0.0, dtheta, _phi_sigma(dphi, particle.theta))
        raise ValueError(f"No resolution model for particle type '{particle.type.name}'")

    def beam_sigma(self, photon_energy):
        return self.tagger_sigma


class MCSmear:
    """
    Additional Gaussian smearing of simulated particles, driven by an
    uncertainty model. Unmeasured variables (sigma 0) are left untouched.
    """
    def __init__(self, model: UncertaintyModel, rng: np.random.Generator | None = None, scale: float = 1.0):
        self.model = model
        self.rng = rng or np.random.default_rng()
        self.scale = float(scale)

    def smear(self, particle: Particle) -> Particle:
        s = self.model.get_sigmas(particle)
        ek = particle.ek + self.scale * s.sigma_ek * self.rng.normal() if s.sigma_ek > 0 else particle.ek
        theta = particle.theta + self.scale * s.sigma_theta * self.rng.normal() if s.sigma_theta > 0 else particle.theta
        phi = particle.phi + self.scale * s.sigma_phi * self.rng.normal() if s.sigma_phi > 0 else particle.phi
        theta = float(np.clip(theta, 0.0, np.pi))
        return particle.with_kinematics(max(ek, 0.0), theta, phi)

    __call__ = smear

# --- Factory ----------------------------------------------------------------

def make_uncertainty_model(cfg_uncertainty, which: str = "model") -> UncertaintyModel:
    """
    Build the fit model (which="model") or the MC smearing model
    (which="smear_model") from an UncertaintyCfg.
    """
    kind = getattr(cfg_uncertainty, which)
    if kind == "sergey":
        return SergeyUncertainty(tagger_sigma=cfg_uncertainty.tagger_sigma)
    elif kind == "constant":
        return ConstantUncertainty(
            photon_rel_ek=cfg_uncertainty.photon_rel_ek,
            photon_theta_deg=cfg_uncertainty.photon_theta_deg,
            photon_phi_deg=cfg_uncertainty.photon_phi_deg,
            proton_theta_deg=cfg_uncertainty.proton_theta_deg,
            proton_phi_deg=cfg_uncertainty.proton_phi_deg,
            tagger_sigma=cfg_uncertainty.tagger_sigma,
        )
    else:
        raise ConfigurationError(f"Unknown uncertainty model {kind}")
