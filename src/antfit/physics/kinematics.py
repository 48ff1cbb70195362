# src/antfit/physics/kinematics.py
from __future__ import annotations
from typing import NamedTuple
import numpy as np

# Masses in MeV/c^2
M_P_MEV = 938.272          # proton
M_PI0_MEV = 134.9766       # neutral pion
M_ETA_MEV = 547.853
M_OMEGA_MEV = 782.65
M_ETAP_MEV = 957.78

# Detector geometry [cm]
R_CB_CM = 25.4             # inner radius of the Crystal Ball
Z_TAPS_CM = 145.7          # distance target centre -> TAPS front face

# CB covers theta in ~[21, 159] deg, TAPS ~[2, 20] deg
CB_THETA_DEG = (21.0, 159.0)
TAPS_THETA_DEG = (2.0, 20.0)


class Interval(NamedTuple):
    """Closed interval [lo, hi]; hi may be inf."""
    lo: float
    hi: float

    @classmethod
    def center_width(cls, center: float, width: float) -> "Interval":
        return cls(center - 0.5 * width, center + 0.5 * width)

    def contains(self, x: float) -> bool:
        return self.lo <= x <= self.hi

    def width(self) -> float:
        return self.hi - self.lo


def four_momentum(ek: float, theta: float, phi: float, mass: float) -> np.ndarray:
    """
    Four-momentum [E, px, py, pz] from kinetic energy and direction.

    A negative kinetic energy for a massive particle gives NaN momenta; the
    fitter relies on this to flag unphysical iterations.
    """
    E = ek + mass
    p2 = ek * ek + 2.0 * ek * mass
    p = np.sqrt(p2) if p2 >= 0 else np.nan
    st = np.sin(theta)
    return np.array([E, p * st * np.cos(phi), p * st * np.sin(phi), p * np.cos(theta)])


def photon_beam(energy: float) -> np.ndarray:
    """Beam photon along +z."""
    return np.array([energy, 0.0, 0.0, energy])


def target_proton() -> np.ndarray:
    return np.array([M_P_MEV, 0.0, 0.0, 0.0])


def inv_mass(lv: np.ndarray) -> float:
    """Invariant mass; negative m^2 gives -sqrt(-m^2) (ROOT convention)."""
    m2 = lv[0] * lv[0] - lv[1] * lv[1] - lv[2] * lv[2] - lv[3] * lv[3]
    if m2 < 0:
        return -float(np.sqrt(-m2))
    return float(np.sqrt(m2))


def kinetic_energy(lv: np.ndarray) -> float:
    return float(lv[0] - max(inv_mass(lv), 0.0))


def theta_phi(lv: np.ndarray) -> tuple[float, float]:
    px, py, pz = lv[1], lv[2], lv[3]
    return float(np.arctan2(np.hypot(px, py), pz)), float(np.arctan2(py, px))


def boost_vector(lv: np.ndarray) -> np.ndarray:
    return lv[1:] / lv[0]


def boost(lv: np.ndarray, beta: np.ndarray) -> np.ndarray:
    """Lorentz boost of lv by velocity beta (3-vector, |beta| < 1)."""
    b2 = float(beta @ beta)
    if b2 == 0.0:
        return lv.copy()
    gamma = 1.0 / np.sqrt(1.0 - b2)
    bp = float(beta @ lv[1:])
    gamma2 = (gamma - 1.0) / b2
    E = gamma * (lv[0] + bp)
    p = lv[1:] + gamma2 * bp * beta + gamma * beta * lv[0]
    return np.concatenate(([E], p))


def phi_mpi_pi(phi: float) -> float:
    """Wrap an angle into [-pi, pi)."""
    return float((phi + np.pi) % (2.0 * np.pi) - np.pi)


def coplanarity_deg(phi_proton: float, phi_rest: float) -> float:
    """Deviation from back-to-back azimuth, in degrees."""
    return float(np.degrees(phi_mpi_pi(phi_proton - phi_rest - np.pi)))


def in_cb(theta: float) -> bool:
    lo, hi = CB_THETA_DEG
    return lo <= np.degrees(theta) <= hi


def in_taps(theta: float) -> bool:
    lo, hi = TAPS_THETA_DEG
    return lo <= np.degrees(theta) <= hi


def vertex_corrected_theta(theta: float, z_vertex: float, taps: bool) -> float:
    """
    Polar angle of a cluster seen from (0, 0, z_vertex) instead of the target
    centre. The cluster sits on the CB sphere or on the TAPS plane.
    """
    if z_vertex == 0.0:
        return theta
    if taps:
        rho = Z_TAPS_CM * np.tan(theta)
        zc = Z_TAPS_CM
    else:
        rho = R_CB_CM * np.sin(theta)
        zc = R_CB_CM * np.cos(theta)
    return float(np.arctan2(rho, zc - z_vertex))


def theta_seen_from_origin(theta_true: float, z_vertex: float, taps: bool) -> float:
    """
    Inverse of vertex_corrected_theta: where a particle emitted at z_vertex
    with polar angle theta_true hits the detector, seen from the centre.
    """
    if z_vertex == 0.0:
        return theta_true
    ct, st = np.cos(theta_true), np.sin(theta_true)
    if taps:
        # ray z_vertex + s*ct = Z_TAPS
        s = (Z_TAPS_CM - z_vertex) / ct
    else:
        # |(0,0,z_v) + s*(st,0,ct)| = R
        s = -z_vertex * ct + np.sqrt(z_vertex * z_vertex * ct * ct - (z_vertex * z_vertex - R_CB_CM * R_CB_CM))
    rho = s * st
    zc = z_vertex + s * ct
    return float(np.arctan2(rho, zc))
