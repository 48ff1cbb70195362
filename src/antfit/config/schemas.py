from __future__ import annotations
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Literal, Optional, Dict, List, Any

class RunCfg(BaseModel):
    """
    Global run controls.
    """

    # Performance / execution
    progress: bool = True
    max_events: Optional[int] = None   # stop after this many input events

    # MC handling
    mc_smear: bool = False             # extra resolution smearing of simulated candidates
    mc_smear_scale: float = 1.0
    seed: Optional[int] = None

    # Diagnostics
    diagnostics_level: int = 1  # 0=off, 1=minimal, 2=verbose

    @field_validator("diagnostics_level")
    def _diag_range(cls, v: int) -> int:
        if v not in (0, 1, 2):
            raise ValueError("diagnostics_level must be 0, 1, or 2")
        return v

    @field_validator("max_events")
    def _max_events_positive(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("max_events must be >= 1")
        return v

class IOCfg(BaseModel):
    """
    I/O paths.

    TOML:

    [io]
    input_path  = "events.h5"
    output_path = "etap_omega_g.h5"

    [io.adapter]
    kind = "hdf5"
    """

    input_path: str
    output_path: str

    # Adapter-specific sub-config, e.g. [io.adapter]
    adapter: Dict[str, Any] = Field(default_factory=lambda: {"kind": "hdf5"})

class SetupCfg(BaseModel):
    """Named experimental setup (tagger ranges, beam energy, MC tagger)."""
    name: str = "EtapOmegaG"

class PromptRandomCfg(BaseModel):
    """
    Optional override of the setup's prompt/random ranges [ns].

    [promptrandom]
    prompt = [[-7, 7]]
    random = [[-65, -10], [10, 65]]
    """
    prompt: Optional[List[List[float]]] = None
    random: Optional[List[List[float]]] = None

    @field_validator("prompt", "random")
    def _ranges(cls, v: Optional[List[List[float]]]) -> Optional[List[List[float]]]:
        if v is None:
            return v
        for r in v:
            if len(r) != 2 or not r[0] < r[1]:
                raise ValueError(f"time range must be [start, stop] with start < stop, got {r}")
        return v

class FitCfg(BaseModel):
    fit_z_vertex: bool = True
    z_vertex_sigma: float = 3.0          # [cm]; 0 = unmeasured
    kinfit_max_iterations: int = 10       # signal kinematic fit and anti-hypothesis tree fits
    ref_kinfit_max_iterations: int = 15
    treefit_max_iterations: int = 15
    constraint_accuracy: float = 1e-3    # [MeV]
    chi2_accuracy: float = 1e-2

    @field_validator("z_vertex_sigma")
    def _sigma_nonneg(cls, v: float) -> float:
        if v < 0:
            raise ValueError("z_vertex_sigma must be >= 0")
        return v

    @field_validator("kinfit_max_iterations", "ref_kinfit_max_iterations", "treefit_max_iterations")
    def _iter_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max iterations must be >= 1")
        return v

class UncertaintyCfg(BaseModel):
    model: Literal["sergey", "constant"] = "sergey"
    smear_model: Literal["sergey", "constant"] = "sergey"
    tagger_sigma: float = 1.0            # [MeV]
    # constant model
    photon_rel_ek: float = 0.05
    photon_theta_deg: float = 2.5
    photon_phi_deg: float = 2.5
    proton_theta_deg: float = 5.0
    proton_phi_deg: float = 5.0

class SelectionCfg(BaseModel):
    """Event selection thresholds; energies and masses in MeV."""

    # event preselection
    mc_cb_esum_min: float = 550.0
    min_candidates: int = 3
    require_taps: bool = True

    # common to both branches
    max_discarded_ek: float = 70.0
    proton_mm_width: float = 350.0

    # signal branch (4 photons)
    sig_photon_im_min: float = 550.0
    sig_kinfit_prob_min: float = 0.005
    anti_prob_max: float = 0.05
    anti_pi0_window: float = 80.0
    anti_eta_window: float = 120.0
    treefit_max_fits: int = 4

    # reference branch (2 photons)
    ref_photon_im_min: float = 600.0
    ref_kinfit_prob_min: float = 0.005

class SimCfg(BaseModel):
    """
    Synthetic event generation (antfit-synth).

    channels maps channel names (antfit.physics.topology.CHANNELS) to
    relative weights.
    """
    n_events: int = 1000
    channels: Dict[str, float] = Field(default_factory=lambda: {
        "EtaPrime_gOmega_ggPi0_4g": 1.0,
        "EtaPrime_2g": 1.0,
        "TwoPi0_4g": 1.0,
    })
    beam_energy_range: List[float] = [1450.0, 1600.0]   # [MeV], above eta' threshold
    z_vertex_range: List[float] = [-5.0, 5.0]           # [cm], target cell
    tagger_hits: bool = True
    seed: Optional[int] = None

    @model_validator(mode="after")
    def _check(self) -> "SimCfg":
        lo, hi = self.beam_energy_range
        if not 0 < lo <= hi:
            raise ValueError("beam_energy_range must be [lo, hi] with 0 < lo <= hi")
        if not self.channels or any(w < 0 for w in self.channels.values()):
            raise ValueError("channels needs at least one entry with a non-negative weight")
        return self


class Config(BaseModel):
    """
    Top-level TOML configuration.
    """

    run: RunCfg = Field(default_factory=RunCfg)
    io: IOCfg
    setup: SetupCfg = Field(default_factory=SetupCfg)
    promptrandom: PromptRandomCfg = Field(default_factory=PromptRandomCfg)
    fit: FitCfg = Field(default_factory=FitCfg)
    uncertainty: UncertaintyCfg = Field(default_factory=UncertaintyCfg)
    selection: SelectionCfg = Field(default_factory=SelectionCfg)
    sim: SimCfg = Field(default_factory=SimCfg)
