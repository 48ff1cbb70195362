"""
eta' -> omega gamma -> pi0 gamma gamma -> 4 gamma selection, with
eta' -> 2 gamma as reference channel.

Per event the candidates are turned into proton/photon combinations once;
then, for every tagger hit inside the prompt or random window, the signal
and the reference branch each filter their own copy of the combinations,
fit them and keep the best hypothesis.

Signal branch:
  filter(4 photons) -> kinematic fit -> anti 2pi0 / pi0 eta tree fits (veto)
  -> two signal tree fits ("Pi0": pi0 constrained; "OmegaPi0": pi0 and omega)
Reference branch:
  filter(2 photons) -> kinematic fit

Records are emitted per tagger hit with the prompt/random weight attached.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, Iterable, Iterator, List, Optional, Tuple
import math

import numpy as np

from ..config.schemas import Config, FitCfg, RunCfg, SelectionCfg, UncertaintyCfg
from ..config.setups import Setup, get_setup
from ..filters.combinations import CombinationSet, FilterDiagnostics, ProtonPhotonComb, make_combinations
from ..fit.kinfit import FitResult, KinFitter
from ..fit.select import best_by
from ..fit.solver import FitSettings
from ..fit.treefit import NodeMasses, TreeFitter
from ..physics.events import Event
from ..physics.kinematics import Interval, boost, boost_vector, coplanarity_deg, inv_mass, theta_phi
from ..physics.particles import ETA, OMEGA, PI0, PROTON
from ..physics.promptrandom import Case, PromptRandomWindow
from ..physics.topology import get_channel
from ..physics.uncertainties import MCSmear, UncertaintyModel, make_uncertainty_model

SIGNAL_CHANNEL = "EtaPrime_gOmega_ggPi0_4g"
REFERENCE_CHANNEL = "EtaPrime_2g"

# order defines the MC-true code 10 + i
BACKGROUND_CHANNELS = (
    "Pi0_2g",
    "TwoPi0_4g",
    "Pi0Eta_4g",
    "ThreePi0_6g",
    "Omega_gPi0_3g",
    "Omega_Pi0PiPPiM_2g",
    "EtaPrime_2Pi0Eta_6g",
    "TwoPi0_2ggEpEm",
    "ThreePi0_4ggEpEm",
    "Eta_2g",
)

NAN = math.nan


def mc_true_code(event: Event) -> int:
    """0 data, 1 signal, 2 reference, 10+i known background, 9 other MC."""
    if not event.is_mc:
        return 0
    ch = event.mc_channel
    if ch == SIGNAL_CHANNEL:
        return 1
    if ch == REFERENCE_CHANNEL:
        return 2
    if ch in BACKGROUND_CHANNELS:
        return 10 + BACKGROUND_CHANNELS.index(ch)
    return 9


class CutFlow:
    """Ordered, weighted cut counters."""

    def __init__(self, name: str):
        self.name = name
        self.counts: Dict[str, float] = {}

    def fill(self, cut: str, weight: float = 1.0) -> None:
        self.counts[cut] = self.counts.get(cut, 0.0) + weight

    def __getitem__(self, cut: str) -> float:
        return self.counts.get(cut, 0.0)

    def as_dict(self) -> Dict[str, float]:
        return dict(self.counts)


# --- records ----------------------------------------------------------------

@dataclass
class CommonFields:
    tagg_w: float = NAN
    tagg_e: float = NAN
    tagg_t: float = NAN
    tagg_ch: int = -1
    cb_sum_e: float = NAN
    cb_avg_time: float = NAN
    pid_sum_e: float = NAN
    mc_true: int = 0
    true_z_vertex: float = NAN


@dataclass
class ProtonPhotonFields:
    photons_ek: float = NAN
    n_photons_cb: int = 0
    n_photons_taps: int = 0
    cb_sum_veto_e: float = NAN
    discarded_ek: float = NAN
    photon_sum: float = NAN
    missing_mass: float = NAN
    proton_copl: float = NAN
    proton_time: float = NAN
    proton_e: float = NAN
    proton_theta: float = NAN
    proton_veto_e: float = NAN
    proton_short_e: float = NAN
    fitted_proton_e: float = NAN

    @classmethod
    def from_comb(cls, comb: ProtonPhotonComb, fitted_proton_e: float) -> "ProtonPhotonFields":
        f = cls()
        cands = [g.candidate for g in comb.photons]
        f.photons_ek = float(sum(c.calo_energy for c in cands))
        f.n_photons_cb = sum(1 for c in cands if c.in_cb)
        f.n_photons_taps = sum(1 for c in cands if c.in_taps)
        f.cb_sum_veto_e = float(sum(c.veto_energy for c in cands if c.in_cb))
        f.discarded_ek = comb.discarded_ek
        f.photon_sum = inv_mass(comb.photon_sum)
        f.missing_mass = comb.missing_mass
        _, phi_sum = theta_phi(comb.photon_sum)
        f.proton_copl = coplanarity_deg(comb.proton.phi, phi_sum)
        pc = comb.proton.candidate
        f.proton_time = pc.time
        f.proton_e = comb.proton.ek
        f.proton_theta = float(np.degrees(comb.proton.theta))
        f.proton_veto_e = pc.veto_energy
        f.proton_short_e = pc.short_energy
        f.fitted_proton_e = fitted_proton_e
        return f


@dataclass
class TreeFitFields:
    tree_fit_prob: float = NAN
    tree_fit_iterations: int = 0
    tree_fit_z_vertex: float = NAN
    im_pi0: float = NAN
    im_pi0gg: float = NAN
    im_gg: float = NAN
    g_nonpi0_theta: Tuple[float, float] = (NAN, NAN)
    g_nonpi0_calo_e: Tuple[float, float] = (NAN, NAN)
    ggg: Tuple[float, ...] = (NAN,) * 4
    gg_gg1: Tuple[float, ...] = (NAN,) * 3
    gg_gg2: Tuple[float, ...] = (NAN,) * 3
    pp: ProtonPhotonFields = field(default_factory=ProtonPhotonFields)

    @property
    def ok(self) -> bool:
        return math.isfinite(self.tree_fit_prob)


@dataclass
class Pi0Fields(TreeFitFields):
    # sorted ascending; the lower one belongs to the eta' bachelor photon
    im_pi0g: Tuple[float, float] = (NAN, NAN)
    bachelor_e: Tuple[float, float] = (NAN, NAN)


@dataclass
class OmegaPi0Fields(TreeFitFields):
    im_pi0g: float = NAN
    bachelor_e: float = NAN


@dataclass
class SigRecord:
    common: CommonFields
    kinfit_prob: float = NAN
    kinfit_iterations: int = 0
    kinfit_z_vertex: float = NAN
    anti_pi0_fit_prob: float = NAN
    anti_pi0_fit_iterations: int = 0
    anti_pi0_fit_z_vertex: float = NAN
    anti_eta_fit_prob: float = NAN
    anti_eta_fit_iterations: int = 0
    anti_eta_fit_z_vertex: float = NAN
    pi0: Pi0Fields = field(default_factory=Pi0Fields)
    omega_pi0: OmegaPi0Fields = field(default_factory=OmegaPi0Fields)


@dataclass
class RefRecord:
    common: CommonFields
    kinfit_prob: float = NAN
    kinfit_iterations: int = 0
    kinfit_z_vertex: float = NAN
    im_2g: float = NAN
    pp: ProtonPhotonFields = field(default_factory=ProtonPhotonFields)


def photon_combinatorics(photons) -> Tuple[Tuple[float, ...], Tuple[float, ...], Tuple[float, ...]]:
    """3-photon invariant masses and the three 2g/2g ("Goldhaber") pairings of 4 photons."""
    lvs = [g.lv for g in photons]
    ggg = tuple(inv_mass(a + b + c) for a, b, c in combinations(lvs, 3))
    pairs = ((0, 1, 2, 3), (0, 2, 1, 3), (0, 3, 1, 2))
    gg_gg1 = tuple(inv_mass(lvs[i] + lvs[j]) for i, j, _, _ in pairs)
    gg_gg2 = tuple(inv_mass(lvs[k] + lvs[l]) for _, _, k, l in pairs)
    return ggg, gg_gg1, gg_gg2


# --- fitting helpers --------------------------------------------------------

@dataclass(frozen=True)
class FitParams:
    uncertainty_model: UncertaintyModel
    fit_z_vertex: bool = True
    z_vertex_sigma: float = 3.0
    constraint_accuracy: float = 1e-3
    chi2_accuracy: float = 1e-2

    def settings(self, max_iterations: int) -> FitSettings:
        return FitSettings(
            max_iterations=max_iterations,
            constraint_accuracy=self.constraint_accuracy,
            chi2_accuracy=self.chi2_accuracy,
        )

    def setup_fitter(self, fitter: KinFitter) -> KinFitter:
        if self.fit_z_vertex:
            fitter.set_z_vertex_sigma(self.z_vertex_sigma)
        return fitter


def best_kinfit(fitter: KinFitter, beam_energy: float, combs: Iterable[ProtonPhotonComb]):
    """(comb, result) of the most probable kinematic fit, or None."""
    return best_by(combs, lambda c: fitter.fit(beam_energy, c.proton, c.photons))


def _tree_fits(fitter: TreeFitter, beam_energy: float, combs: Iterable[ProtonPhotonComb]) -> Iterator[Tuple[ProtonPhotonComb, FitResult]]:
    for comb in combs:
        fitter.set_beam_energy(beam_energy)
        fitter.set_proton(comb.proton)
        fitter.set_photons(comb.photons)
        for result in fitter.fits():
            yield comb, result


def best_treefit(fitter: TreeFitter, beam_energy: float, combs: Iterable[ProtonPhotonComb]):
    """((comb, result), result) of the most probable tree fit over all combinations and permutations."""
    return best_by(_tree_fits(fitter, beam_energy, combs), lambda cr: cr[1])


# --- branches ---------------------------------------------------------------

class SigBranch:

    def __init__(self, params: FitParams, sel: SelectionCfg, fit_cfg: FitCfg):
        self.sel = sel
        self.cuts = CutFlow("Sig")
        self.filter_diag = FilterDiagnostics()

        self.kinfitter = params.setup_fitter(KinFitter(
            "kinfitter_sig", params.uncertainty_model, params.fit_z_vertex,
            params.settings(fit_cfg.kinfit_max_iterations),
        ))

        self.treefitter_pi0pi0 = params.setup_fitter(TreeFitter(
            "treefit_Pi0Pi0", get_channel("TwoPi0_4g"), params.uncertainty_model,
            params.fit_z_vertex, settings=params.settings(fit_cfg.kinfit_max_iterations),
        ))
        pi0_cut = PI0.window(sel.anti_pi0_window)
        eta_cut = ETA.window(sel.anti_eta_window)
        self.treefitter_pi0pi0.set_iteration_filter(
            lambda m: all(pi0_cut.contains(x) for x in m.of_type("pi0"))
        )

        self.treefitter_pi0eta = params.setup_fitter(TreeFitter(
            "treefit_Pi0Eta", get_channel("Pi0Eta_4g"), params.uncertainty_model,
            params.fit_z_vertex, settings=params.settings(fit_cfg.kinfit_max_iterations),
        ))
        self.treefitter_pi0eta.set_iteration_filter(
            lambda m: pi0_cut.contains(m["pi0"]) and eta_cut.contains(m["eta"])
        )

        # the eta' is never constrained; "Pi0" leaves the omega free as well
        signal = get_channel(SIGNAL_CHANNEL)
        tree_settings = params.settings(fit_cfg.treefit_max_iterations)
        self.treefitter_pi0 = params.setup_fitter(TreeFitter(
            "sig_treefitter_Pi0", signal, params.uncertainty_model, params.fit_z_vertex,
            excluded=("etaprime", "omega"), settings=tree_settings,
        ))
        self.treefitter_omegapi0 = params.setup_fitter(TreeFitter(
            "sig_treefitter_Omega", signal, params.uncertainty_model, params.fit_z_vertex,
            excluded=("etaprime",), settings=tree_settings,
        ))
        for f in (self.treefitter_pi0, self.treefitter_omegapi0):
            f.set_iteration_filter(_signal_ranking, max_fits=sel.treefit_max_fits)

    def process(self, combs: CombinationSet, common: CommonFields) -> Optional[SigRecord]:
        sel = self.sel
        ok = combs.filter(
            4, sel.max_discarded_ek, PROTON.window(sel.proton_mm_width),
            Interval(sel.sig_photon_im_min, math.inf), self.filter_diag,
        )
        if not ok:
            return None

        beam_e = combs.tagger_hit.photon_energy
        rec = SigRecord(common=common)
        best = best_kinfit(self.kinfitter, beam_e, combs)
        if best is not None:
            _, r = best
            rec.kinfit_prob, rec.kinfit_iterations, rec.kinfit_z_vertex = r.probability, r.n_iterations, r.z_vertex
        if not rec.kinfit_prob > sel.sig_kinfit_prob_min:
            return None
        self.cuts.fill("KinFit ok")

        anti_pi0 = best_treefit(self.treefitter_pi0pi0, beam_e, combs)
        if anti_pi0 is not None:
            r = anti_pi0[1]
            rec.anti_pi0_fit_prob, rec.anti_pi0_fit_iterations, rec.anti_pi0_fit_z_vertex = r.probability, r.n_iterations, r.z_vertex
        anti_eta = best_treefit(self.treefitter_pi0eta, beam_e, combs)
        if anti_eta is not None:
            r = anti_eta[1]
            rec.anti_eta_fit_prob, rec.anti_eta_fit_iterations, rec.anti_eta_fit_z_vertex = r.probability, r.n_iterations, r.z_vertex
        if rec.anti_pi0_fit_prob > sel.anti_prob_max or rec.anti_eta_fit_prob > sel.anti_prob_max:
            return None
        self.cuts.fill("Anti ok")

        best_pi0 = best_treefit(self.treefitter_pi0, beam_e, combs)
        if best_pi0 is not None:
            (comb, r), _ = best_pi0
            rec.pi0 = self._fill_pi0(comb, r)
        best_omega = best_treefit(self.treefitter_omegapi0, beam_e, combs)
        if best_omega is not None:
            (comb, r), _ = best_omega
            rec.omega_pi0 = self._fill_omega_pi0(comb, r)

        if not (rec.pi0.ok or rec.omega_pi0.ok):
            return None
        self.cuts.fill("Sig ok")
        if rec.pi0.ok and rec.omega_pi0.ok:
            self.cuts.fill("Both ok")
        self.cuts.fill("Pi0 ok", float(rec.pi0.ok))
        self.cuts.fill("OmegaPi0 ok", float(rec.omega_pi0.ok))
        return rec

    def _fill_common_tree(self, f: TreeFitFields, comb: ProtonPhotonComb, r: FitResult, g_etap: int, g_omega: int) -> None:
        f.tree_fit_prob = r.probability
        f.tree_fit_iterations = r.n_iterations
        f.tree_fit_z_vertex = r.z_vertex
        f.im_pi0 = inv_mass(r.nodes["pi0"])
        f.im_pi0gg = inv_mass(r.nodes["etaprime"])
        f.im_gg = inv_mass(r.photons[g_etap].lv + r.photons[g_omega].lv)
        c1 = comb.photons[r.assignment[g_etap]].candidate
        c2 = comb.photons[r.assignment[g_omega]].candidate
        f.g_nonpi0_theta = (c1.theta, c2.theta)
        f.g_nonpi0_calo_e = (c1.calo_energy, c2.calo_energy)
        f.ggg, f.gg_gg1, f.gg_gg2 = photon_combinatorics(comb.photons)
        f.pp = ProtonPhotonFields.from_comb(comb, r.proton.ek)

    def _fill_pi0(self, comb: ProtonPhotonComb, r: FitResult) -> Pi0Fields:
        fitter = self.treefitter_pi0
        f = Pi0Fields()
        g1_leaf = fitter.photon_daughters("etaprime")[0]
        g2_leaf = fitter.photon_daughters("omega")[0]
        pi0 = r.nodes["pi0"]
        g1, g2 = r.photons[g1_leaf].lv, r.photons[g2_leaf].lv
        # the omega is unconstrained here: the omega photon is taken as the one
        # with the higher pi0 g mass
        im = (inv_mass(pi0 + g1), inv_mass(pi0 + g2))
        if im[0] > im[1]:
            im = (im[1], im[0])
            g1, g2 = g2, g1
            g1_leaf, g2_leaf = g2_leaf, g1_leaf
        self._fill_common_tree(f, comb, r, g1_leaf, g2_leaf)
        f.im_pi0g = im
        beta = -boost_vector(g1 + g2 + pi0)
        f.bachelor_e = (float(boost(g1, beta)[0]), float(boost(g2, beta)[0]))
        return f

    def _fill_omega_pi0(self, comb: ProtonPhotonComb, r: FitResult) -> OmegaPi0Fields:
        fitter = self.treefitter_omegapi0
        f = OmegaPi0Fields()
        g_etap = fitter.photon_daughters("etaprime")[0]
        g_omega = fitter.photon_daughters("omega")[0]
        self._fill_common_tree(f, comb, r, g_etap, g_omega)
        f.im_pi0g = inv_mass(r.nodes["omega"])
        etap = r.nodes["etaprime"]
        f.bachelor_e = float(boost(r.photons[g_etap].lv, -boost_vector(etap))[0])
        return f


def _signal_ranking(m: NodeMasses) -> float:
    """Sum of 1/(m_nominal - m)^2 over pi0 and omega; larger is better."""
    score = 0.0
    for ptype in (PI0, OMEGA):
        for x in m.of_type(ptype.name):
            d = ptype.mass - x
            score += math.inf if d == 0 else 1.0 / (d * d)
    return score


class RefBranch:

    def __init__(self, params: FitParams, sel: SelectionCfg, fit_cfg: FitCfg):
        self.sel = sel
        self.cuts = CutFlow("Ref")
        self.filter_diag = FilterDiagnostics()
        self.kinfitter = params.setup_fitter(KinFitter(
            "kinfitter_ref", params.uncertainty_model, params.fit_z_vertex,
            params.settings(fit_cfg.ref_kinfit_max_iterations),
        ))

    def process(self, combs: CombinationSet, common: CommonFields) -> Optional[RefRecord]:
        sel = self.sel
        ok = combs.filter(
            2, sel.max_discarded_ek, PROTON.window(sel.proton_mm_width),
            Interval(sel.ref_photon_im_min, math.inf), self.filter_diag,
        )
        if not ok:
            return None
        best = best_kinfit(self.kinfitter, combs.tagger_hit.photon_energy, combs)
        if best is None:
            return None
        comb, r = best
        if not r.probability > sel.ref_kinfit_prob_min:
            return None
        self.cuts.fill("Fill")
        return RefRecord(
            common=common,
            kinfit_prob=r.probability,
            kinfit_iterations=r.n_iterations,
            kinfit_z_vertex=r.z_vertex,
            im_2g=inv_mass(r.photons[0].lv + r.photons[1].lv),
            pp=ProtonPhotonFields.from_comb(comb, r.proton.ek),
        )


# --- event loop -------------------------------------------------------------

class EtapOmegaG:

    def __init__(
        self,
        setup: Setup | None = None,
        fit_cfg: FitCfg | None = None,
        sel: SelectionCfg | None = None,
        unc_cfg: UncertaintyCfg | None = None,
        run_cfg: RunCfg | None = None,
        promptrandom: PromptRandomWindow | None = None,
    ):
        self.setup = setup or get_setup("EtapOmegaG")
        self.fit_cfg = fit_cfg or FitCfg()
        self.sel = sel or SelectionCfg()
        unc_cfg = unc_cfg or UncertaintyCfg()
        self.run_cfg = run_cfg or RunCfg()

        self.promptrandom = promptrandom or PromptRandomWindow.from_setup(self.setup)
        self.params = FitParams(
            uncertainty_model=make_uncertainty_model(unc_cfg, "model"),
            fit_z_vertex=self.fit_cfg.fit_z_vertex,
            z_vertex_sigma=self.fit_cfg.z_vertex_sigma,
            constraint_accuracy=self.fit_cfg.constraint_accuracy,
            chi2_accuracy=self.fit_cfg.chi2_accuracy,
        )
        self.mc_smear: Optional[MCSmear] = None
        if self.run_cfg.mc_smear:
            self.mc_smear = MCSmear(
                make_uncertainty_model(unc_cfg, "smear_model"),
                np.random.default_rng(self.run_cfg.seed),
                self.run_cfg.mc_smear_scale,
            )

        self.cuts = CutFlow("EtapOmegaG")
        self.sig = SigBranch(self.params, self.sel, self.fit_cfg)
        self.ref = RefBranch(self.params, self.sel, self.fit_cfg)
        self.sig_records: List[SigRecord] = []
        self.ref_records: List[RefRecord] = []

        diag = self.run_cfg.diagnostics_level
        if diag >= 1:
            if self.mc_smear is not None:
                print("[etap_omega_g] Additional MC smearing enabled")
            if self.params.fit_z_vertex:
                print(f"[etap_omega_g] Fit Z vertex enabled with sigma={self.params.z_vertex_sigma}")
        if diag >= 2:
            print(f"[etap_omega_g] prompt={self.promptrandom.prompt_ranges} random={self.promptrandom.random_ranges}")

    @classmethod
    def from_config(cls, cfg: Config) -> "EtapOmegaG":
        setup = get_setup(cfg.setup.name, cfg.promptrandom.prompt, cfg.promptrandom.random)
        return cls(setup, cfg.fit, cfg.selection, cfg.uncertainty, cfg.run)

    def process_event(self, event: Event) -> Tuple[List[SigRecord], List[RefRecord]]:
        """
        Run both branches on one event. Malformed events raise ValueError
        before anything is counted beyond "Seen".
        """
        sel = self.sel
        self.cuts.fill("Seen")
        event.validate()

        mc_true = mc_true_code(event)
        if mc_true in (1, 2):
            (self.sig if mc_true == 1 else self.ref).cuts.fill("MCTrue seen")

        trig = event.trigger
        if event.is_mc:
            if not trig.cb_energy_sum > sel.mc_cb_esum_min:
                return [], []
            self.cuts.fill("MC CBEnergySum ok")
        if not math.isfinite(trig.cb_timing):
            return [], []
        self.cuts.fill("CBAvgTime ok")
        if len(event.candidates) < sel.min_candidates:
            return [], []
        self.cuts.fill("nCands ok")
        if sel.require_taps and not event.has_taps():
            return [], []
        self.cuts.fill("1 in TAPS")

        smear = self.mc_smear if (event.is_mc and self.mc_smear is not None) else None
        combs = make_combinations(event.candidates, smear)

        sig_out: List[SigRecord] = []
        ref_out: List[RefRecord] = []
        for hit in event.tagger_hits:
            if self.promptrandom.set_time(hit.time) is Case.Outside:
                continue
            common = CommonFields(
                tagg_w=self.promptrandom.fill_weight(),
                tagg_e=hit.photon_energy,
                tagg_t=hit.time,
                tagg_ch=hit.channel,
                cb_sum_e=trig.cb_energy_sum,
                cb_avg_time=trig.cb_timing,
                pid_sum_e=event.pid_energy_sum,
                mc_true=mc_true,
                true_z_vertex=event.true_z_vertex,
            )
            base = CombinationSet(combs, hit)
            s = self.sig.process(base.copy(), common)
            if s is not None:
                sig_out.append(s)
            r = self.ref.process(base.copy(), common)
            if r is not None:
                ref_out.append(r)

        self.sig_records.extend(sig_out)
        self.ref_records.extend(ref_out)
        return sig_out, ref_out

    def cut_flows(self) -> Dict[str, Dict[str, float]]:
        sig = {**self.sig.filter_diag.as_dict(), **self.sig.cuts.as_dict()}
        ref = {**self.ref.filter_diag.as_dict(), **self.ref.cuts.as_dict()}
        return {"EtapOmegaG": self.cuts.as_dict(), "Sig": sig, "Ref": ref}
