from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, Optional
import typer
from tqdm import tqdm

from antfit.analysis.etap_omega_g import EtapOmegaG
from antfit.config.load import load_config, snapshot_config_toml
from antfit.config.schemas import Config
from antfit.io.adapters import make_adapter
from antfit.io.records import write_init, write_records, write_cutflow
from antfit.physics.events import Event


def _iter_source_events(cfg: Config) -> Iterable[Event]:
    """
    Unified event source.

    - cfg.io.adapter.kind selects the HDF5 event store or flat tables.
    - cfg.io.input_path is passed to the adapter.
    """
    adapter = make_adapter(cfg.io.adapter)
    return adapter.iter_events(str(cfg.io.input_path))


def _n_expected(cfg: Config) -> Optional[int]:
    n = make_adapter(cfg.io.adapter).count(str(cfg.io.input_path))
    if cfg.run.max_events is not None:
        n = cfg.run.max_events if n is None else min(n, cfg.run.max_events)
    return n


def run_analysis(cfg: Config, events: Iterable[Event]) -> EtapOmegaG:
    """
    Feed events through the EtapOmegaG analysis, honouring run.max_events.

    Events failing validation are skipped and counted as "Invalid event".
    """
    diag_level = cfg.run.diagnostics_level
    analysis = EtapOmegaG.from_config(cfg)

    n_bad = 0
    for j, ev in enumerate(events):
        if cfg.run.max_events is not None and j >= cfg.run.max_events:
            if diag_level >= 1:
                print(f"[pipeline] Reached max_events={cfg.run.max_events}, stopping.")
            break
        try:
            analysis.process_event(ev)
        except ValueError as exc:
            n_bad += 1
            analysis.cuts.fill("Invalid event")
            if n_bad <= 5 and diag_level >= 2:
                print(f"[pipeline] Skipping event {j}: {exc}")
            continue

    if diag_level >= 1 and n_bad:
        print(f"[pipeline] Skipped {n_bad} invalid events")
    return analysis


def run_pipeline(
    cfg_path: str,
    *,
    max_events: Optional[int] = None,
    mc_smear: Optional[bool] = None,
    progress: Optional[bool] = None,
) -> Path:
    """
    Orchestrate the full pipeline from a TOML config file.

    CLI flags (--max-events/--mc-smear/--progress) override the
    corresponding [run] fields when not None.

    Returns
    -------
    Path to written HDF5 file.
    """
    overrides: Dict[str, Any] = {}
    if max_events is not None:
        overrides["max_events"] = max_events
    if mc_smear is not None:
        overrides["mc_smear"] = mc_smear
    if progress is not None:
        overrides["progress"] = progress
    cfg = load_config(cfg_path, {"run": overrides} if overrides else None)

    diag_level = cfg.run.diagnostics_level
    if diag_level >= 1:
        print(f"[run] config = {cfg_path}")
        print(f"[run] setup={cfg.setup.name} fit_z_vertex={cfg.fit.fit_z_vertex} "
              f"model={cfg.uncertainty.model} mc_smear={cfg.run.mc_smear}")
        print(f"[run] input={cfg.io.input_path} -> output={cfg.io.output_path}")

    events = _iter_source_events(cfg)
    if cfg.run.progress:
        events = tqdm(events, total=_n_expected(cfg), desc="EtapOmegaG", unit="evt")
    analysis = run_analysis(cfg, events)

    out_path = Path(cfg.io.output_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    f = write_init(str(out_path), cfg, snapshot_config_toml(cfg_path))
    try:
        n_sig = write_records(f, "sig", analysis.sig_records)
        n_ref = write_records(f, "ref", analysis.ref_records)
        cutflows = analysis.cut_flows()
        write_cutflow(f, cutflows)
    finally:
        f.close()

    if diag_level >= 1:
        print(f"[pipeline] Wrote {n_sig} signal and {n_ref} reference records to {out_path}")
        if diag_level >= 2:
            for name, counts in cutflows.items():
                print(f"[cutflow] {name}: " + ", ".join(f"{k}={v:g}" for k, v in counts.items()))

    return out_path


# ---------------------------------------------------------------------------
# Unified CLI entry point
# ---------------------------------------------------------------------------

app = typer.Typer(help="Kinematic-fit based eta' -> omega gamma selection (antfit.pipelines.core)")


@app.command()
def main(
    cfg_path: str = typer.Argument(
        ...,
        help="Path to TOML config file",
    ),
    max_events: Optional[int] = typer.Option(
        None,
        "--max-events",
        "-n",
        help="Stop after this many input events; overrides [run].max_events",
    ),
    mc_smear: Optional[bool] = typer.Option(
        None,
        "--mc-smear / --no-mc-smear",
        help="Enable or disable extra MC smearing; overrides [run].mc_smear when set",
    ),
    progress: Optional[bool] = typer.Option(
        None,
        "--progress / --no-progress",
        help="Show a progress bar; overrides [run].progress when set",
    ),
):
    """
    Run the EtapOmegaG selection for a single config.
    """
    out_path = run_pipeline(cfg_path, max_events=max_events, mc_smear=mc_smear, progress=progress)
    typer.echo(str(out_path))


if __name__ == "__main__":
    app()
