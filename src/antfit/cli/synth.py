from __future__ import annotations

import typer
import numpy as np
from pathlib import Path
from typing import Optional

from antfit.config.load import load_config
from antfit.config.setups import get_setup
from antfit.io.event_store import write_events
from antfit.physics.uncertainties import make_uncertainty_model
from antfit.sim.synth import synth_events

app = typer.Typer(help="Synthetic gamma p event generation for antfit")

@app.command("generate")
def generate(
    cfg_path: str = typer.Argument(..., help="TOML config; [sim], [setup] and [uncertainty] are used"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Output event store (defaults to [io].input_path)"),
    n_events: Optional[int] = typer.Option(None, "--n-events", "-n", help="Overrides [sim].n_events"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Overrides [sim].seed"),
    no_smear: bool = typer.Option(False, "--no-smear", help="Skip detector resolution smearing"),
):
    """Generate MC events along the configured channels and write them as an HDF5 event store."""
    cfg = load_config(cfg_path)
    sim = cfg.sim
    setup = get_setup(cfg.setup.name)
    rng = np.random.default_rng(seed if seed is not None else sim.seed)
    model = None if no_smear else make_uncertainty_model(cfg.uncertainty, "smear_model")

    events = synth_events(
        n_events if n_events is not None else sim.n_events,
        sim.channels,
        setup,
        tuple(sim.beam_energy_range),
        tuple(sim.z_vertex_range),
        smear_model=model,
        tagger=sim.tagger_hits,
        rng=rng,
    )
    out_path = Path(out or cfg.io.input_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    write_events(str(out_path), events)
    if cfg.run.diagnostics_level >= 1:
        n_cand = sum(len(ev.candidates) for ev in events)
        print(f"[synth] {len(events)} events, {n_cand} candidates")
    typer.echo(f"Wrote {out_path}")

if __name__ == "__main__":
    app()
