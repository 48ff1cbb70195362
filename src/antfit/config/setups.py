# src/antfit/config/setups.py
from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

from .errors import ConfigurationError

Range = Tuple[float, float]


@dataclass(frozen=True)
class MCTaggerCfg:
    """Parameters to emulate tagger hits for simulated events."""
    random_prompt_ratio: float = 0.22       # random hits per ns relative to one prompt hit
    prompt_sigma: float = 0.87              # [ns]
    time_window: Range = (-120.0, 120.0)    # [ns]
    prompt_offset: float = -0.37            # [ns]


@dataclass(frozen=True)
class Setup:
    name: str
    electron_beam_energy: float                      # [MeV]
    prompt_ranges: Tuple[Range, ...]
    random_ranges: Tuple[Range, ...]
    mc_tagger: MCTaggerCfg = field(default_factory=MCTaggerCfg)


_EPT_2014 = Setup(
    name="Setup_2014_EPT",
    electron_beam_energy=1604.0,
    prompt_ranges=((-3.0, 2.0),),
    random_ranges=((-50.0, -5.0), (5.0, 50.0)),
)

SETUPS: Dict[str, Setup] = {
    s.name: s for s in (
        _EPT_2014,
        # wider windows used by the eta' -> omega gamma analysis
        replace(
            _EPT_2014,
            name="EtapOmegaG",
            prompt_ranges=((-7.0, 7.0),),
            random_ranges=((-65.0, -10.0), (10.0, 65.0)),
        ),
    )
}


def get_setup(name: str, prompt: Optional[list] = None, random: Optional[list] = None) -> Setup:
    """
    Look up a named setup; prompt/random (lists of [start, stop]) replace the
    setup's tagger ranges when given.
    """
    setup = SETUPS.get(name)
    if setup is None:
        raise ConfigurationError(f"Unknown setup '{name}'. Known: {sorted(SETUPS)}")
    if prompt is not None:
        setup = replace(setup, prompt_ranges=tuple(tuple(r) for r in prompt))
    if random is not None:
        setup = replace(setup, random_ranges=tuple(tuple(r) for r in random))
    return setup
