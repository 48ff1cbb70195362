from __future__ import annotations
from .schemas import Config
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
import json

try:
    import tomllib  # py311+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # py<=310


def _deep_update(base: Dict[str, Any], extra: Mapping[str, Any]) -> Dict[str, Any]:
    for k, v in extra.items():
        if isinstance(v, Mapping) and isinstance(base.get(k), dict):
            _deep_update(base[k], v)
        else:
            base[k] = v
    return base


def load_config(path: str | Path, overrides: Optional[Mapping[str, Any]] = None) -> Config:
    """
    Parse a TOML file into a validated Config.

    overrides is a nested mapping merged over the file contents before
    validation, e.g. {"run": {"max_events": 100}} from the CLI.
    """
    p = Path(path)
    data = tomllib.loads(p.read_text())
    if overrides:
        _deep_update(data, overrides)
    return Config(**data)

def snapshot_config_toml(path: str | Path) -> str:
    """Return the raw TOML text for embedding in HDF5 metadata."""
    return Path(path).read_text()

def json_dumps(obj) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)
