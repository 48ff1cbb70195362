"""
Columnar HDF5 output of analysis records.

Each record tree (e.g. "sig", "ref") becomes one group; every leaf field of
the (nested) record dataclasses becomes one dataset with one row per record.
Nested dataclasses map to subgroups, fixed-length tuples to 2D datasets:

/records/sig/common/tagg_w          (N,)
/records/sig/pi0/bachelor_e         (N, 2)
/records/sig/pi0/pp/missing_mass    (N,)
/cutflow/<name>                     attrs: {cut: count}
"""
from __future__ import annotations
from dataclasses import fields, is_dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence
import json
import h5py
import numpy as np

from ..config.schemas import Config
from ..config.load import json_dumps

FORMAT_VERSION = "1.0"


def write_init(path: str, cfg: Optional[Config] = None, config_text: str = "") -> h5py.File:
    f = h5py.File(path, "w")
    # Root attrs
    f.attrs["format_version"] = FORMAT_VERSION
    f.attrs["created_utc"] = datetime.now(timezone.utc).isoformat()
    f.attrs["software"] = "antfit 0.1.0"
    f.attrs["config_text"] = config_text

    meta = f.create_group("meta")
    if cfg is not None:
        meta.attrs["setup"] = cfg.setup.name
        meta.attrs["fit"] = json_dumps(cfg.fit.model_dump())
        meta.attrs["selection"] = json_dumps(cfg.selection.model_dump())
        meta.attrs["uncertainty"] = json_dumps(cfg.uncertainty.model_dump())
    return f


def _flatten(obj: Any, prefix: str, out: Dict[str, Any]) -> None:
    for fl in fields(obj):
        v = getattr(obj, fl.name)
        key = f"{prefix}{fl.name}"
        if is_dataclass(v):
            _flatten(v, key + "/", out)
        else:
            out[key] = v


def flatten_record(record: Any) -> Dict[str, Any]:
    """Nested dataclass -> {"a/b/c": value}."""
    out: Dict[str, Any] = {}
    _flatten(record, "", out)
    return out


def records_to_columns(records: Sequence[Any]) -> Dict[str, np.ndarray]:
    if not records:
        return {}
    rows = [flatten_record(r) for r in records]
    cols: Dict[str, np.ndarray] = {}
    for key in rows[0]:
        values = [row[key] for row in rows]
        arr = np.asarray(values)
        if arr.dtype.kind in "iub":
            arr = arr.astype(np.int64)
        else:
            arr = arr.astype(np.float64)
        cols[key] = arr
    return cols


def write_records(f: h5py.File, name: str, records: Sequence[Any], *, group: str = "/records") -> int:
    """Write one record tree; returns the number of rows written."""
    g = f.require_group(f"{group.rstrip('/')}/{name}")
    cols = records_to_columns(records)
    g.attrs["n_rows"] = len(records)
    for key, arr in cols.items():
        if key in g:
            del g[key]
        g.create_dataset(key, data=arr, compression="gzip")
    return len(records)


def write_cutflow(f: h5py.File, cutflows: Mapping[str, Mapping[str, float]]) -> None:
    g = f.require_group("cutflow")
    for name, counts in cutflows.items():
        sub = g.require_group(name)
        # keep insertion order: attrs alone are not ordered
        sub.attrs["order"] = json_dumps(list(counts))
        for cut, n in counts.items():
            sub.attrs[cut] = float(n)


def read_records(path: str, name: str, *, group: str = "/records") -> Dict[str, np.ndarray]:
    """Load one record tree back as {"a/b/c": array}."""
    out: Dict[str, np.ndarray] = {}
    with h5py.File(path, "r") as f:
        g = f[f"{group.rstrip('/')}/{name}"]

        def visit(key: str, obj) -> None:
            if isinstance(obj, h5py.Dataset):
                out[key] = obj[...]

        g.visititems(visit)
    return out


def read_cutflow(path: str) -> Dict[str, Dict[str, float]]:
    out: Dict[str, Dict[str, float]] = {}
    with h5py.File(path, "r") as f:
        for name, sub in f["cutflow"].items():
            order: List[str] = json.loads(sub.attrs["order"])
            out[name] = {cut: float(sub.attrs[cut]) for cut in order}
    return out
