# src/antfit/fit/select.py
from __future__ import annotations
from typing import Callable, Iterable, Optional, Tuple, TypeVar
import math

from .kinfit import FitResult

T = TypeVar("T")


def usable(result: Optional[FitResult]) -> bool:
    return result is not None and result.success and not math.isnan(result.probability)


def best_by(items: Iterable[T], key: Callable[[T], Optional[FitResult]]) -> Optional[Tuple[T, FitResult]]:
    """
    Single pass over `items`, keeping the item whose fit has the highest
    probability. Failed fits and NaN probabilities never win; on ties the
    earlier item stays. Returns (item, result) or None if nothing was usable.
    """
    best: Optional[Tuple[T, FitResult]] = None
    for item in items:
        result = key(item)
        if not usable(result):
            continue
        if best is None or result.probability > best[1].probability:
            best = (item, result)
    return best


def best_fit(results: Iterable[Optional[FitResult]]) -> Optional[FitResult]:
    best = best_by(results, lambda r: r)
    return None if best is None else best[1]
