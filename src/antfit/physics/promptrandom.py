# src/antfit/physics/promptrandom.py
from __future__ import annotations
from enum import Enum
from typing import Iterable, List, Sequence, Tuple
import math

from ..config.errors import ConfigurationError

Range = Tuple[float, float]


class Case(Enum):
    Prompt = "prompt"
    Random = "random"
    Outside = "outside"


class PromptRandomWindow:
    """
    Tagger-timing background subtraction.

    Prompt and random ranges are half-open [start, stop) in ns relative to the
    reference time and must be mutually disjoint. Random hits are weighted with
    -(prompt width / random width), so that summing weights over a flat
    accidental background under the prompt peak gives zero on average.

    The window is configured once; set_time() then classifies one tagger hit
    at a time and fill_weight() returns the weight of the current hit.
    """

    def __init__(self, prompt: Iterable[Sequence[float]] = (), random: Iterable[Sequence[float]] = ()):
        self.prompt_ranges: List[Range] = []
        self.random_ranges: List[Range] = []
        self.prompt_width = 0.0
        self.random_width = 0.0
        self._case = Case.Outside
        for r in prompt:
            self.add_prompt_range(r)
        for r in random:
            self.add_random_range(r)

    @classmethod
    def from_setup(cls, setup) -> "PromptRandomWindow":
        return cls(prompt=setup.prompt_ranges, random=setup.random_ranges)

    def _check(self, rng: Sequence[float]) -> Range:
        try:
            start, stop = float(rng[0]), float(rng[1])
        except (TypeError, IndexError, ValueError):
            raise ConfigurationError(f"Time range must be (start, stop), got {rng!r}") from None
        if not (math.isfinite(start) and math.isfinite(stop)) or not start < stop:
            raise ConfigurationError(f"Time range needs finite start < stop, got [{start}, {stop})")
        for a, b in self.prompt_ranges + self.random_ranges:
            if start < b and a < stop:
                raise ConfigurationError(
                    f"Time range [{start}, {stop}) overlaps existing range [{a}, {b})"
                )
        return start, stop

    def add_prompt_range(self, rng: Sequence[float]) -> None:
        r = self._check(rng)
        self.prompt_ranges.append(r)
        self.prompt_width += r[1] - r[0]

    def add_random_range(self, rng: Sequence[float]) -> None:
        r = self._check(rng)
        self.random_ranges.append(r)
        self.random_width += r[1] - r[0]

    @property
    def ratio(self) -> float:
        """prompt width / random width (0 if no random range is defined)."""
        if self.random_width == 0:
            return 0.0
        return self.prompt_width / self.random_width

    def classify(self, t: float) -> Case:
        for a, b in self.prompt_ranges:
            if a <= t < b:
                return Case.Prompt
        for a, b in self.random_ranges:
            if a <= t < b:
                return Case.Random
        return Case.Outside

    def set_time(self, t: float) -> Case:
        self._case = self.classify(t)
        return self._case

    @property
    def state(self) -> Case:
        return self._case

    def fill_weight(self) -> float:
        """+1 for Prompt, -ratio for Random, 0 for Outside (callers skip those)."""
        if self._case is Case.Prompt:
            return 1.0
        if self._case is Case.Random:
            return -self.ratio
        return 0.0
