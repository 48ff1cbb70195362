"""
Kinematic fit with additional invariant-mass constraints along a decay tree.

The fitter owns a topology (see antfit.physics.topology) and loops over the
assignments of measured photons to the photon leaves of that tree. Only
assignments that differ under the tree's symmetries are visited: swapping the
two photons of a pi0 or swapping two identical pi0 -> gg sub-trees gives the
same fit and is skipped.

    fitter = TreeFitter("2pi0", get_channel("TwoPi0_4g"), model)
    fitter.set_iteration_filter(lambda m: all(abs(x - 135) < 40 for x in m.of_type("pi0")))
    fitter.fit(beam_energy, proton, photons)   # best over permutations
    for result in fitter.fits(): ...            # or every permutation
"""
from __future__ import annotations
from itertools import permutations
from typing import Callable, Collection, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union
import math

import numpy as np

from ..physics.kinematics import inv_mass
from ..physics.particles import Particle, PHOTON
from ..physics.topology import Node, validate_topology
from ..physics.uncertainties import UncertaintyModel
from .kinfit import FitResult, KinFitter
from .select import best_fit
from .solver import FitSettings, FitStatus

Permutation = Tuple[int, ...]
Exclusion = Union[Callable[[Node], bool], Collection[str], None]


class NodeMasses(Mapping[str, float]):
    """Read-only view of unfitted invariant masses, keyed by node name."""

    def __init__(self, masses: Dict[str, float], types: Dict[str, str]):
        self._masses = masses
        self._types = types

    def __getitem__(self, name: str) -> float:
        return self._masses[name]

    def __iter__(self):
        return iter(self._masses)

    def __len__(self) -> int:
        return len(self._masses)

    def of_type(self, type_name: str) -> List[float]:
        return [m for n, m in self._masses.items() if self._types[n] == type_name]

    def __repr__(self) -> str:
        return f"NodeMasses({self._masses!r})"


def _exclusion(excluded: Exclusion) -> Callable[[Node], bool]:
    if excluded is None:
        return lambda node: False
    if callable(excluded):
        return excluded
    names = set(excluded)
    return lambda node: node.ptype.name in names or node.name in names


def unique_permutations(root: Node, photon_leaves: Sequence[Node]) -> List[Permutation]:
    """
    Photon-to-leaf assignments that are distinct under the tree's symmetries.

    perm[i] is the photon placed on photon_leaves[i]. Two assignments are the
    same if they give the same canonical key, i.e. the same tree of (type,
    unordered daughters) with photon indices on the leaves. The first
    permutation (in itertools order) of every class is kept.
    """
    slot = {id(leaf): i for i, leaf in enumerate(photon_leaves)}

    def key(node: Node, perm: Permutation) -> str:
        if node.is_leaf:
            if node.ptype == PHOTON:
                return f"g{perm[slot[id(node)]]}"
            return node.ptype.name
        return node.ptype.name + "(" + ",".join(sorted(key(c, perm) for c in node.children)) + ")"

    seen = set()
    out: List[Permutation] = []
    for perm in permutations(range(len(photon_leaves))):
        k = key(root, perm)
        if k not in seen:
            seen.add(k)
            out.append(perm)
    return out


class TreeFitter(KinFitter):

    def __init__(
        self,
        name: str,
        topology: Node,
        uncertainty_model: UncertaintyModel,
        fit_z_vertex: bool = False,
        excluded: Exclusion = None,
        settings: FitSettings | None = None,
    ):
        super().__init__(name, uncertainty_model, fit_z_vertex=fit_z_vertex, settings=settings)
        validate_topology(topology)
        self.topology = topology
        self._leaves = [n for n in topology.leaves() if n.ptype == PHOTON]
        self._internal = [n for n in topology.internal_nodes() if n is not topology]
        is_excluded = _exclusion(excluded)
        self._constrained = [n for n in self._internal if not is_excluded(n)]

        # rows in the (proton, leaf photons...) four-momentum table
        leaf_row = {id(leaf): 1 + i for i, leaf in enumerate(self._leaves)}
        self._rows: Dict[str, np.ndarray] = {
            n.name: np.array([leaf_row[id(l)] for l in n.leaves()], dtype=int)
            for n in self._internal
        }
        self._nominal = np.array([n.ptype.mass for n in self._constrained])
        self._types = {n.name: n.ptype.name for n in self._internal}

        self.permutations = unique_permutations(topology, self._leaves)
        self._filter: Optional[Callable[[NodeMasses], object]] = None
        self._max_fits: Optional[int] = None
        # selected lazily on the first next_fit() after a reset
        self._queue: Optional[List[Permutation]] = None
        self._pos = 0

    # --- topology queries -----------------------------------------------------

    @property
    def n_photons(self) -> int:
        return len(self._leaves)

    @property
    def constrained_nodes(self) -> List[str]:
        return [n.name for n in self._constrained]

    def get_tree_nodes(self, type_name: str) -> List[str]:
        return [n.name for n in self._internal if n.ptype.name == type_name]

    def photon_daughters(self, node_name: str) -> List[int]:
        """Leaf indices of the photons hanging directly below a node."""
        node = next(n for n in self.topology.walk() if n.name == node_name)
        return [i for i, leaf in enumerate(self._leaves) if any(leaf is c for c in node.children)]

    # --- iteration ------------------------------------------------------------

    def set_iteration_filter(self, fn: Optional[Callable[[NodeMasses], object]], max_fits: Optional[int] = None) -> None:
        """
        Without max_fits, fn(masses) -> bool decides whether a permutation is
        fitted at all. With max_fits, fn(masses) -> float is a score and only
        the max_fits best-scoring permutations are fitted.
        """
        if max_fits is not None and max_fits < 1:
            raise ValueError(f"max_fits must be >= 1, got {max_fits}")
        self._filter = fn
        self._max_fits = max_fits
        self._reset()

    def set_photons(self, photons: Sequence[Particle]) -> None:
        if len(photons) != self.n_photons:
            raise ValueError(
                f"{self.name}: topology has {self.n_photons} photon leaves, got {len(photons)} photons"
            )
        super().set_photons(photons)

    def _reset(self) -> None:
        super()._reset()
        self._queue = None
        self._pos = 0

    def node_masses(self, perm: Permutation) -> NodeMasses:
        lvs = np.array([self._photons[i].lv for i in perm])
        masses = {name: inv_mass(lvs[rows - 1].sum(axis=0)) for name, rows in self._rows.items()}
        return NodeMasses(masses, self._types)

    def _select_permutations(self) -> List[Permutation]:
        fn = self._filter
        if fn is None:
            return list(self.permutations)
        if self._max_fits is None:
            return [p for p in self.permutations if fn(self.node_masses(p))]
        scored = []
        for idx, p in enumerate(self.permutations):
            score = float(fn(self.node_masses(p)))
            if math.isnan(score):
                continue
            scored.append((-score, idx, p))
        scored.sort()
        return [p for _, _, p in scored[: self._max_fits]]

    def next_fit(self) -> Optional[FitResult]:
        """Fit the next permutation; None once all permutations are done."""
        self._require_configured()
        if self._queue is None:
            self._queue = self._select_permutations()
        if self._pos >= len(self._queue):
            return None
        perm = self._queue[self._pos]
        self._pos += 1
        return self._fit_photons([self._photons[i] for i in perm], assignment=perm)

    def fits(self) -> Iterator[FitResult]:
        while (result := self.next_fit()) is not None:
            yield result

    def do_fit(self) -> FitResult:
        """
        Best fit over the remaining permutations. If none succeeds, the last
        failure is returned (NotConverged if the iteration filter left nothing).
        """
        self._require_configured()
        tried: List[FitResult] = []

        def track():
            for r in self.fits():
                tried.append(r)
                yield r

        best = best_fit(track())
        if best is not None:
            return best
        return tried[-1] if tried else FitResult(FitStatus.NotConverged)

    # --- constraints ----------------------------------------------------------

    def _constraints(self, x: np.ndarray) -> np.ndarray:
        lvs = self._final_state(x)
        kin = self._kinematic_constraints(x, lvs)
        if not self._constrained:
            return kin
        masses = np.array([inv_mass(lvs[self._rows[n.name]].sum(axis=0)) for n in self._constrained])
        return np.concatenate((kin, masses - self._nominal))

    def _fitted_nodes(self, lvs: np.ndarray) -> Dict[str, np.ndarray]:
        return {name: lvs[rows].sum(axis=0) for name, rows in self._rows.items()}
