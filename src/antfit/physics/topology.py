"""
Decay topologies as tagged trees.

A topology is built once from a declarative description and then only read:

    ("beam_proton", ["proton",
                     ("etaprime", ["photon",
                                   ("omega", ["photon",
                                              ("pi0", ["photon", "photon"])])])])

A plain string is a leaf (detected final-state particle), a (name, [children])
tuple is an internal node (resonance with nominal mass). The root is the
gamma-p production vertex, which carries no mass constraint.
"""
from __future__ import annotations
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Iterator, List, Tuple, Union

from .particles import ParticleType, get_type, BEAM_PROTON, PROTON
from ..config.errors import ConfigurationError

Description = Union[str, Tuple[str, list]]


@dataclass(frozen=True, eq=False)
class Node:
    ptype: ParticleType
    children: Tuple["Node", ...] = ()
    name: str = ""

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def walk(self) -> Iterator["Node"]:
        """Pre-order traversal, children in declaration order."""
        yield self
        for c in self.children:
            yield from c.walk()

    def leaves(self) -> List["Node"]:
        return [n for n in self.walk() if n.is_leaf]

    def internal_nodes(self) -> List["Node"]:
        return [n for n in self.walk() if not n.is_leaf]

    def decay_string(self) -> str:
        if self.is_leaf:
            return self.ptype.name
        return f"({self.ptype.name} -> " + " ".join(c.decay_string() for c in self.children) + ")"

    def __repr__(self) -> str:
        return f"Node({self.name!r}, {self.decay_string()})"


def build_topology(description: Description) -> Node:
    """Build and validate a topology tree; node names are unique per tree."""
    counts: Dict[str, int] = {}

    def unique_name(type_name: str) -> str:
        k = counts.get(type_name, 0)
        counts[type_name] = k + 1
        return type_name if k == 0 else f"{type_name}#{k}"

    def build(desc: Description) -> Node:
        if isinstance(desc, str):
            ptype = _lookup(desc)
            return Node(ptype, (), unique_name(ptype.name))
        try:
            type_name, children = desc
        except (TypeError, ValueError):
            raise ConfigurationError(f"Malformed topology description: {desc!r}") from None
        ptype = _lookup(type_name)
        name = unique_name(ptype.name)
        return Node(ptype, tuple(build(c) for c in children), name)

    root = build(description)
    validate_topology(root)
    return root


def _lookup(type_name: str) -> ParticleType:
    try:
        return get_type(type_name)
    except KeyError as exc:
        raise ConfigurationError(str(exc)) from None


def validate_topology(root: Node) -> None:
    """
    Raise ConfigurationError unless:
      - the root is the beam_proton production node,
      - exactly one proton leaf hangs directly below the root,
      - every leaf is a detectable final-state particle,
      - every internal non-root node has >= 2 daughters and a finite mass,
      - at least one photon leaf exists.
    """
    if root.ptype != BEAM_PROTON:
        raise ConfigurationError(f"Topology root must be 'beam_proton', got '{root.ptype.name}'")
    protons = [n for n in root.leaves() if n.ptype == PROTON]
    if len(protons) != 1:
        raise ConfigurationError(f"Topology needs exactly one proton leaf, found {len(protons)}")
    if protons[0] not in root.children:
        raise ConfigurationError("The proton leaf must be a direct daughter of the production node")
    for n in root.walk():
        if n.is_leaf:
            if not n.ptype.final_state:
                raise ConfigurationError(f"Leaf '{n.name}' is not a final-state particle")
            continue
        if n is root:
            if len(n.children) < 2:
                raise ConfigurationError("Production node needs the proton and at least one more daughter")
            continue
        if len(n.children) < 2:
            raise ConfigurationError(f"Node '{n.name}' needs at least two daughters")
        if n.ptype.final_state or not (n.ptype.mass > 0):
            raise ConfigurationError(f"Node '{n.name}' has no usable nominal mass")
    if not any(n.ptype.name == "photon" for n in root.leaves()):
        raise ConfigurationError("Topology has no photon leaves")


# --- Channel database -------------------------------------------------------

def _gg(meson: str) -> Tuple[str, list]:
    return (meson, ["photon", "photon"])


CHANNELS: Dict[str, Description] = {
    "Pi0_2g": ("beam_proton", ["proton", _gg("pi0")]),
    "Eta_2g": ("beam_proton", ["proton", _gg("eta")]),
    "EtaPrime_2g": ("beam_proton", ["proton", _gg("etaprime")]),
    "TwoPi0_4g": ("beam_proton", ["proton", _gg("pi0"), _gg("pi0")]),
    "Pi0Eta_4g": ("beam_proton", ["proton", _gg("pi0"), _gg("eta")]),
    "ThreePi0_6g": ("beam_proton", ["proton", _gg("pi0"), _gg("pi0"), _gg("pi0")]),
    "Omega_gPi0_3g": ("beam_proton", ["proton", ("omega", ["photon", _gg("pi0")])]),
    "EtaPrime_gOmega_ggPi0_4g": (
        "beam_proton", ["proton", ("etaprime", ["photon", ("omega", ["photon", _gg("pi0")])])]
    ),
    "EtaPrime_2Pi0Eta_6g": (
        "beam_proton", ["proton", ("etaprime", [_gg("pi0"), _gg("pi0"), _gg("eta")])]
    ),
}


@lru_cache(maxsize=None)
def get_channel(name: str) -> Node:
    desc = CHANNELS.get(name)
    if desc is None:
        raise ConfigurationError(f"Unknown channel '{name}'. Known: {sorted(CHANNELS)}")
    return build_topology(desc)
