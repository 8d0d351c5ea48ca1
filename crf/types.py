"""Node/edge types and the registry that owns their weight tensors.

A node type holds a (n_classes × n_features) matrix. An edge type holds one
(n_rows × n_cols) matrix per edge feature, stacked as weights[feature], and a
sharing mode per feature:

    Independent()     every cell is its own parameter
    Symmetric()       W[r, c] and W[c, r] are one parameter
    TransposeOf(k)    W_f = W_k^T, no new parameters
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Sequence, Tuple, Union

import numpy as np

__all__ = [
    "Independent",
    "Symmetric",
    "TransposeOf",
    "SharingMode",
    "parse_sharing_mode",
    "NodeType",
    "EdgeType",
    "TypeRegistry",
]


@dataclass(frozen=True)
class Independent:
    """Each weight cell is learned on its own."""


@dataclass(frozen=True)
class Symmetric:
    """Off-diagonal pairs share one weight; requires a square matrix."""


@dataclass(frozen=True)
class TransposeOf:
    """Reuse an earlier feature's weights, transposed."""

    feature: int


SharingMode = Union[Independent, Symmetric, TransposeOf]

_LEGACY_CODES = {0: "symmetric", 1: "independent", 2: "transpose"}


def parse_sharing_mode(token: Union[str, int], feature: int) -> SharingMode:
    """Parse a mode token for edge feature ``feature``.

    Accepts ``independent``, ``symmetric``, ``transpose`` (previous feature),
    ``transpose:<k>`` and the numeric codes 0/1/2 (symmetric, independent,
    transpose of previous).
    """
    if isinstance(token, int):
        if token not in _LEGACY_CODES:
            raise ValueError(f"Unknown sharing mode code: {token}")
        token = _LEGACY_CODES[token]
    text = str(token).strip().lower()
    if text.isdigit():
        return parse_sharing_mode(int(text), feature)
    if text == "independent":
        return Independent()
    if text == "symmetric":
        return Symmetric()
    if text == "transpose":
        return TransposeOf(feature - 1)
    if text.startswith("transpose:"):
        return TransposeOf(int(text.split(":", 1)[1]))
    raise ValueError(f"Unknown sharing mode: {token!r}")


@dataclass
class NodeType:
    """A family of nodes sharing one (n_classes × n_features) weight matrix."""

    type_id: str
    weights: np.ndarray

    def __post_init__(self) -> None:
        self.weights = np.array(self.weights, dtype=float)
        assert self.weights.ndim == 2, "node weights must be a matrix"

    @classmethod
    def zeros(cls, type_id: str, n_classes: int, n_features: int) -> "NodeType":
        assert n_classes > 0 and n_features > 0, "node type dimensions must be positive"
        return cls(type_id=type_id, weights=np.zeros((n_classes, n_features)))

    @property
    def n_classes(self) -> int:
        return int(self.weights.shape[0])

    @property
    def n_features(self) -> int:
        return int(self.weights.shape[1])


@dataclass
class EdgeType:
    """A family of edges sharing per-feature (n_rows × n_cols) weight matrices."""

    type_id: str
    weights: np.ndarray
    modes: Tuple[SharingMode, ...] = ()

    def __post_init__(self) -> None:
        self.weights = np.array(self.weights, dtype=float)
        assert self.weights.ndim == 3, "edge weights must be stacked as (features, rows, cols)"
        if not self.modes:
            self.modes = tuple(Independent() for _ in range(self.weights.shape[0]))
        self.modes = tuple(self.modes)

    @classmethod
    def zeros(
        cls,
        type_id: str,
        n_rows: int,
        n_cols: int,
        modes: Sequence[SharingMode],
    ) -> "EdgeType":
        assert len(modes) > 0, "at least one edge feature required"
        return cls(
            type_id=type_id,
            weights=np.zeros((len(modes), n_rows, n_cols)),
            modes=tuple(modes),
        )

    @property
    def n_features(self) -> int:
        return int(self.weights.shape[0])

    @property
    def shape(self) -> Tuple[int, int]:
        return int(self.weights.shape[1]), int(self.weights.shape[2])


@dataclass
class TypeRegistry:
    """Owns node and edge types in insertion order, addressed by type id."""

    _node_types: Dict[str, NodeType] = field(default_factory=dict, init=False, repr=False)
    _edge_types: Dict[str, EdgeType] = field(default_factory=dict, init=False, repr=False)

    def add_node_type(self, node_type: NodeType) -> NodeType:
        if node_type.type_id in self._node_types:
            raise ValueError(f"Duplicate node type id: {node_type.type_id!r}")
        self._node_types[node_type.type_id] = node_type
        return node_type

    def add_edge_type(self, edge_type: EdgeType) -> EdgeType:
        if edge_type.type_id in self._edge_types:
            raise ValueError(f"Duplicate edge type id: {edge_type.type_id!r}")
        self._edge_types[edge_type.type_id] = edge_type
        return edge_type

    def node_type(self, type_id: str) -> NodeType:
        try:
            return self._node_types[type_id]
        except KeyError:
            raise KeyError(f"Unknown node type: {type_id!r}") from None

    def edge_type(self, type_id: str) -> EdgeType:
        try:
            return self._edge_types[type_id]
        except KeyError:
            raise KeyError(f"Unknown edge type: {type_id!r}") from None

    def has_node_type(self, type_id: str) -> bool:
        return type_id in self._node_types

    def has_edge_type(self, type_id: str) -> bool:
        return type_id in self._edge_types

    @property
    def node_types(self) -> List[NodeType]:
        return list(self._node_types.values())

    @property
    def edge_types(self) -> List[EdgeType]:
        return list(self._edge_types.values())

    def __iter__(self) -> Iterator[Union[NodeType, EdgeType]]:
        yield from self._node_types.values()
        yield from self._edge_types.values()
