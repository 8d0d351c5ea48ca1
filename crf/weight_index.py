"""Mapping between typed weight tensors and the flat parameter vector.

Each weight cell stores the position of the flat parameter it reads from.
Tied cells (symmetric pairs, transposed features) hold the same position, so
gradients accumulated per cell add up on the shared parameter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

import numpy as np

from .errors import WeightSharingError
from .types import EdgeType, Independent, NodeType, Symmetric, TransposeOf, TypeRegistry

__all__ = [
    "WeightIndex",
    "WeightSnapshot",
    "build_weight_index",
    "symmetric_index_map",
]


@dataclass(frozen=True)
class WeightSnapshot:
    """Typed weights materialized from one flat parameter vector."""

    node_weights: Mapping[str, np.ndarray]
    edge_weights: Mapping[str, np.ndarray]

    def node(self, type_id: str) -> np.ndarray:
        return self.node_weights[type_id]

    def edge(self, type_id: str) -> np.ndarray:
        return self.edge_weights[type_id]

    def write_to(self, registry: TypeRegistry) -> None:
        """Copy the snapshot into the registry's weight tensors in place."""
        for type_id, w in self.node_weights.items():
            registry.node_type(type_id).weights[...] = w
        for type_id, w in self.edge_weights.items():
            registry.edge_type(type_id).weights[...] = w


@dataclass
class WeightIndex:
    """Index maps for every node/edge type plus the flat parameter count."""

    node_maps: Dict[str, np.ndarray] = field(default_factory=dict)
    edge_maps: Dict[str, np.ndarray] = field(default_factory=dict)
    n_weights: int = 0

    def node_map(self, type_id: str) -> np.ndarray:
        return self.node_maps[type_id]

    def edge_map(self, type_id: str) -> np.ndarray:
        return self.edge_maps[type_id]

    def materialize(self, x: np.ndarray) -> WeightSnapshot:
        """Fan ``x`` out to every typed cell (tied cells receive equal values)."""
        x = np.asarray(x, dtype=float)
        assert x.shape == (self.n_weights,), "parameter vector has wrong length"
        return WeightSnapshot(
            node_weights={k: x[m] for k, m in self.node_maps.items()},
            edge_weights={k: x[m] for k, m in self.edge_maps.items()},
        )

    def gather(self, registry: TypeRegistry) -> np.ndarray:
        """Flat vector read back from the registry's current weights.

        Tied cells are assumed consistent; the last cell written wins.
        """
        x = np.zeros(self.n_weights)
        for type_id, m in self.node_maps.items():
            x[m] = registry.node_type(type_id).weights
        for type_id, m in self.edge_maps.items():
            x[m] = registry.edge_type(type_id).weights
        return x

    def used_indices(self) -> np.ndarray:
        maps = [m.ravel() for m in self.node_maps.values()]
        maps += [m.ravel() for m in self.edge_maps.values()]
        if not maps:
            return np.zeros(0, dtype=int)
        return np.unique(np.concatenate(maps))

    def to_records(self) -> List[Dict[str, Any]]:
        """Long-format rows (kind, type_id, feature, row, col, index)."""
        rows: List[Dict[str, Any]] = []
        for type_id, m in self.node_maps.items():
            for (r, c), idx in np.ndenumerate(m):
                rows.append({"kind": "node", "type_id": type_id, "feature": -1, "row": r, "col": c, "index": int(idx)})
        for type_id, m in self.edge_maps.items():
            for (f, r, c), idx in np.ndenumerate(m):
                rows.append({"kind": "edge", "type_id": type_id, "feature": f, "row": r, "col": c, "index": int(idx)})
        return rows


def symmetric_index_map(n: int, base: int) -> np.ndarray:
    """Index map of a symmetric n×n matrix starting at ``base``.

    Off-diagonal cells are assigned first, leaving one slot per row for its
    diagonal; diagonals are filled afterwards. The result numbers the upper
    triangle (diagonal included) row by row.
    """
    assert n > 0, "symmetric matrix must be non-empty"
    m = np.full((n, n), -1, dtype=np.int64)
    m[0, 0] = base
    index = base
    for row in range(n):
        index += 1
        for col in range(row + 1, n):
            m[row, col] = index
            m[col, row] = index
            index += 1
    previous = base
    for d in range(1, n):
        previous = previous + (n - d) + 1
        m[d, d] = previous
    return m


def _dense_index_map(rows: int, cols: int, base: int) -> np.ndarray:
    return base + np.arange(rows * cols, dtype=np.int64).reshape(rows, cols)


def _edge_index_maps(edge_type: EdgeType, base: int) -> tuple[np.ndarray, int]:
    n_features = edge_type.n_features
    rows, cols = edge_type.shape
    if len(edge_type.modes) != n_features:
        raise WeightSharingError(
            f"Edge type {edge_type.type_id!r} has {n_features} features but {len(edge_type.modes)} modes"
        )
    if rows == 0 or cols == 0:
        raise WeightSharingError(f"Edge type {edge_type.type_id!r} has an empty weight matrix")
    maps = np.full((n_features, rows, cols), -1, dtype=np.int64)
    n_new = 0
    for feature, mode in enumerate(edge_type.modes):
        if isinstance(mode, Independent):
            maps[feature] = _dense_index_map(rows, cols, base + n_new)
            n_new += rows * cols
        elif isinstance(mode, Symmetric):
            if rows != cols:
                raise WeightSharingError(
                    f"Edge type {edge_type.type_id!r} feature {feature}: symmetric sharing needs a square matrix, got {rows}x{cols}"
                )
            maps[feature] = symmetric_index_map(rows, base + n_new)
            n_new += rows * (rows + 1) // 2
        elif isinstance(mode, TransposeOf):
            if not 0 <= mode.feature < feature:
                raise WeightSharingError(
                    f"Edge type {edge_type.type_id!r} feature {feature}: transpose must reference an earlier feature, got {mode.feature}"
                )
            if rows != cols:
                raise WeightSharingError(
                    f"Edge type {edge_type.type_id!r} feature {feature}: transposed sharing needs a square matrix, got {rows}x{cols}"
                )
            maps[feature] = maps[mode.feature].T
        else:
            raise WeightSharingError(f"Unsupported sharing mode: {mode!r}")
    return maps, n_new


def _node_index_map(node_type: NodeType, base: int) -> tuple[np.ndarray, int]:
    rows, cols = node_type.weights.shape
    return _dense_index_map(rows, cols, base), rows * cols


def build_weight_index(registry: TypeRegistry) -> WeightIndex:
    """Assign flat positions to node types, then edge types, in registry order."""
    index = WeightIndex()
    n_weights = 0
    for node_type in registry.node_types:
        m, n_new = _node_index_map(node_type, n_weights)
        index.node_maps[node_type.type_id] = m
        n_weights += n_new
    for edge_type in registry.edge_types:
        maps, n_new = _edge_index_maps(edge_type, n_weights)
        index.edge_maps[edge_type.type_id] = maps
        n_weights += n_new
    index.n_weights = n_weights
    assert index.used_indices().size == n_weights, "every flat position must be referenced"
    return index
