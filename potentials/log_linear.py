"""Log-linear potentials for pairwise CRFs.

Node potential:  φ_n(c)     = exp(W_type[c] · x_n)
Edge potential:  ψ_e(c1,c2) = exp(Σ_f x_e[f] · W_type[f, c1, c2])

Exponents are clipped to keep potentials finite for large weights.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from crf.graph import Graph
from crf.interfaces import PotentialAdapter
from crf.weight_index import WeightSnapshot

__all__ = ["LogLinearPotentials", "node_log_potentials", "edge_log_potentials"]


def node_log_potentials(weights: np.ndarray, features: np.ndarray) -> np.ndarray:
    """W @ x for a (n_classes × n_features) weight matrix."""
    assert weights.shape[1] == features.shape[0], "node feature length mismatch"
    return weights @ features


def edge_log_potentials(weights: np.ndarray, features: np.ndarray) -> np.ndarray:
    """Feature-weighted sum of stacked (features, rows, cols) matrices."""
    assert weights.shape[0] == features.shape[0], "edge feature length mismatch"
    return np.tensordot(features, weights, axes=(0, 0))


@dataclass
class LogLinearPotentials(PotentialAdapter):
    """Default potential adapter: exponentiated linear scores."""

    max_log_potential: float = 700.0

    def compute_potentials(self, graph: Graph, weights: WeightSnapshot) -> None:
        assert self.max_log_potential > 0.0, "max_log_potential must be positive"
        lim = float(self.max_log_potential)
        for node in graph.nodes:
            logp = node_log_potentials(weights.node(node.type_id), node.features)
            node.potentials = np.exp(np.clip(logp, -lim, lim))
        for edge in graph.edges:
            logp = edge_log_potentials(weights.edge(edge.type_id), edge.features)
            edge.potentials = np.exp(np.clip(logp, -lim, lim))
