"""Negative pseudo-log-likelihood and its analytic gradient.

For a node n with true class t and neighbours m fixed at their true labels:

    log p(c) = log φ_n(c) + Σ_e log ψ_e(c, T[m])      (n indexes rows of ψ_e)
    loss_n   = log Σ_c p(c) - log p(t)

With log-linear potentials the gradient w.r.t. every cell that produced p(c)
is feature · (belief(c) - 1{c == t}). Tied cells share a flat index and their
contributions accumulate on it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
from scipy.special import logsumexp

from .graph import Graph, GroundTruth, Node
from .interfaces import PotentialAdapter
from .weight_index import WeightIndex, WeightSnapshot

__all__ = [
    "DEFAULT_REGULARIZATION",
    "materialize_weights",
    "local_conditional_log_potentials",
    "node_beliefs",
    "compute_loss_and_gradient",
    "add_l2_regularization",
    "PseudoLikelihoodObjective",
]

DEFAULT_REGULARIZATION = 10.0


def materialize_weights(index: WeightIndex, x: np.ndarray) -> WeightSnapshot:
    return index.materialize(x)


def local_conditional_log_potentials(graph: Graph, node: Node, ground_truth: GroundTruth) -> np.ndarray:
    """Log potentials over the node's classes with neighbours fixed at their true labels."""
    assert node.potentials is not None, "node potentials have not been computed"
    with np.errstate(divide="ignore"):
        logp = np.log(node.potentials)
        for edge in graph.incident_edges(node.node_id):
            assert edge.potentials is not None, "edge potentials have not been computed"
            label = ground_truth[edge.other(node.node_id)]
            if edge.node1 == node.node_id:
                factor = edge.potentials[:, label]
            else:
                factor = edge.potentials[label, :]
            logp = logp + np.log(factor)
    return logp


def node_beliefs(graph: Graph, ground_truth: GroundTruth) -> Dict[int, np.ndarray]:
    """Normalized local conditionals for every node (potentials must be current)."""
    out: Dict[int, np.ndarray] = {}
    for node in graph.nodes:
        logp = local_conditional_log_potentials(graph, node, ground_truth)
        out[node.node_id] = np.exp(logp - logsumexp(logp))
    return out


def _accumulate_graph(graph: Graph, ground_truth: GroundTruth, index: WeightIndex, g: np.ndarray) -> float:
    fx = 0.0
    for node in graph.nodes:
        t = int(ground_truth[node.node_id])
        logp = local_conditional_log_potentials(graph, node, ground_truth)
        log_z = float(logsumexp(logp))
        fx += log_z - float(logp[t])
        # belief - indicator
        delta = np.exp(logp - log_z)
        delta[t] -= 1.0
        np.add.at(g, index.node_map(node.type_id), np.outer(delta, node.features))
        for edge in graph.incident_edges(node.node_id):
            maps = index.edge_map(edge.type_id)
            if edge.node1 == node.node_id:
                cells = maps[:, :, ground_truth[edge.node2]]
            else:
                cells = maps[:, ground_truth[edge.node1], :]
            np.add.at(g, cells, np.outer(edge.features, delta))
    return fx


def compute_loss_and_gradient(
    graphs: Sequence[Graph],
    ground_truth: Sequence[GroundTruth],
    index: WeightIndex,
    weights: WeightSnapshot,
    adapter: PotentialAdapter,
) -> Tuple[float, np.ndarray]:
    """Unregularized negative pseudo-log-likelihood summed over graphs."""
    assert len(graphs) == len(ground_truth), "graphs/ground_truth length mismatch"
    fx = 0.0
    g = np.zeros(index.n_weights)
    for graph, truth in zip(graphs, ground_truth):
        adapter.compute_potentials(graph, weights)
        fx += _accumulate_graph(graph, truth, index, g)
    return float(fx), g


def add_l2_regularization(
    x: np.ndarray, fx: float, g: np.ndarray, lam: float = DEFAULT_REGULARIZATION
) -> Tuple[float, np.ndarray]:
    """fx + λ Σ x², g + 2λx."""
    assert lam >= 0.0, "regularization must be non-negative"
    x = np.asarray(x, dtype=float)
    return float(fx + lam * float(x @ x)), g + 2.0 * lam * x


@dataclass
class PseudoLikelihoodObjective:
    """Callable x -> (fx, g) over a fixed dataset; stateless between calls."""

    graphs: Sequence[Graph]
    ground_truth: Sequence[GroundTruth]
    index: WeightIndex
    adapter: PotentialAdapter
    regularization: float = DEFAULT_REGULARIZATION

    n_evaluations: int = field(default=0, init=False)
    last_snapshot: Optional[WeightSnapshot] = field(default=None, init=False, repr=False)

    def __call__(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        x = np.asarray(x, dtype=float)
        snapshot = materialize_weights(self.index, x)
        fx, g = compute_loss_and_gradient(self.graphs, self.ground_truth, self.index, snapshot, self.adapter)
        fx, g = add_l2_regularization(x, fx, g, self.regularization)
        self.n_evaluations += 1
        self.last_snapshot = snapshot
        return fx, g
