"""Interfaces for the collaborators of pseudo-likelihood training.

Exposes typed Protocols for potential computation and the optimizer engine.
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol, Tuple, TYPE_CHECKING, runtime_checkable

import numpy as np

if TYPE_CHECKING:
    from .graph import Graph
    from .weight_index import WeightSnapshot
    from .lbfgs import EngineOutcome, EngineProgress

__all__ = [
    "ObjectiveFn",
    "ProgressFn",
    "PotentialAdapter",
    "OptimizerEngine",
]

ObjectiveFn = Callable[[np.ndarray], Tuple[float, np.ndarray]]
# Returning True requests a stop.
ProgressFn = Callable[["EngineProgress"], bool]


@runtime_checkable
class PotentialAdapter(Protocol):
    """Recomputes node/edge potentials of a graph from typed weights."""

    def compute_potentials(self, graph: "Graph", weights: "WeightSnapshot") -> None:
        """Write node.potentials (n_classes,) and edge.potentials (rows, cols) in place."""
        ...


@runtime_checkable
class OptimizerEngine(Protocol):
    """Minimizes an objective returning (value, gradient)."""

    def minimize(
        self,
        objective: ObjectiveFn,
        x0: np.ndarray,
        progress: Optional[ProgressFn] = None,
    ) -> "EngineOutcome":
        ...
