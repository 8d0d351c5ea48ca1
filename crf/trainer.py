"""Training dataset and the pseudo-likelihood training driver.

The driver runs BUILD_INDEX -> INIT_PARAMS -> OPTIMIZE -> REPORT -> DONE:
validate the dataset, map typed weights onto a flat vector, hand the
regularized objective to an L-BFGS engine and write the final parameters back
into the type registry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import warnings

import numpy as np

from potentials.log_linear import LogLinearPotentials

from .errors import AllocationError, DatasetValidationError
from .graph import Graph, GroundTruth
from .interfaces import OptimizerEngine, PotentialAdapter
from .lbfgs import EngineOutcome, EngineProgress, EngineStatus, LBFGSConfig, ScipyLBFGS
from .objective import DEFAULT_REGULARIZATION, PseudoLikelihoodObjective
from .types import TypeRegistry
from .weight_index import WeightIndex, build_weight_index

__all__ = [
    "TrainingPhase",
    "TerminationStatus",
    "ProgressReport",
    "TrainingResult",
    "TrainingDataSet",
    "PseudoLikelihoodTrainer",
    "classify_status",
]

ProgressReport = EngineProgress
ProgressCallback = Callable[[ProgressReport], None]
StopCriterion = Callable[[ProgressReport], bool]


class TrainingPhase(str, Enum):
    IDLE = "idle"
    BUILD_INDEX = "build_index"
    INIT_PARAMS = "init_params"
    OPTIMIZE = "optimize"
    REPORT = "report"
    DONE = "done"


class TerminationStatus(str, Enum):
    CONVERGED = "converged"
    STOPPED_BY_CRITERIA = "stopped_by_criteria"
    MAX_ITERATIONS = "max_iterations"
    ERROR = "error"


def classify_status(code: int) -> TerminationStatus:
    if code == EngineStatus.CONVERGENCE:
        return TerminationStatus.CONVERGED
    if code == EngineStatus.STOP:
        return TerminationStatus.STOPPED_BY_CRITERIA
    if code == EngineStatus.MAX_ITERATIONS:
        return TerminationStatus.MAX_ITERATIONS
    return TerminationStatus.ERROR


@dataclass
class TrainingResult:
    status: TerminationStatus
    fx: float
    x: np.ndarray
    iterations: int
    n_evaluations: int
    n_weights: int
    error_code: Optional[int] = None
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is not TerminationStatus.ERROR


@dataclass
class TrainingDataSet:
    """Type registry, graphs and their ground truth, plus the derived weight index."""

    registry: TypeRegistry = field(default_factory=TypeRegistry)
    graphs: List[Graph] = field(default_factory=list)
    ground_truth: List[Dict[int, int]] = field(default_factory=list)
    weight_index: Optional[WeightIndex] = field(default=None, init=False, repr=False)

    def add_graph(self, graph: Graph, ground_truth: GroundTruth) -> None:
        self.graphs.append(graph)
        self.ground_truth.append({int(k): int(v) for k, v in ground_truth.items()})

    @property
    def n_weights(self) -> int:
        return 0 if self.weight_index is None else self.weight_index.n_weights

    def build_weight_index(self) -> WeightIndex:
        self.weight_index = build_weight_index(self.registry)
        return self.weight_index

    def validate(self) -> None:
        """Raise DatasetValidationError on any inconsistency between graphs, labels and types."""
        if len(self.graphs) != len(self.ground_truth):
            raise DatasetValidationError(
                f"{len(self.graphs)} graphs but {len(self.ground_truth)} ground-truth maps"
            )
        reg = self.registry
        for gi, (graph, truth) in enumerate(zip(self.graphs, self.ground_truth)):
            for node in graph.nodes:
                where = f"graph {gi}, node {node.node_id}"
                if not reg.has_node_type(node.type_id):
                    raise DatasetValidationError(f"{where}: unknown node type {node.type_id!r}")
                ntype = reg.node_type(node.type_id)
                if node.features.shape[0] != ntype.n_features:
                    raise DatasetValidationError(
                        f"{where}: {node.features.shape[0]} features, type {ntype.type_id!r} expects {ntype.n_features}"
                    )
                if node.node_id not in truth:
                    raise DatasetValidationError(f"{where}: missing ground-truth label")
                label = truth[node.node_id]
                if isinstance(label, bool) or not isinstance(label, (int, np.integer)):
                    raise DatasetValidationError(f"{where}: label {label!r} is not an integer class")
                if not 0 <= label < ntype.n_classes:
                    raise DatasetValidationError(
                        f"{where}: label {label} outside [0, {ntype.n_classes})"
                    )
            for edge in graph.edges:
                where = f"graph {gi}, edge ({edge.node1}, {edge.node2})"
                if not reg.has_edge_type(edge.type_id):
                    raise DatasetValidationError(f"{where}: unknown edge type {edge.type_id!r}")
                etype = reg.edge_type(edge.type_id)
                if edge.features.shape[0] != etype.n_features:
                    raise DatasetValidationError(
                        f"{where}: {edge.features.shape[0]} features, type {etype.type_id!r} expects {etype.n_features}"
                    )
                expected = (
                    reg.node_type(graph.node(edge.node1).type_id).n_classes,
                    reg.node_type(graph.node(edge.node2).type_id).n_classes,
                )
                if etype.shape != expected:
                    raise DatasetValidationError(
                        f"{where}: edge type {etype.type_id!r} is {etype.shape}, endpoints need {expected}"
                    )

    def train(self, **kwargs: Any) -> TrainingResult:
        """Train with a PseudoLikelihoodTrainer built from ``kwargs``."""
        return PseudoLikelihoodTrainer(dataset=self, **kwargs).train()


@dataclass
class PseudoLikelihoodTrainer:
    """Drives L-BFGS over the regularized negative pseudo-log-likelihood."""

    dataset: TrainingDataSet
    adapter: PotentialAdapter = field(default_factory=LogLinearPotentials)
    config: LBFGSConfig = field(default_factory=LBFGSConfig)
    engine: Optional[OptimizerEngine] = None
    regularization: float = DEFAULT_REGULARIZATION
    warm_start: bool = False  # start from the registry's weights instead of zeros
    stop_when: Optional[StopCriterion] = None

    on_progress: List[ProgressCallback] = field(default_factory=list)
    on_complete: List[Callable[[TrainingResult], None]] = field(default_factory=list)

    phase: TrainingPhase = field(default=TrainingPhase.IDLE, init=False)
    objective: Optional[PseudoLikelihoodObjective] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self._validate_configuration()
        if self.engine is None:
            self.engine = ScipyLBFGS(config=self.config)

    def _validate_configuration(self) -> None:
        assert self.regularization >= 0.0, "regularization must be non-negative"
        self.config.validate()

    def train(self) -> TrainingResult:
        ds = self.dataset
        ds.validate()

        self.phase = TrainingPhase.BUILD_INDEX
        index = ds.build_weight_index()

        self.phase = TrainingPhase.INIT_PARAMS
        x0 = self._initial_parameters(index)

        self.phase = TrainingPhase.OPTIMIZE
        self.objective = PseudoLikelihoodObjective(
            graphs=ds.graphs,
            ground_truth=ds.ground_truth,
            index=index,
            adapter=self.adapter,
            regularization=self.regularization,
        )
        assert self.engine is not None
        outcome = self.engine.minimize(self.objective, x0, progress=self._progress)

        self.phase = TrainingPhase.REPORT
        result = self._report(index, outcome)

        self.phase = TrainingPhase.DONE
        return result

    def _initial_parameters(self, index: WeightIndex) -> np.ndarray:
        try:
            if self.warm_start:
                return index.gather(self.dataset.registry)
            return np.zeros(index.n_weights)
        except MemoryError as exc:
            warnings.warn(
                f"Failed to allocate {index.n_weights} parameters; training aborted.",
                RuntimeWarning,
                stacklevel=3,
            )
            raise AllocationError(f"cannot allocate {index.n_weights} parameters") from exc

    def _progress(self, report: ProgressReport) -> bool:
        for cb in self.on_progress:
            cb(report)
        return bool(self.stop_when(report)) if self.stop_when is not None else False

    def _report(self, index: WeightIndex, outcome: EngineOutcome) -> TrainingResult:
        status = classify_status(outcome.status)
        x = np.array(outcome.x, dtype=float)
        # The last evaluated point may differ from the accepted one.
        index.materialize(x).write_to(self.dataset.registry)
        result = TrainingResult(
            status=status,
            fx=float(outcome.fx),
            x=x,
            iterations=int(outcome.iterations),
            n_evaluations=int(outcome.n_evaluations),
            n_weights=index.n_weights,
            error_code=int(outcome.status) if status is TerminationStatus.ERROR else None,
            message=outcome.message,
        )
        if status is TerminationStatus.ERROR:
            warnings.warn(
                f"L-BFGS terminated with error code {outcome.status}: {outcome.message}",
                RuntimeWarning,
                stacklevel=3,
            )
        elif status is TerminationStatus.MAX_ITERATIONS:
            warnings.warn(
                f"L-BFGS reached the iteration limit after {outcome.iterations} iterations (fx={outcome.fx:.6g}).",
                RuntimeWarning,
                stacklevel=3,
            )
        for cb in self.on_complete:
            cb(result)
        return result
