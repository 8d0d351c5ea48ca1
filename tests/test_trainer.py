from __future__ import annotations

import math
from typing import List

import numpy as np
import pytest

from crf.errors import AllocationError, DatasetValidationError, WeightSharingError
from crf.graph import Edge, Graph, Node
from crf.lbfgs import EngineOutcome, EngineStatus, LBFGSConfig
from crf.trainer import (
    ProgressReport,
    PseudoLikelihoodTrainer,
    TerminationStatus,
    TrainingDataSet,
    TrainingPhase,
    classify_status,
)
from crf.types import EdgeType, Independent, NodeType, Symmetric, TypeRegistry
from crf.weight_index import WeightIndex


def _single_node_dataset() -> TrainingDataSet:
    reg = TypeRegistry()
    reg.add_node_type(NodeType.zeros("n", 2, 1))
    ds = TrainingDataSet(registry=reg)
    ds.add_graph(Graph(nodes=[Node(node_id=0, type_id="n", features=[1.0])]), {0: 0})
    return ds


def _chain_dataset() -> TrainingDataSet:
    reg = TypeRegistry()
    reg.add_node_type(NodeType.zeros("n", 2, 2))
    reg.add_edge_type(EdgeType.zeros("e", 2, 2, [Symmetric()]))
    ds = TrainingDataSet(registry=reg)
    labels = [0, 0, 1, 1, 1, 0]
    g = Graph()
    for i, y in enumerate(labels):
        g.add_node(Node(node_id=i, type_id="n", features=[1.0, 1.0 if y else -1.0]))
    for i in range(len(labels) - 1):
        g.add_edge(Edge(node1=i, node2=i + 1, type_id="e", features=[1.0]))
    ds.add_graph(g, dict(enumerate(labels)))
    return ds


class _FakeEngine:
    def __init__(self, status: int, x: List[float]) -> None:
        self.status = status
        self.x = np.asarray(x, dtype=float)

    def minimize(self, objective, x0, progress=None):
        fx, _ = objective(x0)
        return EngineOutcome(status=self.status, x=self.x, fx=fx, iterations=3, n_evaluations=1, message="fake")


def test_single_node_converges_towards_true_class():
    ds = _single_node_dataset()
    trainer = PseudoLikelihoodTrainer(dataset=ds)
    result = trainer.train()
    assert result.status is TerminationStatus.CONVERGED
    assert trainer.phase is TrainingPhase.DONE
    w = ds.registry.node_type("n").weights
    assert w[0, 0] > w[1, 0]
    # stationarity of -w0 + log(e^w0 + e^w1) + 10 (w0^2 + w1^2)
    s = 1.0 / (1.0 + math.exp(-(w[0, 0] - w[1, 0])))
    assert 20.0 * w[0, 0] == pytest.approx(1.0 - s, abs=1e-4)
    np.testing.assert_allclose(result.x, w.ravel())
    assert result.n_weights == 2 == ds.n_weights


def test_chain_training_lowers_objective_and_ties_edge_weights():
    ds = _chain_dataset()
    trainer = PseudoLikelihoodTrainer(dataset=ds, regularization=0.1)
    result = trainer.train()
    assert result.succeeded
    start_fx, _ = trainer.objective(np.zeros(result.n_weights))
    assert result.fx < start_fx
    ew = ds.registry.edge_type("e").weights[0]
    np.testing.assert_allclose(ew, ew.T)


def test_progress_callbacks_and_stop_criterion():
    ds = _chain_dataset()
    reports: List[ProgressReport] = []
    trainer = PseudoLikelihoodTrainer(dataset=ds, stop_when=lambda r: r.iteration >= 2)
    trainer.on_progress.append(reports.append)
    result = trainer.train()
    assert result.status is TerminationStatus.STOPPED_BY_CRITERIA
    assert [r.iteration for r in reports] == [1, 2]
    for r in reports:
        assert r.gnorm == pytest.approx(float(np.linalg.norm(r.g)))
        assert r.xnorm == pytest.approx(float(np.linalg.norm(r.x)))
        assert r.step >= 0.0
    np.testing.assert_allclose(reports[0].step, np.linalg.norm(reports[0].x))
    np.testing.assert_allclose(reports[1].step, np.linalg.norm(reports[1].x - reports[0].x))


@pytest.mark.parametrize(
    "code, expected",
    [
        (EngineStatus.CONVERGENCE, TerminationStatus.CONVERGED),
        (EngineStatus.STOP, TerminationStatus.STOPPED_BY_CRITERIA),
        (EngineStatus.MAX_ITERATIONS, TerminationStatus.MAX_ITERATIONS),
        (EngineStatus.ABNORMAL_TERMINATION, TerminationStatus.ERROR),
        (-1001, TerminationStatus.ERROR),
    ],
)
def test_classify_status(code, expected):
    assert classify_status(int(code)) is expected


def test_final_parameters_written_back_even_for_errors():
    ds = _single_node_dataset()
    completed = []
    trainer = PseudoLikelihoodTrainer(dataset=ds, engine=_FakeEngine(-1001, [0.25, -0.75]))
    trainer.on_complete.append(completed.append)
    with pytest.warns(RuntimeWarning, match="error code -1001"):
        result = trainer.train()
    assert result.status is TerminationStatus.ERROR
    assert result.error_code == -1001
    assert not result.succeeded
    np.testing.assert_allclose(ds.registry.node_type("n").weights, [[0.25], [-0.75]])
    assert completed[0] is result


def test_max_iterations_is_reported_with_warning():
    ds = _single_node_dataset()
    trainer = PseudoLikelihoodTrainer(dataset=ds, engine=_FakeEngine(int(EngineStatus.MAX_ITERATIONS), [0.1, 0.0]))
    with pytest.warns(RuntimeWarning, match="iteration limit"):
        result = trainer.train()
    assert result.status is TerminationStatus.MAX_ITERATIONS
    assert result.error_code is None


def test_iteration_cap_from_config():
    ds = _chain_dataset()
    trainer = PseudoLikelihoodTrainer(dataset=ds, regularization=0.0, config=LBFGSConfig(max_iterations=1, gtol=0.0, ftol=0.0))
    with pytest.warns(RuntimeWarning):
        result = trainer.train()
    assert result.status is TerminationStatus.MAX_ITERATIONS


def test_warm_start_reads_registry_weights():
    ds = _single_node_dataset()
    ds.registry.node_type("n").weights[...] = [[0.5], [-0.5]]
    engine = _FakeEngine(int(EngineStatus.CONVERGENCE), [0.0, 0.0])
    seen = []

    def minimize(objective, x0, progress=None):
        seen.append(np.array(x0))
        return _FakeEngine.minimize(engine, objective, x0, progress)

    engine.minimize = minimize  # type: ignore[assignment]
    PseudoLikelihoodTrainer(dataset=ds, engine=engine, warm_start=True).train()
    np.testing.assert_allclose(seen[0], [0.5, -0.5])


def test_allocation_failure_aborts(monkeypatch):
    ds = _single_node_dataset()

    def boom(self, registry):
        raise MemoryError

    monkeypatch.setattr(WeightIndex, "gather", boom)
    trainer = PseudoLikelihoodTrainer(dataset=ds, warm_start=True)
    with pytest.warns(RuntimeWarning, match="allocate"):
        with pytest.raises(AllocationError):
            trainer.train()
    assert trainer.phase is TrainingPhase.INIT_PARAMS


def test_dataset_train_wrapper_forwards_options():
    ds = _single_node_dataset()
    result = ds.train(regularization=1.0)
    assert result.status is TerminationStatus.CONVERGED
    assert ds.weight_index is not None


def test_validation_rejects_missing_and_out_of_range_labels():
    ds = _chain_dataset()
    del ds.ground_truth[0][3]
    with pytest.raises(DatasetValidationError, match="missing ground-truth"):
        ds.train()
    ds = _chain_dataset()
    ds.ground_truth[0][2] = 5
    with pytest.raises(DatasetValidationError, match="outside"):
        ds.validate()


def test_validation_rejects_non_integer_labels_before_optimizing():
    reg = TypeRegistry()
    reg.add_node_type(NodeType.zeros("n", 2, 1))
    reg.add_edge_type(EdgeType.zeros("e", 2, 2, [Independent()]))
    g = Graph(nodes=[Node(node_id=0, type_id="n", features=[1.0]), Node(node_id=1, type_id="n", features=[1.0])])
    g.add_edge(Edge(node1=0, node2=1, type_id="e", features=[1.0]))
    ds = TrainingDataSet(registry=reg, graphs=[g], ground_truth=[{0: 1.0, 1: 0.0}])
    trainer = PseudoLikelihoodTrainer(dataset=ds)
    with pytest.raises(DatasetValidationError, match="not an integer"):
        trainer.train()
    assert trainer.phase is TrainingPhase.IDLE
    assert ds.weight_index is None

    ds.ground_truth = [{0: True, 1: 0}]
    with pytest.raises(DatasetValidationError, match="not an integer"):
        ds.validate()
    ds.ground_truth = [{0: np.int64(1), 1: 0}]
    ds.validate()


def test_validation_rejects_feature_and_shape_mismatches():
    ds = _chain_dataset()
    ds.graphs[0].nodes[0].features = np.ones(3)
    with pytest.raises(DatasetValidationError, match="features"):
        ds.validate()

    reg = TypeRegistry()
    reg.add_node_type(NodeType.zeros("n", 2, 1))
    reg.add_node_type(NodeType.zeros("m", 3, 1))
    reg.add_edge_type(EdgeType.zeros("e", 2, 2, [Independent()]))
    ds = TrainingDataSet(registry=reg)
    g = Graph(nodes=[Node(node_id=0, type_id="n", features=[1.0]), Node(node_id=1, type_id="m", features=[1.0])])
    g.add_edge(Edge(node1=0, node2=1, type_id="e", features=[1.0]))
    ds.add_graph(g, {0: 0, 1: 2})
    with pytest.raises(DatasetValidationError, match="endpoints need"):
        ds.validate()


def test_validation_rejects_unknown_types_and_count_mismatch():
    ds = _single_node_dataset()
    ds.graphs[0].nodes[0].type_id = "ghost"
    with pytest.raises(DatasetValidationError, match="unknown node type"):
        ds.validate()
    ds = _single_node_dataset()
    ds.ground_truth.append({})
    with pytest.raises(DatasetValidationError):
        ds.validate()


def test_bad_sharing_mode_fails_at_index_build():
    reg = TypeRegistry()
    reg.add_node_type(NodeType.zeros("n", 2, 1))
    reg.add_node_type(NodeType.zeros("m", 3, 1))
    reg.add_edge_type(EdgeType.zeros("e", 2, 3, [Symmetric()]))
    ds = TrainingDataSet(registry=reg)
    g = Graph(nodes=[Node(node_id=0, type_id="n", features=[1.0]), Node(node_id=1, type_id="m", features=[1.0])])
    g.add_edge(Edge(node1=0, node2=1, type_id="e", features=[1.0]))
    ds.add_graph(g, {0: 1, 1: 2})
    trainer = PseudoLikelihoodTrainer(dataset=ds)
    with pytest.raises(WeightSharingError):
        trainer.train()
    assert trainer.phase is TrainingPhase.BUILD_INDEX
