from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import time

from crf.trainer import ProgressReport, PseudoLikelihoodTrainer, TrainingResult
from crf.types import TypeRegistry
from crf_logging.metrics_log import log_records


def weight_records(registry: TypeRegistry, run_id: str) -> List[Dict[str, Any]]:
    """Long-format rows for every learned weight cell."""
    rows: List[Dict[str, Any]] = []
    for nt in registry.node_types:
        for c in range(nt.n_classes):
            for f in range(nt.n_features):
                rows.append({
                    "run_id": run_id,
                    "kind": "node",
                    "type_id": nt.type_id,
                    "feature": f,
                    "row": c,
                    "col": -1,
                    "weight": float(nt.weights[c, f]),
                })
    for et in registry.edge_types:
        rows_n, cols_n = et.shape
        for f in range(et.n_features):
            for r in range(rows_n):
                for c in range(cols_n):
                    rows.append({
                        "run_id": run_id,
                        "kind": "edge",
                        "type_id": et.type_id,
                        "feature": f,
                        "row": r,
                        "col": c,
                        "weight": float(et.weights[f, r, c]),
                    })
    return rows


@dataclass
class TrainingTracker:
    """Attach to PseudoLikelihoodTrainer hooks and log iterations to Polars CSV.

    Usage:
        tracker = TrainingTracker(run_id="demo")
        tracker.attach(trainer)
        trainer.train()
        tracker.flush()
    """
    run_id: str
    name: str = "training_trace"
    summary_name: str = "training_summary"
    weights_name: Optional[str] = None
    index_name: Optional[str] = None
    buffer: List[Dict[str, Any]] = field(default_factory=list)
    summary: Optional[Dict[str, Any]] = None
    trainer: Optional[PseudoLikelihoodTrainer] = None
    _last_timestamp: Optional[float] = field(default=None, init=False, repr=False)
    _prev_fx: Optional[float] = field(default=None, init=False, repr=False)

    def attach(self, trainer: PseudoLikelihoodTrainer) -> None:
        self.trainer = trainer
        trainer.on_progress.append(self.on_progress)
        trainer.on_complete.append(self.on_complete)
        self._last_timestamp = time.perf_counter()

    def on_progress(self, report: ProgressReport) -> None:
        now = time.perf_counter()
        elapsed = float("nan") if self._last_timestamp is None else float(now - self._last_timestamp)
        self._last_timestamp = now
        delta = float("nan") if self._prev_fx is None else float(report.fx - self._prev_fx)
        self._prev_fx = float(report.fx)
        x, g = report.x, report.g
        self.buffer.append({
            "run_id": self.run_id,
            "iteration": int(report.iteration),
            "fx": float(report.fx),
            "delta_fx": delta,
            "x0": float(x[0]) if x.size > 0 else float("nan"),
            "x1": float(x[1]) if x.size > 1 else float("nan"),
            "g0": float(g[0]) if g.size > 0 else float("nan"),
            "g1": float(g[1]) if g.size > 1 else float("nan"),
            "xnorm": float(report.xnorm),
            "gnorm": float(report.gnorm),
            "step": float(report.step),
            "compute_cost": elapsed,
        })

    def on_complete(self, result: TrainingResult) -> None:
        self.summary = {
            "run_id": self.run_id,
            "status": result.status.value,
            "error_code": -1 if result.error_code is None else int(result.error_code),
            "fx": float(result.fx),
            "iterations": int(result.iterations),
            "evaluations": int(result.n_evaluations),
            "n_weights": int(result.n_weights),
            "message": result.message,
        }

    def flush(self) -> None:
        if self.buffer:
            log_records(self.name, self.buffer)
            self.buffer.clear()
        if self.summary is not None:
            log_records(self.summary_name, [self.summary])
            self.summary = None
        if self.trainer is None:
            return
        ds = self.trainer.dataset
        if self.weights_name:
            log_records(self.weights_name, weight_records(ds.registry, self.run_id))
        if self.index_name and ds.weight_index is not None:
            rows = [dict(r, run_id=self.run_id) for r in ds.weight_index.to_records()]
            log_records(self.index_name, rows)
