"""L-BFGS engine backed by scipy.optimize.

The engine evaluates ``objective(x) -> (fx, g)``, calls a progress hook once
per accepted iteration and reports a terminal status code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional

import numpy as np
from scipy.optimize import minimize

from .interfaces import ObjectiveFn, OptimizerEngine, ProgressFn

__all__ = ["EngineStatus", "LBFGSConfig", "EngineProgress", "EngineOutcome", "ScipyLBFGS"]


class EngineStatus(IntEnum):
    CONVERGENCE = 0
    STOP = 1
    MAX_ITERATIONS = -997
    ABNORMAL_TERMINATION = -1000


@dataclass
class LBFGSConfig:
    """Solver settings; defaults follow the usual liblbfgs choices."""

    history_size: int = 6
    gtol: float = 1e-5  # max |projected gradient component|
    ftol: float = 1e-9  # relative reduction of fx
    max_iterations: int = 15000
    max_evaluations: Optional[int] = None
    max_linesearch: int = 40

    def validate(self) -> None:
        assert self.history_size > 0, "history_size must be positive"
        assert self.gtol >= 0.0, "gtol must be non-negative"
        assert self.ftol >= 0.0, "ftol must be non-negative"
        assert self.max_iterations > 0, "max_iterations must be positive"
        assert self.max_linesearch > 0, "max_linesearch must be positive"
        if self.max_evaluations is not None:
            assert self.max_evaluations > 0, "max_evaluations must be positive"


@dataclass(frozen=True)
class EngineProgress:
    """State after an accepted iteration (read-only).

    ``step`` is the length of the accepted move, ||x_k - x_{k-1}||, not the
    line-search step multiplier.
    """

    iteration: int
    fx: float
    x: np.ndarray
    g: np.ndarray
    xnorm: float
    gnorm: float
    step: float


@dataclass
class EngineOutcome:
    status: int
    x: np.ndarray
    fx: float
    iterations: int
    n_evaluations: int
    message: str = ""


@dataclass
class ScipyLBFGS(OptimizerEngine):
    """L-BFGS-B without bounds; the progress hook may request a stop."""

    config: LBFGSConfig = field(default_factory=LBFGSConfig)

    def minimize(
        self,
        objective: ObjectiveFn,
        x0: np.ndarray,
        progress: Optional[ProgressFn] = None,
    ) -> EngineOutcome:
        self.config.validate()
        cfg = self.config
        last: dict = {}
        state = {"iteration": 0, "stopped": False, "x_prev": np.array(x0, dtype=float)}

        def fun(x: np.ndarray):
            fx, g = objective(x)
            last["x"], last["fx"], last["g"] = np.array(x, dtype=float), float(fx), np.asarray(g, dtype=float)
            return last["fx"], last["g"]

        def callback(intermediate_result) -> None:
            x = np.asarray(intermediate_result.x, dtype=float)
            if "x" in last and np.array_equal(last["x"], x):
                fx, g = last["fx"], last["g"]
            else:
                fx, g = fun(x)
            state["iteration"] += 1
            step = float(np.linalg.norm(x - state["x_prev"]))
            state["x_prev"] = x.copy()
            if progress is None:
                return
            report = EngineProgress(
                iteration=state["iteration"],
                fx=float(fx),
                x=x.copy(),
                g=g.copy(),
                xnorm=float(np.linalg.norm(x)),
                gnorm=float(np.linalg.norm(g)),
                step=step,
            )
            if progress(report):
                state["stopped"] = True
                raise StopIteration

        options = {
            "maxcor": cfg.history_size,
            "gtol": cfg.gtol,
            "ftol": cfg.ftol,
            "maxiter": cfg.max_iterations,
            "maxls": cfg.max_linesearch,
        }
        if cfg.max_evaluations is not None:
            options["maxfun"] = cfg.max_evaluations
        res = minimize(fun, np.array(x0, dtype=float), jac=True, method="L-BFGS-B", callback=callback, options=options)

        if state["stopped"]:
            status = EngineStatus.STOP
        elif res.status == 0:
            status = EngineStatus.CONVERGENCE
        elif res.status == 1:
            status = EngineStatus.MAX_ITERATIONS
        else:
            status = EngineStatus.ABNORMAL_TERMINATION
        message = res.message.decode() if isinstance(res.message, bytes) else str(res.message)
        return EngineOutcome(
            status=int(status),
            x=np.asarray(res.x, dtype=float),
            fx=float(res.fun),
            iterations=int(res.nit),
            n_evaluations=int(res.nfev),
            message=message,
        )
