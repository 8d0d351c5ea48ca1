"""Exceptions raised by the pseudo-likelihood training stack."""

from __future__ import annotations

__all__ = [
    "TrainingError",
    "AllocationError",
    "DatasetValidationError",
    "WeightSharingError",
]


class TrainingError(RuntimeError):
    """Base exception for training failures that abort a run."""


class AllocationError(TrainingError):
    """The flat parameter vector could not be allocated."""


class DatasetValidationError(ValueError):
    """Graphs, ground truth and type registry are inconsistent."""


class WeightSharingError(ValueError):
    """A sharing mode cannot be applied to an edge feature matrix."""
