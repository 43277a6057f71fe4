"""
Error taxonomy for the benchmark harness.

Structural errors (``InvalidTaskError``, ``InsufficientDataError``,
``InvalidParameterSpaceError``) are raised before any work begins and abort
the run. Cell-level errors (``SchemaMismatchError``, ``FitFailure``,
``PredictFailure``) are caught by the runner and recorded against the
(spec, fold) cell that raised them. ``DegenerateFoldError`` is caught by the
metric aggregator and excludes one metric for one cell.
"""

from typing import Optional


class BenchmarkError(Exception):
    """Base class for all errors raised by the benchmark harness."""


class InvalidTaskError(BenchmarkError):
    """Raised when a task definition is malformed.

    Covers a missing or non-binary target column, missing target values, a
    positive label that does not occur in the target, and empty tables.
    """


class IncompatiblePipelineError(BenchmarkError):
    """Raised when a pipeline spec cannot satisfy its learner's input contract.

    The runner records this against the offending spec and keeps running the
    remaining specs.
    """


class SchemaMismatchError(BenchmarkError):
    """Raised when predict-time data does not match the fitted schema.

    Typically an unseen categorical value with no "other" bucket reserved, or
    a fitted column that is absent from the new partition.
    """


class InsufficientDataError(BenchmarkError):
    """Raised when a resampling strategy would produce an empty partition."""


class DegenerateFoldError(BenchmarkError):
    """Raised when a metric is undefined on a fold's test partition.

    For example AUC on a test partition that contains a single class.
    """


class InvalidParameterSpaceError(BenchmarkError, ValueError):
    """Raised when a hyperparameter space declaration is malformed."""


class CellFailure(BenchmarkError):
    """Base class for failures of the underlying learner inside one cell.

    Args:
        message: Human readable description.
        cause: The exception raised by the learner, if any.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class FitFailure(CellFailure):
    """Raised when fitting a pipeline or learner on a training partition fails."""


class PredictFailure(CellFailure):
    """Raised when predicting a test partition with a fitted pipeline fails."""
