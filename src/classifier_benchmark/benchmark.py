"""
Benchmark runner: every pipeline spec over every resampling fold.

The runner instantiates the folds once, validates every spec against the
task, then executes each (spec, fold) cell independently: fit on the fold's
training rows, predict its test rows, record scores and labels. Each cell is
seeded from ``derive_seed(seed, spec_id, fold_id)`` and owns its fitted
state, so cells can run on a thread pool and still produce exactly the
results of a sequential run.

Example:
    from classifier_benchmark.benchmark import BenchmarkRunner
    from classifier_benchmark.learners import build_pipeline, default_learners
    from classifier_benchmark.resampling import KFoldCV

    specs = [build_pipeline(l) for l in default_learners().values()]
    runner = BenchmarkRunner(seed=42, max_workers=4)
    result = runner.run(task, specs, KFoldCV(folds=5, seed=42))
    report = result.aggregate()
    print(report.to_frame())
"""

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .exceptions import (
    BenchmarkError,
    FitFailure,
    IncompatiblePipelineError,
    PredictFailure,
    SchemaMismatchError,
)
from .learners import Predictor
from .metrics import MetricAggregator, MetricReport
from .resampling import Fold, ResamplingStrategy
from .seeding import derive_seed
from .task import Task

logger = logging.getLogger(__name__)

# Hard labels come from positive-class probabilities strictly above this value
DECISION_THRESHOLD = 0.5

# How often the pool loop wakes up to check per-unit timeouts
_POLL_SECONDS = 0.05

CellKey = Tuple[str, int]


def _readonly(values: Any) -> np.ndarray:
    array = np.asarray(values)
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class CellResult:
    """
    Outcome of one (spec, fold) execution.

    A failed cell carries empty prediction arrays plus ``error`` and
    ``error_type``.
    """

    spec_id: str
    fold_id: int
    predicted_scores: np.ndarray
    predicted_labels: np.ndarray
    true_labels: np.ndarray
    error: Optional[str] = None
    error_type: Optional[str] = None
    duration_seconds: float = 0.0

    def __post_init__(self) -> None:
        for name in ("predicted_scores", "predicted_labels", "true_labels"):
            object.__setattr__(self, name, _readonly(getattr(self, name)))

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(
        cls,
        spec_id: str,
        fold_id: int,
        error: BaseException,
        duration_seconds: float = 0.0,
    ) -> "CellResult":
        return cls(
            spec_id=spec_id,
            fold_id=fold_id,
            predicted_scores=np.array([], dtype=float),
            predicted_labels=np.array([], dtype=object),
            true_labels=np.array([], dtype=object),
            error=str(error),
            error_type=type(error).__name__,
            duration_seconds=duration_seconds,
        )


class BenchmarkResult:
    """
    Read-only results of a benchmark run.

    Args:
        task_id: Identifier of the benchmarked task.
        positive_label: The task's positive label.
        spec_ids: Spec ids in submission order, including rejected ones.
        fold_ids: Fold ids in generation order.
        cells: Mapping from (spec_id, fold_id) to CellResult.
        spec_errors: Mapping from spec_id to the reason it was not run.
    """

    def __init__(
        self,
        task_id: str,
        positive_label: Any,
        spec_ids: Sequence[str],
        fold_ids: Sequence[int],
        cells: Mapping[CellKey, CellResult],
        spec_errors: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.task_id = task_id
        self.positive_label = positive_label
        self.spec_ids = tuple(spec_ids)
        self.fold_ids = tuple(fold_ids)
        self.cells: Mapping[CellKey, CellResult] = MappingProxyType(dict(cells))
        self.spec_errors: Mapping[str, str] = MappingProxyType(dict(spec_errors or {}))

    def cell(self, spec_id: str, fold_id: int) -> CellResult:
        return self.cells[(spec_id, fold_id)]

    def cells_for(self, spec_id: str) -> List[CellResult]:
        """Cells of one spec in fold order; empty for rejected specs."""
        return [self.cells[(spec_id, f)] for f in self.fold_ids if (spec_id, f) in self.cells]

    def failures(self) -> List[CellResult]:
        return [cell for cell in self.cells.values() if not cell.ok]

    def aggregate(self, metrics: Optional[Sequence[str]] = None) -> MetricReport:
        """Score every cell and average per spec; see ``MetricAggregator``."""
        return MetricAggregator(metrics).aggregate(self)

    def __repr__(self) -> str:
        return (
            f"BenchmarkResult(task_id={self.task_id!r}, specs={len(self.spec_ids)}, "
            f"folds={len(self.fold_ids)}, failed_cells={len(self.failures())}, "
            f"rejected_specs={len(self.spec_errors)})"
        )


class BenchmarkRunner:
    """
    Executes the cross-product of pipeline specs and resampling folds.

    Args:
        seed: Base seed every cell seed is derived from.
        max_workers: Worker threads; 1 runs cells sequentially.
        unit_timeout: Optional seconds after which a running cell is recorded
            as failed. None disables the timeout.

    Example:
        runner = BenchmarkRunner(seed=7, max_workers=4)
        result = runner.run(task, specs, KFoldCV(folds=5, seed=7))
    """

    def __init__(
        self,
        seed: int = 42,
        max_workers: int = 1,
        unit_timeout: Optional[float] = None,
    ) -> None:
        self.seed = int(seed)
        self.max_workers = max(1, int(max_workers or 1))
        self.unit_timeout = unit_timeout
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Record every not-yet-started cell of the current run as cancelled."""
        self._cancelled.set()

    def run(
        self,
        task: Task,
        pipeline_specs: Sequence[Predictor],
        resampling_strategy: ResamplingStrategy,
    ) -> BenchmarkResult:
        """
        Benchmark every spec on every fold of ``resampling_strategy``.

        Args:
            task: The task to evaluate on.
            pipeline_specs: Learners or pipeline specs with unique ids.
            resampling_strategy: Produces the folds.

        Returns:
            A BenchmarkResult annotated with failed cells and rejected specs.

        Raises:
            InsufficientDataError: If the folds cannot be generated.
            ValueError: If two specs share an id.
        """
        folds = resampling_strategy.instantiate(task)
        return self.run_folds(task, pipeline_specs, folds)

    def run_folds(
        self,
        task: Task,
        pipeline_specs: Sequence[Predictor],
        folds: Sequence[Fold],
    ) -> BenchmarkResult:
        """Like ``run`` but over already instantiated folds."""
        spec_ids = [spec.id for spec in pipeline_specs]
        duplicates = sorted({s for s in spec_ids if spec_ids.count(s) > 1})
        if duplicates:
            raise ValueError(f"Duplicate pipeline spec ids: {duplicates}")

        self._cancelled.clear()

        spec_errors: Dict[str, str] = {}
        runnable: List[Predictor] = []
        for spec in pipeline_specs:
            try:
                spec.validate(task)
            except IncompatiblePipelineError as e:
                logger.warning(f"Skipping spec '{spec.id}': {e}")
                spec_errors[spec.id] = str(e)
                continue
            runnable.append(spec)

        units = [(spec, fold) for spec in runnable for fold in folds]
        logger.info(
            f"Running {len(units)} cells ({len(runnable)} specs x {len(folds)} folds) "
            f"on task '{task.task_id}' with {self.max_workers} worker(s)"
        )

        start_time = time.time()
        if self.max_workers == 1 and self.unit_timeout is None:
            completed = {
                (spec.id, fold.fold_id): self._run_cell(task, spec, fold) for spec, fold in units
            }
        else:
            completed = self._run_pool(task, units)

        # Insert in (spec, fold) order regardless of completion order
        cells = {(spec.id, fold.fold_id): completed[(spec.id, fold.fold_id)] for spec, fold in units}
        n_failed = sum(1 for cell in cells.values() if not cell.ok)
        logger.info(
            f"Benchmark finished in {time.time() - start_time:.2f}s: "
            f"{len(cells) - n_failed} cells succeeded, {n_failed} failed"
        )

        return BenchmarkResult(
            task_id=task.task_id,
            positive_label=task.positive_label,
            spec_ids=spec_ids,
            fold_ids=[fold.fold_id for fold in folds],
            cells=cells,
            spec_errors=spec_errors,
        )

    def _run_pool(self, task: Task, units: Sequence[Tuple[Predictor, Fold]]) -> Dict[CellKey, CellResult]:
        results: Dict[CellKey, CellResult] = {}
        started: Dict[CellKey, float] = {}

        def execute(spec: Predictor, fold: Fold) -> CellResult:
            started[(spec.id, fold.fold_id)] = time.monotonic()
            return self._run_cell(task, spec, fold)

        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            pending: Dict[Future, CellKey] = {
                executor.submit(execute, spec, fold): (spec.id, fold.fold_id) for spec, fold in units
            }
            while pending:
                done, _ = wait(
                    list(pending),
                    timeout=_POLL_SECONDS if self.unit_timeout is not None else None,
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    key = pending.pop(future)
                    results[key] = future.result()

                if self.unit_timeout is None:
                    continue
                now = time.monotonic()
                for future, key in list(pending.items()):
                    if key in started and now - started[key] > self.unit_timeout:
                        future.cancel()
                        pending.pop(future)
                        logger.warning(
                            f"Cell {key} exceeded the {self.unit_timeout}s unit timeout"
                        )
                        results[key] = CellResult.failed(
                            key[0],
                            key[1],
                            TimeoutError(f"Cell exceeded unit timeout of {self.unit_timeout}s"),
                            duration_seconds=now - started[key],
                        )
        finally:
            # Abandon timed-out units without waiting on them
            executor.shutdown(wait=False, cancel_futures=True)
        return results

    def _run_cell(self, task: Task, spec: Predictor, fold: Fold) -> CellResult:
        """Fit and predict one cell, converting failures into a failed CellResult."""
        if self._cancelled.is_set():
            return CellResult.failed(spec.id, fold.fold_id, BenchmarkError("Run cancelled"))

        start_time = time.time()
        try:
            return self._fit_predict(task, spec, fold, start_time)
        except (SchemaMismatchError, FitFailure, PredictFailure) as e:
            logger.warning(f"Cell ({spec.id}, fold {fold.fold_id}) failed: {type(e).__name__}: {e}")
            return CellResult.failed(spec.id, fold.fold_id, e, time.time() - start_time)

    def _fit_predict(self, task: Task, spec: Predictor, fold: Fold, start_time: float) -> CellResult:
        cell_seed = derive_seed(self.seed, spec.id, fold.fold_id)
        X_train = task.features(fold.train_indices)
        y_train = task.binary_labels(fold.train_indices)
        X_test = task.features(fold.test_indices)

        try:
            state = spec.fit(X_train, y_train, random_state=cell_seed)
        except SchemaMismatchError:
            raise
        except Exception as e:
            raise FitFailure(f"Fitting '{spec.id}' on fold {fold.fold_id} failed: {e}", cause=e) from e

        try:
            scores = np.asarray(spec.predict(state, X_test), dtype=float)
        except SchemaMismatchError:
            raise
        except Exception as e:
            raise PredictFailure(f"Predicting with '{spec.id}' on fold {fold.fold_id} failed: {e}", cause=e) from e

        if scores.shape != (len(fold.test_indices),) or not np.all(np.isfinite(scores)):
            raise PredictFailure(
                f"'{spec.id}' returned invalid scores on fold {fold.fold_id} "
                f"(shape {scores.shape}, expected ({len(fold.test_indices)},))"
            )

        predicted_labels = np.where(
            scores > DECISION_THRESHOLD, task.positive_label, task.negative_label
        )
        return CellResult(
            spec_id=spec.id,
            fold_id=fold.fold_id,
            predicted_scores=scores,
            predicted_labels=predicted_labels,
            true_labels=task.labels(fold.test_indices),
            duration_seconds=time.time() - start_time,
        )
