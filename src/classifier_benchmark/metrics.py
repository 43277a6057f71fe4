"""
Classification metrics and fold aggregation.

Every metric declares whether higher values are better; nothing downstream
infers the direction from the name. The aggregator scores each successful
cell of a benchmark result and averages each metric per spec, unweighted,
across folds.

Example:
    from classifier_benchmark.metrics import MetricAggregator, compare_to_baseline

    report = MetricAggregator().aggregate(result)
    print(report.to_frame())
    print(report.best("auc"))
    comparison = compare_to_baseline(report, "featureless")
"""

import logging
import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score,
    confusion_matrix,
    matthews_corrcoef,
    precision_score,
    recall_score,
    roc_auc_score,
)

from .exceptions import DegenerateFoldError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Metric:
    """
    A named classification metric.

    ``fn`` receives binary truth, binary predictions (1 = positive class) and
    positive-class scores, and may raise DegenerateFoldError.
    """

    name: str
    higher_is_better: bool
    fn: Callable[[np.ndarray, np.ndarray, np.ndarray], float]

    def __call__(self, y_true: np.ndarray, y_pred: np.ndarray, y_score: np.ndarray) -> float:
        return float(self.fn(y_true, y_pred, y_score))

    @property
    def direction(self) -> str:
        return "maximize" if self.higher_is_better else "minimize"

    def is_better(self, candidate: float, incumbent: float) -> bool:
        """Strict improvement in this metric's direction."""
        return candidate > incumbent if self.higher_is_better else candidate < incumbent


def _confusion(y_true: np.ndarray, y_pred: np.ndarray) -> Tuple[int, int, int, int]:
    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()
    return int(tn), int(fp), int(fn), int(tp)


def _auc(y_true: np.ndarray, y_pred: np.ndarray, y_score: np.ndarray) -> float:
    if len(np.unique(y_true)) < 2:
        raise DegenerateFoldError("AUC is undefined on a single-class test partition")
    return roc_auc_score(y_true, y_score)


def _fpr(y_true: np.ndarray, y_pred: np.ndarray, y_score: np.ndarray) -> float:
    tn, fp, _, _ = _confusion(y_true, y_pred)
    if tn + fp == 0:
        raise DegenerateFoldError("FPR is undefined without negative rows in the test partition")
    return fp / (tn + fp)


def _fnr(y_true: np.ndarray, y_pred: np.ndarray, y_score: np.ndarray) -> float:
    _, _, fn, tp = _confusion(y_true, y_pred)
    if fn + tp == 0:
        raise DegenerateFoldError("FNR is undefined without positive rows in the test partition")
    return fn / (fn + tp)


METRICS: Dict[str, Metric] = {
    m.name: m
    for m in [
        Metric("accuracy", True, lambda t, p, s: accuracy_score(t, p)),
        Metric("auc", True, _auc),
        Metric("classification_error", False, lambda t, p, s: 1.0 - accuracy_score(t, p)),
        Metric("fpr", False, _fpr),
        Metric("fnr", False, _fnr),
        Metric("precision", True, lambda t, p, s: precision_score(t, p, zero_division=0)),
        Metric("recall", True, lambda t, p, s: recall_score(t, p, zero_division=0)),
        Metric("mcc", True, lambda t, p, s: matthews_corrcoef(t, p)),
    ]
}

DEFAULT_METRICS: Tuple[str, ...] = tuple(METRICS)


def get_metric(name: str) -> Metric:
    """
    Look up a metric by name.

    Raises:
        ValueError: If the metric is unknown.
    """
    try:
        return METRICS[name]
    except KeyError:
        raise ValueError(f"Unknown metric '{name}'. Available: {sorted(METRICS)}") from None


@dataclass(frozen=True)
class MetricExclusion:
    """One metric left out of one cell's average, with the reason."""

    spec_id: str
    fold_id: int
    metric: str
    reason: str


def score_predictions(
    true_labels: Sequence[Any],
    predicted_labels: Sequence[Any],
    predicted_scores: Sequence[float],
    positive_label: Any,
    metrics: Optional[Sequence[str]] = None,
) -> Tuple[Dict[str, float], Dict[str, str]]:
    """
    Compute metrics for one set of predictions.

    Args:
        true_labels: True target values.
        predicted_labels: Predicted target values.
        predicted_scores: Positive-class probabilities.
        positive_label: Label treated as the positive class.
        metrics: Metric names, all when None.

    Returns:
        Tuple of (metric name -> value, metric name -> reason) where the
        second dict lists metrics that were undefined for these predictions.

    Example:
        values, skipped = score_predictions(
            ["a", "b", "b"], ["a", "b", "a"], [0.2, 0.9, 0.4], positive_label="b",
        )
    """
    y_true = (np.asarray(true_labels) == positive_label).astype(int)
    y_pred = (np.asarray(predicted_labels) == positive_label).astype(int)
    y_score = np.asarray(predicted_scores, dtype=float)

    values: Dict[str, float] = {}
    skipped: Dict[str, str] = {}
    for name in metrics or DEFAULT_METRICS:
        try:
            values[name] = get_metric(name)(y_true, y_pred, y_score)
        except DegenerateFoldError as e:
            skipped[name] = str(e)
    return values, skipped


class MetricReport:
    """
    Fold-averaged metrics per spec, plus what was left out and why.

    Args:
        scores: spec_id -> metric name -> mean over the usable folds (NaN
            when no fold was usable).
        metrics: Metric names in column order.
        exclusions: Metric/cell pairs left out of an average.
        failed_cells: (spec_id, fold_id) -> reason for failed cells.
        spec_errors: spec_id -> reason for specs that were never run.
        fold_scores: spec_id -> fold_id -> metric -> value.
    """

    def __init__(
        self,
        scores: Mapping[str, Mapping[str, float]],
        metrics: Sequence[str],
        exclusions: Sequence[MetricExclusion] = (),
        failed_cells: Optional[Mapping[Tuple[str, int], str]] = None,
        spec_errors: Optional[Mapping[str, str]] = None,
        fold_scores: Optional[Mapping[str, Mapping[int, Mapping[str, float]]]] = None,
    ) -> None:
        self.scores: Mapping[str, Mapping[str, float]] = MappingProxyType(
            {spec: MappingProxyType(dict(values)) for spec, values in scores.items()}
        )
        self.metrics = tuple(metrics)
        self.exclusions = tuple(exclusions)
        self.failed_cells: Mapping[Tuple[str, int], str] = MappingProxyType(dict(failed_cells or {}))
        self.spec_errors: Mapping[str, str] = MappingProxyType(dict(spec_errors or {}))
        self.fold_scores: Mapping[str, Mapping[int, Mapping[str, float]]] = MappingProxyType(
            {
                spec: MappingProxyType({fold: MappingProxyType(dict(v)) for fold, v in folds.items()})
                for spec, folds in (fold_scores or {}).items()
            }
        )

    def __getitem__(self, spec_id: str) -> Dict[str, float]:
        return dict(self.scores[spec_id])

    def __contains__(self, spec_id: object) -> bool:
        return spec_id in self.scores

    @property
    def spec_ids(self) -> List[str]:
        return list(self.scores)

    def to_frame(self) -> pd.DataFrame:
        """One row per spec, one column per metric."""
        frame = pd.DataFrame.from_dict(
            {spec: dict(values) for spec, values in self.scores.items()}, orient="index"
        )
        frame = frame.reindex(columns=list(self.metrics))
        frame.index.name = "spec_id"
        return frame

    def best(self, metric: str) -> Optional[str]:
        """
        The spec with the best mean value of ``metric``.

        Ties go to the spec listed first; specs with a NaN mean are ignored.
        """
        definition = get_metric(metric)
        best_spec: Optional[str] = None
        best_value = math.nan
        for spec_id, values in self.scores.items():
            value = values.get(metric, math.nan)
            if math.isnan(value):
                continue
            if best_spec is None or definition.is_better(value, best_value):
                best_spec, best_value = spec_id, value
        return best_spec

    def __repr__(self) -> str:
        return (
            f"MetricReport(specs={len(self.scores)}, metrics={list(self.metrics)}, "
            f"exclusions={len(self.exclusions)}, failed_cells={len(self.failed_cells)})"
        )


class MetricAggregator:
    """
    Scores benchmark cells and averages each metric per spec.

    Failed cells are excluded from every metric. A metric undefined on a
    cell (DegenerateFoldError) is excluded from that metric's average only,
    and the exclusion is recorded in the report.

    Args:
        metrics: Metric names to compute, all when None.

    Raises:
        ValueError: If a metric name is unknown.
    """

    def __init__(self, metrics: Optional[Sequence[str]] = None) -> None:
        self.metrics: Tuple[str, ...] = tuple(metrics) if metrics else DEFAULT_METRICS
        for name in self.metrics:
            get_metric(name)

    def aggregate(self, result: Any) -> MetricReport:
        """
        Build the report for a BenchmarkResult.

        Args:
            result: A BenchmarkResult.

        Returns:
            The MetricReport; specs rejected before running appear only in
            ``spec_errors``.
        """
        scores: Dict[str, Dict[str, float]] = {}
        fold_scores: Dict[str, Dict[int, Dict[str, float]]] = {}
        exclusions: List[MetricExclusion] = []
        failed_cells: Dict[Tuple[str, int], str] = {}

        for spec_id in result.spec_ids:
            if spec_id in result.spec_errors:
                continue

            per_metric: Dict[str, List[float]] = {name: [] for name in self.metrics}
            fold_scores[spec_id] = {}
            for cell in result.cells_for(spec_id):
                if not cell.ok:
                    failed_cells[(spec_id, cell.fold_id)] = f"{cell.error_type}: {cell.error}"
                    continue

                values, skipped = score_predictions(
                    cell.true_labels,
                    cell.predicted_labels,
                    cell.predicted_scores,
                    result.positive_label,
                    self.metrics,
                )
                fold_scores[spec_id][cell.fold_id] = values
                for name, value in values.items():
                    per_metric[name].append(value)
                for name, reason in skipped.items():
                    logger.warning(f"Excluding {name} for ({spec_id}, fold {cell.fold_id}): {reason}")
                    exclusions.append(MetricExclusion(spec_id, cell.fold_id, name, reason))

            scores[spec_id] = {
                name: float(np.mean(values)) if values else math.nan
                for name, values in per_metric.items()
            }

        return MetricReport(
            scores=scores,
            metrics=self.metrics,
            exclusions=exclusions,
            failed_cells=failed_cells,
            spec_errors=result.spec_errors,
            fold_scores=fold_scores,
        )


def compare_to_baseline(
    report: MetricReport,
    baseline_spec_id: str,
) -> Dict[str, Dict[str, Dict[str, Any]]]:
    """
    Compare every spec in a report to a baseline spec, metric by metric.

    ``improved`` follows each metric's declared direction, so a lower
    classification error counts as an improvement.

    Args:
        report: A MetricReport.
        baseline_spec_id: Spec to compare against, e.g. the featureless learner.

    Returns:
        spec_id -> metric -> {current, baseline, difference, percent_change,
        improved}. The baseline itself is not included.

    Raises:
        KeyError: If the baseline spec is not in the report.

    Example:
        comparison = compare_to_baseline(report, "featureless")
        comparison["random_forest"]["auc"]["improved"]  # True
    """
    if baseline_spec_id not in report:
        raise KeyError(f"Baseline spec '{baseline_spec_id}' not found in report")

    baseline = report[baseline_spec_id]
    comparison: Dict[str, Dict[str, Dict[str, Any]]] = {}
    for spec_id, values in report.scores.items():
        if spec_id == baseline_spec_id:
            continue
        comparison[spec_id] = {}
        for metric, current in values.items():
            base = baseline.get(metric, math.nan)
            diff = current - base
            pct_change = (diff / base) * 100 if base != 0 else 0.0
            comparison[spec_id][metric] = {
                "current": current,
                "baseline": base,
                "difference": diff,
                "percent_change": pct_change,
                "improved": get_metric(metric).is_better(current, base),
            }
    return comparison
