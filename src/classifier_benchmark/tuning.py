"""
Random-search hyperparameter tuning.

The tuner samples configurations uniformly from a declared space, binds each
one into the learner template, evaluates it on the shared resampling folds
through the benchmark runner and the metric aggregator, and appends a Trial
to an append-only archive. The best trial is chosen in the target metric's
declared direction, ties going to the earliest trial.

Example:
    from classifier_benchmark.tuning import RandomSearchTuner, ParameterSpace, IntegerRange

    space = ParameterSpace({
        "n_estimators": IntegerRange(50, 300),
        "min_samples_leaf": IntegerRange(1, 10),
    })
    tuner = RandomSearchTuner(seed=42)
    result = tuner.tune(
        task, build_pipeline(Learner(LearnerKind.RANDOM_FOREST)), space,
        KFoldCV(folds=5, seed=42), target_metric="auc", trial_budget=20,
    )
    print(result.best.config, result.best.value)
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .benchmark import BenchmarkRunner
from .exceptions import InvalidParameterSpaceError
from .learners import Predictor
from .metrics import Metric, MetricAggregator, get_metric
from .resampling import Fold, ResamplingStrategy
from .seeding import derive_seed, make_rng
from .task import Task

logger = logging.getLogger(__name__)


def _is_int(value: Any) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


@dataclass(frozen=True)
class IntegerRange:
    """Integers in ``[lower, upper]``, both ends inclusive."""

    lower: int
    upper: int

    def sample(self, rng: np.random.Generator) -> int:
        return int(rng.integers(self.lower, self.upper, endpoint=True))

    def contains(self, value: Any) -> bool:
        return _is_int(value) and self.lower <= value <= self.upper

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "int", "lower": self.lower, "upper": self.upper}


@dataclass(frozen=True)
class ContinuousRange:
    """Floats in ``[lower, upper]``."""

    lower: float
    upper: float

    def sample(self, rng: np.random.Generator) -> float:
        # uniform() can round one ulp past the upper bound
        return min(float(rng.uniform(self.lower, self.upper)), float(self.upper))

    def contains(self, value: Any) -> bool:
        return isinstance(value, (int, float, np.floating)) and self.lower <= value <= self.upper

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "float", "lower": self.lower, "upper": self.upper}


@dataclass(frozen=True)
class Categorical:
    """One of a fixed set of choices."""

    choices: tuple

    def sample(self, rng: np.random.Generator) -> Any:
        return self.choices[int(rng.integers(len(self.choices)))]

    def contains(self, value: Any) -> bool:
        return value in self.choices

    def to_dict(self) -> Dict[str, Any]:
        return {"choices": list(self.choices)}


Parameter = Union[IntegerRange, ContinuousRange, Categorical]


class ParameterSpace:
    """
    Named hyperparameter domains.

    Args:
        params: Mapping from parameter name to IntegerRange, ContinuousRange
            or Categorical.

    Raises:
        InvalidParameterSpaceError: If the space is empty, a range has
            ``lower > upper`` or non-numeric bounds, an integer range has
            non-integer bounds, or a categorical has no choices.

    Example:
        space = ParameterSpace.from_dict({
            "learning_rate": {"lower": 0.01, "upper": 0.3},
            "max_depth": {"lower": 2, "upper": 8},
            "booster": {"choices": ["gbtree", "dart"]},
        })
    """

    def __init__(self, params: Mapping[str, Parameter]) -> None:
        if not params:
            raise InvalidParameterSpaceError("Hyperparameter space is empty")
        for name, param in params.items():
            if isinstance(param, Categorical):
                if len(param.choices) == 0:
                    raise InvalidParameterSpaceError(f"Parameter '{name}' has no choices")
            elif isinstance(param, (IntegerRange, ContinuousRange)):
                bounds = (param.lower, param.upper)
                if isinstance(param, IntegerRange) and not all(_is_int(b) for b in bounds):
                    raise InvalidParameterSpaceError(
                        f"Integer parameter '{name}' needs integer bounds, got {bounds}"
                    )
                if not all(isinstance(b, (int, float, np.number)) and not isinstance(b, bool) for b in bounds):
                    raise InvalidParameterSpaceError(f"Parameter '{name}' has non-numeric bounds {bounds}")
                if not all(math.isfinite(b) for b in bounds):
                    raise InvalidParameterSpaceError(f"Parameter '{name}' has non-finite bounds {bounds}")
                if param.lower > param.upper:
                    raise InvalidParameterSpaceError(
                        f"Parameter '{name}' has lower bound {param.lower} above upper bound {param.upper}"
                    )
            else:
                raise InvalidParameterSpaceError(
                    f"Parameter '{name}' has unsupported domain {type(param).__name__}"
                )
        self.params: Dict[str, Parameter] = dict(params)

    @classmethod
    def from_dict(cls, spec: Mapping[str, Mapping[str, Any]]) -> "ParameterSpace":
        """
        Build a space from plain dicts, e.g. parsed from YAML.

        Each entry is either ``{"choices": [...]}`` or
        ``{"lower": x, "upper": y}`` with an optional ``"type"`` of ``"int"``
        or ``"float"``; without a type, integer bounds give an integer range.
        """
        if not isinstance(spec, Mapping):
            raise InvalidParameterSpaceError(f"Hyperparameter space must be a mapping, got {spec!r}")

        params: Dict[str, Parameter] = {}
        for name, entry in spec.items():
            if not isinstance(entry, Mapping):
                raise InvalidParameterSpaceError(f"Parameter '{name}' must be a mapping, got {entry!r}")
            if "choices" in entry:
                params[name] = Categorical(tuple(entry["choices"] or ()))
                continue
            if "lower" not in entry or "upper" not in entry:
                raise InvalidParameterSpaceError(
                    f"Parameter '{name}' needs 'choices' or both 'lower' and 'upper'"
                )
            lower, upper = entry["lower"], entry["upper"]
            kind = entry.get("type") or ("int" if _is_int(lower) and _is_int(upper) else "float")
            if kind == "int":
                params[name] = IntegerRange(lower, upper)
            elif kind == "float":
                params[name] = ContinuousRange(lower, upper)
            else:
                raise InvalidParameterSpaceError(f"Parameter '{name}' has unknown type '{kind}'")
        return cls(params)

    def sample(self, rng: np.random.Generator) -> Dict[str, Any]:
        """Draw one configuration, parameters in declaration order."""
        return {name: param.sample(rng) for name, param in self.params.items()}

    def contains(self, config: Mapping[str, Any]) -> bool:
        return set(config) == set(self.params) and all(
            self.params[name].contains(value) for name, value in config.items()
        )

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {name: param.to_dict() for name, param in self.params.items()}

    def __len__(self) -> int:
        return len(self.params)

    def __repr__(self) -> str:
        return f"ParameterSpace({self.params!r})"


@dataclass(frozen=True)
class Trial:
    """
    One evaluated configuration.

    ``value`` is the fold-averaged target metric, NaN when no fold could be
    scored; ``error`` then says why.
    """

    trial_index: int
    config: Dict[str, Any]
    value: float
    metrics: Dict[str, float] = field(default_factory=dict)
    n_folds: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not math.isnan(self.value)

    def to_record(self) -> Dict[str, Any]:
        return {
            "trial_index": self.trial_index,
            "config": dict(self.config),
            "value": None if math.isnan(self.value) else self.value,
        }


def select_best(trials: Sequence[Trial], metric: Metric) -> Optional[Trial]:
    """
    Pick the trial with the best value in ``metric``'s direction.

    Trials without a value are skipped; ties go to the lowest trial index.

    Example:
        select_best(archive, get_metric("auc"))
    """
    best: Optional[Trial] = None
    for trial in sorted(trials, key=lambda t: t.trial_index):
        if not trial.ok:
            continue
        if best is None or metric.is_better(trial.value, best.value):
            best = trial
    return best


class TuningArchive:
    """Append-only record of trials with strictly increasing indices."""

    def __init__(self) -> None:
        self._trials: List[Trial] = []

    def append(self, trial: Trial) -> None:
        if self._trials and trial.trial_index <= self._trials[-1].trial_index:
            raise ValueError(
                f"Trial index {trial.trial_index} does not follow {self._trials[-1].trial_index}"
            )
        self._trials.append(trial)

    @property
    def trials(self) -> tuple:
        return tuple(self._trials)

    def __iter__(self) -> Iterator[Trial]:
        return iter(tuple(self._trials))

    def __len__(self) -> int:
        return len(self._trials)

    def __getitem__(self, position: int) -> Trial:
        return self._trials[position]

    def best(self, metric: str) -> Optional[Trial]:
        return select_best(self._trials, get_metric(metric))

    def failures(self) -> List[Trial]:
        return [trial for trial in self._trials if not trial.ok]

    def to_records(self) -> List[Dict[str, Any]]:
        return [trial.to_record() for trial in self._trials]

    def to_frame(self) -> pd.DataFrame:
        """One row per trial: index, each sampled parameter, target value and error."""
        rows = []
        for trial in self._trials:
            row: Dict[str, Any] = {"trial_index": trial.trial_index}
            row.update(trial.config)
            row["value"] = trial.value
            row["error"] = trial.error
            rows.append(row)
        return pd.DataFrame(rows)


@dataclass
class TuningResult:
    """The selected trial (None when no trial succeeded) and the full archive."""

    best: Optional[Trial]
    archive: TuningArchive
    target_metric: str

    @property
    def best_config(self) -> Optional[Dict[str, Any]]:
        return None if self.best is None else dict(self.best.config)

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data form of the tuning archive output, suitable for YAML."""
        return {
            "target_metric": self.target_metric,
            "direction": get_metric(self.target_metric).direction,
            "best": None if self.best is None else self.best.to_record(),
            "trials": self.archive.to_records(),
        }


class RandomSearchTuner:
    """
    Random search over a hyperparameter space for one learner template.

    Args:
        seed: Base seed; trial i samples from ``derive_seed(seed, "trial", i)``.
        max_workers: Threads evaluating trials concurrently; 1 is sequential.
        unit_timeout: Optional per-cell timeout forwarded to the runner.

    Example:
        tuner = RandomSearchTuner(seed=1)
        result = tuner.tune(task, spec, space, KFoldCV(3, seed=1), "mcc", 10)
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

    def sample_config(self, space: ParameterSpace, trial_index: int) -> Dict[str, Any]:
        """The configuration trial ``trial_index`` evaluates."""
        return space.sample(make_rng(self.seed, "trial", trial_index))

    def tune(
        self,
        task: Task,
        learner_template: Predictor,
        hyperparameter_space: Union[ParameterSpace, Mapping[str, Mapping[str, Any]]],
        resampling_strategy: ResamplingStrategy,
        target_metric: str = "auc",
        trial_budget: int = 20,
        direction: Optional[str] = None,
    ) -> TuningResult:
        """
        Run ``trial_budget`` random-search trials and select the best one.

        Args:
            task: The task to tune on.
            learner_template: Learner or PipelineSpec; each trial binds its
                configuration with ``with_params``.
            hyperparameter_space: A ParameterSpace or its dict form.
            resampling_strategy: Produces the folds shared by all trials.
            target_metric: Metric name to optimise.
            trial_budget: Number of trials.
            direction: Optional "maximize"/"minimize"; must agree with the
                metric's declared direction.

        Returns:
            TuningResult with the best trial and the full archive.

        Raises:
            ValueError: For an unknown metric or a direction mismatch.
            InvalidParameterSpaceError: For a malformed space.
            IncompatiblePipelineError: If the template cannot run on the task.
            InsufficientDataError: If the folds cannot be generated.
        """
        metric = get_metric(target_metric)
        if direction is not None and direction != metric.direction:
            raise ValueError(
                f"Metric '{target_metric}' is declared to {metric.direction}, "
                f"but direction '{direction}' was requested"
            )
        space = (
            hyperparameter_space
            if isinstance(hyperparameter_space, ParameterSpace)
            else ParameterSpace.from_dict(hyperparameter_space)
        )

        archive = TuningArchive()
        if trial_budget <= 0:
            logger.warning(f"Trial budget is {trial_budget}, nothing to tune")
            return TuningResult(best=None, archive=archive, target_metric=target_metric)

        learner_template.validate(task)
        folds = resampling_strategy.instantiate(task)
        logger.info(
            f"Tuning '{learner_template.id}' on task '{task.task_id}': {trial_budget} trials, "
            f"{len(folds)} folds, target {target_metric} ({metric.direction})"
        )

        if self.max_workers == 1:
            trials = [
                self._run_trial(task, learner_template, space, folds, target_metric, i)
                for i in range(trial_budget)
            ]
        else:
            trials = self._run_pool(task, learner_template, space, folds, target_metric, trial_budget)

        for trial in sorted(trials, key=lambda t: t.trial_index):
            archive.append(trial)

        best = select_best(archive.trials, metric)
        if best is None:
            logger.warning(f"All {trial_budget} trials failed for '{learner_template.id}'")
        else:
            logger.info(
                f"Best trial {best.trial_index}: {target_metric}={best.value:.4f} with {best.config}"
            )
        return TuningResult(best=best, archive=archive, target_metric=target_metric)

    def _run_pool(
        self,
        task: Task,
        learner_template: Predictor,
        space: ParameterSpace,
        folds: Sequence[Fold],
        target_metric: str,
        trial_budget: int,
    ) -> List[Trial]:
        trials: List[Trial] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [
                executor.submit(self._run_trial, task, learner_template, space, folds, target_metric, i)
                for i in range(trial_budget)
            ]
            for future in as_completed(futures):
                trials.append(future.result())
        return trials

    def _run_trial(
        self,
        task: Task,
        learner_template: Predictor,
        space: ParameterSpace,
        folds: Sequence[Fold],
        target_metric: str,
        trial_index: int,
    ) -> Trial:
        config = self.sample_config(space, trial_index)
        spec = learner_template.with_params(**config)

        runner = BenchmarkRunner(
            seed=derive_seed(self.seed, "trial", trial_index),
            max_workers=1,
            unit_timeout=self.unit_timeout,
        )
        report = MetricAggregator().aggregate(runner.run_folds(task, [spec], folds))

        metrics = dict(report.scores.get(spec.id, {}))
        value = metrics.get(target_metric, math.nan)
        n_folds = sum(1 for values in report.fold_scores.get(spec.id, {}).values() if target_metric in values)

        error = None
        if math.isnan(value):
            reasons = list(report.spec_errors.values()) + list(report.failed_cells.values())
            reasons = reasons or [
                f"{target_metric} undefined on every fold"
            ]
            error = "; ".join(reasons)
            logger.warning(f"Trial {trial_index} with {config} failed: {error}")
        else:
            logger.info(f"Trial {trial_index}: {target_metric}={value:.4f} with {config}")

        return Trial(
            trial_index=trial_index,
            config=config,
            value=value,
            metrics=metrics,
            n_folds=n_folds,
            error=error,
        )
