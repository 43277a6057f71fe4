"""
Configuration for benchmark and tuning runs.

Options come from, in increasing priority: the defaults below, a YAML file,
and ``BENCHMARK_*`` environment variables.

Example YAML:

    folds: 5
    trial_budget: 20
    seed: 42
    target_metric: auc
    max_workers: 4
    search_spaces:
      random_forest:
        n_estimators: {lower: 50, upper: 300}
        min_samples_leaf: {lower: 1, upper: 10}

Example:
    from classifier_benchmark.config import load_config

    config = load_config("config/benchmark.yaml")
    runner = config.make_runner()
    result = runner.run(task, specs, config.make_resampling())
"""

import copy
import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .benchmark import BenchmarkRunner
from .learners import LearnerKind
from .metrics import get_metric
from .preprocessing import DEFAULT_OTHER_BUCKET
from .resampling import Holdout, KFoldCV, ResamplingStrategy
from .tuning import ParameterSpace, RandomSearchTuner

logger = logging.getLogger(__name__)

# Search spaces for every tunable learner, keyed by learner id
DEFAULT_SEARCH_SPACES: Dict[str, Dict[str, Dict[str, Any]]] = {
    "log_reg": {
        "C": {"lower": 0.01, "upper": 10.0},
    },
    "decision_tree": {
        "max_depth": {"lower": 2, "upper": 20},
        "min_samples_leaf": {"lower": 1, "upper": 20},
        "criterion": {"choices": ["gini", "entropy"]},
    },
    "random_forest": {
        "n_estimators": {"lower": 50, "upper": 300},
        "min_samples_leaf": {"lower": 1, "upper": 10},
        "max_features": {"lower": 0.1, "upper": 1.0},
    },
    "xgboost": {
        "learning_rate": {"lower": 0.01, "upper": 0.3},
        "max_depth": {"lower": 2, "upper": 8},
        "n_estimators": {"lower": 50, "upper": 300},
        "subsample": {"lower": 0.5, "upper": 1.0},
    },
    "neural_network": {
        "hidden_units": {"lower": 4, "upper": 64},
        "alpha": {"lower": 1e-5, "upper": 0.1},
    },
}

# Environment variable -> (option, type)
ENV_OVERRIDES: Dict[str, tuple] = {
    "BENCHMARK_SEED": ("seed", int),
    "BENCHMARK_MAX_WORKERS": ("max_workers", int),
    "BENCHMARK_FOLDS": ("folds", int),
}


@dataclass
class BenchmarkConfig:
    """
    Recognised configuration options.

    Raises:
        ValueError: On an invalid option value, an unknown metric or learner,
            or a direction that disagrees with the target metric.
    """

    folds: int = 5
    trial_budget: int = 20
    seed: int = 42
    target_metric: str = "auc"
    direction: Optional[str] = None
    max_workers: int = 1
    unit_timeout: Optional[float] = None
    holdout_ratio: Optional[float] = None
    stratify: bool = False
    other_bucket: Optional[str] = DEFAULT_OTHER_BUCKET
    learners: List[str] = field(default_factory=lambda: [kind.value for kind in LearnerKind])
    search_spaces: Dict[str, Dict[str, Dict[str, Any]]] = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_SEARCH_SPACES)
    )

    def __post_init__(self) -> None:
        if self.folds < 2:
            raise ValueError(f"folds must be at least 2, got {self.folds}")
        if self.trial_budget < 0:
            raise ValueError(f"trial_budget must be non-negative, got {self.trial_budget}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {self.max_workers}")
        if self.unit_timeout is not None and self.unit_timeout <= 0:
            raise ValueError(f"unit_timeout must be positive, got {self.unit_timeout}")
        if self.holdout_ratio is not None and not 0.0 < self.holdout_ratio < 1.0:
            raise ValueError(f"holdout_ratio must be in (0, 1), got {self.holdout_ratio}")

        metric = get_metric(self.target_metric)
        if self.direction is not None and self.direction != metric.direction:
            raise ValueError(
                f"direction '{self.direction}' disagrees with metric "
                f"'{self.target_metric}', which is declared to {metric.direction}"
            )

        known = {kind.value for kind in LearnerKind}
        unknown = [name for name in self.learners if name not in known]
        if unknown:
            raise ValueError(f"Unknown learners {unknown}. Available: {sorted(known)}")

        # Fail on malformed spaces at load time rather than mid-run
        for space in self.search_spaces.values():
            ParameterSpace.from_dict(space)

    def make_resampling(self) -> ResamplingStrategy:
        """Holdout when ``holdout_ratio`` is set, k-fold otherwise."""
        if self.holdout_ratio is not None:
            return Holdout(ratio=self.holdout_ratio, seed=self.seed, stratify=self.stratify)
        return KFoldCV(folds=self.folds, seed=self.seed, stratify=self.stratify)

    def make_runner(self) -> BenchmarkRunner:
        return BenchmarkRunner(
            seed=self.seed,
            max_workers=self.max_workers,
            unit_timeout=self.unit_timeout,
        )

    def make_tuner(self) -> RandomSearchTuner:
        return RandomSearchTuner(
            seed=self.seed,
            max_workers=self.max_workers,
            unit_timeout=self.unit_timeout,
        )

    def search_space(self, learner_id: str) -> ParameterSpace:
        """
        The search space configured for one learner.

        Raises:
            KeyError: If no space is configured for ``learner_id``.
        """
        if learner_id not in self.search_spaces:
            raise KeyError(
                f"No search space configured for '{learner_id}'. "
                f"Configured: {sorted(self.search_spaces)}"
            )
        return ParameterSpace.from_dict(self.search_spaces[learner_id])

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: copy.deepcopy(getattr(self, f.name)) for f in fields(self)}


def load_config(
    path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> BenchmarkConfig:
    """
    Load configuration from an optional YAML file plus environment overrides.

    Search spaces given in the file replace the default space of the same
    learner; other learners keep their defaults.

    Args:
        path: YAML file path. Defaults only when None.
        env: Environment mapping, ``os.environ`` when None.

    Returns:
        A validated BenchmarkConfig.

    Raises:
        ValueError: On unknown keys or invalid values.
    """
    env = os.environ if env is None else env
    options: Dict[str, Any] = {}

    if path is not None:
        with open(path, "r") as f:
            options = yaml.safe_load(f) or {}
        if not isinstance(options, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        logger.info(f"Loaded configuration from {path}")

    known = {f.name for f in fields(BenchmarkConfig)}
    unknown = sorted(set(options) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {unknown}")

    if "search_spaces" in options:
        spaces = copy.deepcopy(DEFAULT_SEARCH_SPACES)
        spaces.update(options["search_spaces"] or {})
        options["search_spaces"] = spaces

    for variable, (option, cast) in ENV_OVERRIDES.items():
        if env.get(variable):
            try:
                options[option] = cast(env[variable])
            except ValueError:
                raise ValueError(f"{variable}={env[variable]!r} is not a valid {cast.__name__}") from None
            logger.info(f"{option} overridden by {variable}={env[variable]}")

    return BenchmarkConfig(**options)
