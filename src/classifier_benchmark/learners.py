"""
Learner variants and pipeline specs.

A Learner wraps one off-the-shelf classifier behind a uniform capability:
``fit(X, y, random_state)`` returns an opaque model state and
``predict(state, X)`` returns positive-class probabilities. A PipelineSpec
binds a preprocessing chain to one learner and exposes the same surface, so
bare learners and pipelines are interchangeable benchmark subjects.

Labels passed to ``fit`` are binary indicators (1 = positive class).

Example:
    from classifier_benchmark.learners import Learner, LearnerKind, build_pipeline

    forest = Learner(LearnerKind.RANDOM_FOREST, {"n_estimators": 200})
    spec = build_pipeline(forest)
    state = spec.fit(X_train, y_train, random_state=1)
    scores = spec.predict(state, X_test)
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.discriminant_analysis import LinearDiscriminantAnalysis
from sklearn.dummy import DummyClassifier
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.neural_network import MLPClassifier
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.tree import DecisionTreeClassifier
from xgboost import XGBClassifier

from .exceptions import IncompatiblePipelineError
from .preprocessing import DEFAULT_OTHER_BUCKET, FittedPreprocessing, PreprocessingPipeline, Step, standard_steps
from .task import Task

logger = logging.getLogger(__name__)


class LearnerKind(Enum):
    """The learner variants the harness knows how to build."""

    FEATURELESS = "featureless"
    LOGISTIC_REGRESSION = "log_reg"
    LDA = "lda"
    DECISION_TREE = "decision_tree"
    RANDOM_FOREST = "random_forest"
    GRADIENT_BOOSTING = "xgboost"
    NEURAL_NETWORK = "neural_network"


# Default hyperparameters per variant, overridden by Learner params
DEFAULT_PARAMS: Dict[LearnerKind, Dict[str, Any]] = {
    LearnerKind.FEATURELESS: {"strategy": "prior"},
    LearnerKind.LOGISTIC_REGRESSION: {"C": 1.0, "max_iter": 1000},
    LearnerKind.LDA: {"solver": "svd"},
    LearnerKind.DECISION_TREE: {"criterion": "gini", "min_samples_leaf": 1},
    LearnerKind.RANDOM_FOREST: {
        "n_estimators": 100,
        "max_features": "sqrt",
        "n_jobs": 1,
    },
    LearnerKind.GRADIENT_BOOSTING: {
        "max_depth": 5,
        "learning_rate": 0.2,
        "n_estimators": 100,
        "subsample": 0.8,
        "colsample_bytree": 0.8,
        "eval_metric": "logloss",
        "n_jobs": 1,
    },
    LearnerKind.NEURAL_NETWORK: {
        "hidden_units": 32,
        "alpha": 1e-4,
        "activation": "relu",
        "max_iter": 500,
    },
}

# (requires_numeric, handles_missing)
INPUT_REQUIREMENTS: Dict[LearnerKind, tuple] = {
    LearnerKind.FEATURELESS: (False, True),
    LearnerKind.LOGISTIC_REGRESSION: (True, False),
    LearnerKind.LDA: (True, False),
    LearnerKind.DECISION_TREE: (True, False),
    LearnerKind.RANDOM_FOREST: (True, False),
    LearnerKind.GRADIENT_BOOSTING: (True, True),
    LearnerKind.NEURAL_NETWORK: (True, False),
}


def _with_seed(estimator: Any, random_state: Optional[int]) -> Any:
    """Set ``random_state`` on estimators that accept one."""
    if random_state is not None and "random_state" in estimator.get_params():
        estimator.set_params(random_state=random_state)
    return estimator


def _build_estimator(kind: LearnerKind, params: Dict[str, Any], random_state: Optional[int]) -> Any:
    """
    Instantiate the underlying scikit-learn / XGBoost estimator for a variant.

    Args:
        kind: Learner variant.
        params: Merged hyperparameters.
        random_state: Seed for stochastic estimators.

    Returns:
        An unfitted estimator.
    """
    if kind is LearnerKind.FEATURELESS:
        return DummyClassifier(**params)
    if kind is LearnerKind.LOGISTIC_REGRESSION:
        return _with_seed(LogisticRegression(**params), random_state)
    if kind is LearnerKind.LDA:
        return LinearDiscriminantAnalysis(**params)
    if kind is LearnerKind.DECISION_TREE:
        return _with_seed(DecisionTreeClassifier(**params), random_state)
    if kind is LearnerKind.RANDOM_FOREST:
        return _with_seed(RandomForestClassifier(**params), random_state)
    if kind is LearnerKind.GRADIENT_BOOSTING:
        return _with_seed(XGBClassifier(**params), random_state)
    if kind is LearnerKind.NEURAL_NETWORK:
        mlp_params = dict(params)
        hidden_units = mlp_params.pop("hidden_units", None)
        if hidden_units is not None:
            mlp_params["hidden_layer_sizes"] = (int(hidden_units),)
        mlp = _with_seed(MLPClassifier(**mlp_params), random_state)
        return make_pipeline(StandardScaler(), mlp)
    raise ValueError(f"Unsupported learner kind: {kind}")


def _positive_proba(model: Any, X: Any) -> np.ndarray:
    """Probability of class 1, or zeros when the model never saw class 1."""
    proba = np.asarray(model.predict_proba(X), dtype=float)
    classes = list(model.classes_)
    if 1 not in classes:
        return np.zeros(proba.shape[0])
    return proba[:, classes.index(1)]


class Predictor(ABC):
    """
    The fit/predict capability shared by learners and pipeline specs.

    Subclasses must be safe to share across folds: ``fit`` returns the
    learned state instead of storing it.
    """

    id: str
    requires_numeric: bool
    handles_missing: bool

    @abstractmethod
    def fit(self, X: pd.DataFrame, y: np.ndarray, random_state: Optional[int] = None) -> Any:
        """Fit on a training partition and return the model state."""

    @abstractmethod
    def predict(self, state: Any, X: pd.DataFrame) -> np.ndarray:
        """Return positive-class probabilities for ``X``."""

    @abstractmethod
    def with_params(self, **params: Any) -> "Predictor":
        """Return a copy with hyperparameters overridden."""

    @abstractmethod
    def validate(self, task: Task) -> None:
        """Raise IncompatiblePipelineError if ``task`` violates the input contract."""


class Learner(Predictor):
    """
    One classifier variant with its hyperparameters.

    Args:
        kind: The learner variant.
        params: Hyperparameters overriding ``DEFAULT_PARAMS[kind]``.
        learner_id: Identifier, defaults to ``kind.value``.

    Example:
        tree = Learner(LearnerKind.DECISION_TREE, {"max_depth": 4})
        state = tree.fit(X_train, y_train, random_state=3)
        scores = tree.predict(state, X_test)
    """

    def __init__(
        self,
        kind: LearnerKind,
        params: Optional[Dict[str, Any]] = None,
        learner_id: Optional[str] = None,
    ) -> None:
        self.kind = LearnerKind(kind)
        self.params: Dict[str, Any] = dict(params or {})
        self.id = learner_id or self.kind.value
        self.requires_numeric, self.handles_missing = INPUT_REQUIREMENTS[self.kind]

    @property
    def effective_params(self) -> Dict[str, Any]:
        merged = dict(DEFAULT_PARAMS[self.kind])
        merged.update(self.params)
        return merged

    def with_params(self, **params: Any) -> "Learner":
        merged = dict(self.params)
        merged.update(params)
        return Learner(self.kind, merged, learner_id=self.id)

    def validate(self, task: Task) -> None:
        if self.requires_numeric and task.categorical_features():
            raise IncompatiblePipelineError(
                f"Learner '{self.id}' requires numeric input but task has categorical "
                f"features {task.categorical_features()}; add a CategoricalEncoding step"
            )
        missing = task.missing_counts()
        if not self.handles_missing and missing.any():
            raise IncompatiblePipelineError(
                f"Learner '{self.id}' cannot handle missing values but columns "
                f"{missing[missing > 0].index.tolist()} have them; add imputation steps"
            )

    def fit(self, X: pd.DataFrame, y: np.ndarray, random_state: Optional[int] = None) -> Any:
        model = _build_estimator(self.kind, self.effective_params, random_state)
        model.fit(self._matrix(X), np.asarray(y, dtype=int))
        return model

    def predict(self, state: Any, X: pd.DataFrame) -> np.ndarray:
        return _positive_proba(state, self._matrix(X))

    def _matrix(self, X: pd.DataFrame) -> Any:
        if self.requires_numeric:
            return X.to_numpy(dtype=float)
        return X

    def __repr__(self) -> str:
        return f"Learner(kind={self.kind.value!r}, params={self.params!r}, id={self.id!r})"


class FittedPipeline:
    """Fitted preprocessing states plus the fitted learner state of one execution."""

    def __init__(self, preprocessing: FittedPreprocessing, model: Any) -> None:
        self.preprocessing = preprocessing
        self.model = model


class PipelineSpec(Predictor):
    """
    A preprocessing chain bound to exactly one learner.

    Args:
        learner: The terminal learner.
        steps: A PreprocessingPipeline or a sequence of steps.
        spec_id: Identifier, defaults to the step names joined with the
            learner id.

    Raises:
        IncompatiblePipelineError: If the steps are out of canonical order.

    Example:
        spec = PipelineSpec(
            Learner(LearnerKind.LOGISTIC_REGRESSION),
            [NumericImputation(), CategoricalEncoding()],
        )
    """

    def __init__(
        self,
        learner: Learner,
        steps: Optional[Any] = None,
        spec_id: Optional[str] = None,
    ) -> None:
        if isinstance(steps, PreprocessingPipeline):
            self.preprocessing = steps
        else:
            self.preprocessing = PreprocessingPipeline(steps)
        self.learner = learner
        self.id = spec_id or ".".join([s.name for s in self.preprocessing] + [learner.id])
        self.requires_numeric = False
        self.handles_missing = True

    @property
    def steps(self) -> Sequence[Step]:
        return list(self.preprocessing)

    def with_params(self, **params: Any) -> "PipelineSpec":
        return PipelineSpec(self.learner.with_params(**params), self.preprocessing, spec_id=self.id)

    def validate(self, task: Task) -> None:
        """
        Check the chain delivers what the learner declares it needs.

        Raises:
            IncompatiblePipelineError: When categorical features reach a
                numeric-only learner unencoded, or missing values reach a
                learner that cannot handle them.
        """
        learner = self.learner
        if (
            learner.requires_numeric
            and task.categorical_features()
            and not self.preprocessing.encodes_categorical
        ):
            raise IncompatiblePipelineError(
                f"Pipeline '{self.id}': learner '{learner.id}' requires numeric input "
                f"but no encoding step handles {task.categorical_features()}"
            )

        if learner.handles_missing:
            return

        missing = task.missing_counts()
        missing_columns = set(missing[missing > 0].index)
        unhandled = []
        for column in sorted(missing_columns, key=str):
            if column in task.categorical_features():
                if not self.preprocessing.imputes_categorical:
                    unhandled.append(column)
            elif not self.preprocessing.imputes_numeric:
                unhandled.append(column)
        if unhandled:
            raise IncompatiblePipelineError(
                f"Pipeline '{self.id}': learner '{learner.id}' cannot handle missing "
                f"values and no imputation step covers {unhandled}"
            )

    def fit(self, X: pd.DataFrame, y: np.ndarray, random_state: Optional[int] = None) -> FittedPipeline:
        preprocessing = self.preprocessing.fit(X, random_state=random_state)
        X_train = preprocessing.transform(X)
        model = self.learner.fit(X_train, y, random_state=random_state)
        return FittedPipeline(preprocessing, model)

    def predict(self, state: FittedPipeline, X: pd.DataFrame) -> np.ndarray:
        return self.learner.predict(state.model, state.preprocessing.transform(X))

    def __repr__(self) -> str:
        return f"PipelineSpec(id={self.id!r}, steps={self.steps!r}, learner={self.learner!r})"


def build_pipeline(
    learner: Learner,
    other_bucket: Optional[str] = DEFAULT_OTHER_BUCKET,
    spec_id: Optional[str] = None,
) -> PipelineSpec:
    """
    Bind ``learner`` to the standard preprocessing chain.

    Encoding is appended only for learners that require numeric input.

    Args:
        learner: The terminal learner.
        other_bucket: Bucket for unseen categories at predict time.
        spec_id: Optional identifier, defaults to the learner id.

    Returns:
        A ready-to-benchmark PipelineSpec.
    """
    steps = standard_steps(requires_numeric=learner.requires_numeric, other_bucket=other_bucket)
    return PipelineSpec(learner, steps, spec_id=spec_id or learner.id)


def default_learners(kinds: Optional[Sequence[Any]] = None) -> Dict[str, Learner]:
    """
    Return learners with default hyperparameters, keyed by learner id.

    Args:
        kinds: Variants (LearnerKind or their string values). All when None.
    """
    selected = list(LearnerKind) if kinds is None else [LearnerKind(k) for k in kinds]
    return {kind.value: Learner(kind) for kind in selected}
