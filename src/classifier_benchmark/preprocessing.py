"""
Preprocessing steps and pipelines.

Each step is a configuration-only object exposing ``fit(table, random_state)``
which returns the learned state, and ``apply(table, state)`` which transforms
a table with that state. Learned state never lives on the step itself, so one
step instance can be shared by pipelines evaluated on different folds without
leaking statistics between them.

Steps that deal with missing or categorical data must appear in this order:

    SchemaAlignment -> ConstantColumnRemoval -> CategoricalImputation
        -> NumericImputation -> CategoricalEncoding

Example:
    from classifier_benchmark.preprocessing import (
        PreprocessingPipeline, NumericImputation, CategoricalEncoding,
    )

    pipeline = PreprocessingPipeline([NumericImputation(), CategoricalEncoding()])
    fitted = pipeline.fit(X_train, random_state=7)
    X_train_t = fitted.transform(X_train)
    X_test_t = fitted.transform(X_test)
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.preprocessing import OneHotEncoder

from .exceptions import IncompatiblePipelineError, SchemaMismatchError
from .seeding import derive_seed
from .task import is_numeric_column

logger = logging.getLogger(__name__)

DEFAULT_OTHER_BUCKET = ".other"


def _categorical_columns(table: pd.DataFrame) -> List[str]:
    return [c for c in table.columns if not is_numeric_column(table[c])]


def _numeric_columns(table: pd.DataFrame) -> List[str]:
    return [c for c in table.columns if is_numeric_column(table[c])]


class Step(ABC):
    """
    A single preprocessing transformation.

    Subclasses set ``rank`` to their position in the canonical order and
    declare which input requirements they satisfy.
    """

    name: str = "step"
    rank: int = 0
    imputes_numeric: bool = False
    imputes_categorical: bool = False
    encodes_categorical: bool = False

    @abstractmethod
    def fit(self, table: pd.DataFrame, random_state: Optional[int] = None) -> Any:
        """Learn state from a training partition."""

    @abstractmethod
    def apply(self, table: pd.DataFrame, state: Any) -> pd.DataFrame:
        """Transform ``table`` with previously learned ``state``."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class SchemaAlignment(Step):
    """
    Pin the category set of every categorical column to the fit-time set.

    Unseen values at apply time are mapped to ``other_bucket``. With
    ``other_bucket=None`` an unseen value raises ``SchemaMismatchError``.

    Args:
        other_bucket: Category that absorbs unseen values, or None.
    """

    name = "schema_alignment"
    rank = 1

    def __init__(self, other_bucket: Optional[str] = DEFAULT_OTHER_BUCKET) -> None:
        self.other_bucket = other_bucket

    def fit(self, table: pd.DataFrame, random_state: Optional[int] = None) -> Dict[str, set]:
        return {
            column: set(table[column].dropna().tolist())
            for column in _categorical_columns(table)
        }

    def apply(self, table: pd.DataFrame, state: Dict[str, set]) -> pd.DataFrame:
        out = table.copy()
        for column, categories in state.items():
            if column not in out.columns:
                raise SchemaMismatchError(f"Column '{column}' seen during fit is missing")

            values = out[column]
            unseen = values.notna() & ~values.isin(categories)
            if not unseen.any():
                continue

            if self.other_bucket is None:
                examples = sorted(map(str, values[unseen].unique()))[:5]
                raise SchemaMismatchError(
                    f"Column '{column}' has {int(unseen.sum())} values not seen during "
                    f"fit and no 'other' bucket is reserved: {examples}"
                )
            out[column] = values.astype(object).where(~unseen, self.other_bucket)
        return out

    def __repr__(self) -> str:
        return f"SchemaAlignment(other_bucket={self.other_bucket!r})"


class ConstantColumnRemoval(Step):
    """Drop columns with at most one distinct non-missing value at fit time."""

    name = "remove_constants"
    rank = 2

    def fit(self, table: pd.DataFrame, random_state: Optional[int] = None) -> List[str]:
        dropped = [c for c in table.columns if table[c].nunique(dropna=True) <= 1]
        if dropped:
            logger.debug(f"Removing constant columns: {dropped}")
        return dropped

    def apply(self, table: pd.DataFrame, state: List[str]) -> pd.DataFrame:
        return table.drop(columns=[c for c in state if c in table.columns])


class CategoricalImputation(Step):
    """
    Fill missing categorical cells with a value drawn from the training data.

    One fill value per column is drawn once at fit time, weighted by the
    observed frequencies, and reused unchanged for every partition the
    fitted pipeline is applied to.
    """

    name = "impute_sample"
    rank = 3
    imputes_categorical = True

    def fit(self, table: pd.DataFrame, random_state: Optional[int] = None) -> Dict[str, Any]:
        rng = np.random.default_rng(random_state)
        fills: Dict[str, Any] = {}
        # sorted so the draw sequence does not depend on column order
        for column in sorted(_categorical_columns(table), key=str):
            observed = table[column].dropna()
            if observed.empty:
                logger.warning(f"Column '{column}' has no observed values, leaving it unimputed")
                continue
            counts = observed.value_counts(sort=False)
            categories = sorted(counts.index.tolist(), key=str)
            weights = counts.loc[categories].to_numpy(dtype=float)
            fills[column] = categories[rng.choice(len(categories), p=weights / weights.sum())]
        return fills

    def apply(self, table: pd.DataFrame, state: Dict[str, Any]) -> pd.DataFrame:
        out = table.copy()
        for column, value in state.items():
            if column in out.columns:
                out[column] = out[column].astype(object).where(out[column].notna(), value)
        return out


class NumericImputation(Step):
    """Fill missing numeric cells with the training-partition column mean."""

    name = "impute_mean"
    rank = 4
    imputes_numeric = True

    def fit(self, table: pd.DataFrame, random_state: Optional[int] = None) -> Dict[str, float]:
        means: Dict[str, float] = {}
        for column in _numeric_columns(table):
            mean = table[column].mean()
            if pd.isna(mean):
                logger.warning(f"Column '{column}' has no observed values, imputing 0.0")
                mean = 0.0
            means[column] = float(mean)
        return means

    def apply(self, table: pd.DataFrame, state: Dict[str, float]) -> pd.DataFrame:
        out = table.copy()
        for column, mean in state.items():
            if column in out.columns and out[column].isna().any():
                out[column] = out[column].astype(float).fillna(mean)
        return out


class CategoricalEncoding(Step):
    """
    One-hot encode categorical columns with categories learned at fit time.

    Values not seen during fit encode as all zeros. Numeric columns pass
    through untouched.
    """

    name = "encode"
    rank = 5
    encodes_categorical = True

    def fit(self, table: pd.DataFrame, random_state: Optional[int] = None) -> Dict[str, Any]:
        columns = _categorical_columns(table)
        if not columns:
            return {"columns": [], "encoder": None}

        encoder = OneHotEncoder(handle_unknown="ignore", sparse_output=False)
        encoder.fit(table[columns].astype(str))
        return {"columns": columns, "encoder": encoder}

    def apply(self, table: pd.DataFrame, state: Dict[str, Any]) -> pd.DataFrame:
        columns = state["columns"]
        if not columns:
            return table.copy()

        missing = [c for c in columns if c not in table.columns]
        if missing:
            raise SchemaMismatchError(f"Columns seen during fit are missing: {missing}")

        encoder = state["encoder"]
        encoded = pd.DataFrame(
            encoder.transform(table[columns].astype(str)),
            columns=encoder.get_feature_names_out(columns),
            index=table.index,
        )
        return pd.concat([table.drop(columns=columns), encoded], axis=1)


class FittedPreprocessing:
    """
    The learned states of one pipeline instance, in step order.

    Created by ``PreprocessingPipeline.fit``; owned by a single (spec, fold)
    execution.
    """

    def __init__(self, steps: Sequence[Step], states: Sequence[Any]) -> None:
        self.steps = list(steps)
        self.states = list(states)

    def transform(self, table: pd.DataFrame) -> pd.DataFrame:
        for step, state in zip(self.steps, self.states):
            table = step.apply(table, state)
        return table


class PreprocessingPipeline:
    """
    An ordered chain of preprocessing steps.

    Composition is list concatenation: ``pipeline + [step]`` or
    ``pipeline_a + pipeline_b`` return a new pipeline.

    Args:
        steps: Steps applied left to right.

    Raises:
        IncompatiblePipelineError: If steps violate the canonical order or a
            step appears twice.
    """

    def __init__(self, steps: Optional[Sequence[Step]] = None) -> None:
        self.steps: List[Step] = list(steps or [])
        ranks = [step.rank for step in self.steps]
        if len(set(ranks)) != len(ranks):
            raise IncompatiblePipelineError(f"Duplicate preprocessing step in {self.steps}")
        if ranks != sorted(ranks):
            raise IncompatiblePipelineError(
                f"Preprocessing steps out of order: {[s.name for s in self.steps]}. "
                "Expected schema_alignment, remove_constants, impute_sample, "
                "impute_mean, encode"
            )

    def __add__(self, other: Any) -> "PreprocessingPipeline":
        if isinstance(other, PreprocessingPipeline):
            return PreprocessingPipeline(self.steps + other.steps)
        return PreprocessingPipeline(self.steps + list(other))

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def imputes_numeric(self) -> bool:
        return any(step.imputes_numeric for step in self.steps)

    @property
    def imputes_categorical(self) -> bool:
        return any(step.imputes_categorical for step in self.steps)

    @property
    def encodes_categorical(self) -> bool:
        return any(step.encodes_categorical for step in self.steps)

    def fit(self, table: pd.DataFrame, random_state: Optional[int] = None) -> FittedPreprocessing:
        """
        Fit every step on the training partition, left to right.

        Each step sees the output of the previous ones and receives its own
        seed derived from ``random_state`` and its position.

        Args:
            table: Training feature table.
            random_state: Seed for stochastic steps.

        Returns:
            The fitted states, ready to transform further partitions.
        """
        base_seed = 0 if random_state is None else random_state
        states: List[Any] = []
        for position, step in enumerate(self.steps):
            state = step.fit(table, random_state=derive_seed(base_seed, "step", position, step.name))
            table = step.apply(table, state)
            states.append(state)
        return FittedPreprocessing(self.steps, states)

    def __repr__(self) -> str:
        return f"PreprocessingPipeline({self.steps!r})"


def standard_steps(
    requires_numeric: bool = True,
    other_bucket: Optional[str] = DEFAULT_OTHER_BUCKET,
) -> PreprocessingPipeline:
    """
    Build the standard preprocessing chain.

    Args:
        requires_numeric: Append one-hot encoding for learners that only
            accept numeric input.
        other_bucket: Bucket for unseen categories at predict time.

    Returns:
        A PreprocessingPipeline with the canonical steps.
    """
    steps: List[Step] = [
        SchemaAlignment(other_bucket=other_bucket),
        ConstantColumnRemoval(),
        CategoricalImputation(),
        NumericImputation(),
    ]
    if requires_numeric:
        steps.append(CategoricalEncoding())
    return PreprocessingPipeline(steps)
