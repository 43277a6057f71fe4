"""
Task definition for binary classification benchmarks.

A Task binds a tabular dataset to its target column and the label that
counts as the positive class. Tasks are validated on construction and never
mutated: every accessor returns a copy, and transformations produce a new
Task.

Example:
    from classifier_benchmark.task import Task

    task = Task.from_csv("flights.csv", target_column="delayed", positive_label="yes")
    print(task.n_rows, task.feature_names)
    X_train = task.features(train_indices)
    y_train = task.binary_labels(train_indices)
"""

import logging
from typing import Any, List, Optional, Sequence

import numpy as np
import pandas as pd

from .exceptions import InvalidTaskError

logger = logging.getLogger(__name__)


def is_numeric_column(series: pd.Series) -> bool:
    """Return True for numeric (including boolean) columns; everything else is categorical."""
    return pd.api.types.is_numeric_dtype(series)


class Task:
    """
    Immutable binary classification task.

    The table is copied on construction and only ever handed out as a copy,
    so the validated target cannot change after construction.

    Args:
        data: Table holding the feature columns and the target column.
        target_column: Name of the target column.
        positive_label: Target value treated as the positive class.
        task_id: Identifier used in logs and reports.

    Raises:
        InvalidTaskError: If the table is empty, the target column is
            missing, has missing values, does not hold exactly two labels,
            or does not contain ``positive_label``.

    Example:
        df = pd.DataFrame({"x": [1.0, 2.0, 3.0], "y": ["a", "b", "a"]})
        task = Task(df, target_column="y", positive_label="b")
        task.negative_label  # "a"
    """

    def __init__(
        self,
        data: pd.DataFrame,
        target_column: str,
        positive_label: Any,
        task_id: str = "task",
    ) -> None:
        if not isinstance(data, pd.DataFrame):
            raise InvalidTaskError(
                f"Task data must be a pandas DataFrame, got {type(data).__name__}"
            )
        if len(data) == 0:
            raise InvalidTaskError(f"Task '{task_id}' has zero rows")
        if target_column not in data.columns:
            raise InvalidTaskError(
                f"Target column '{target_column}' not found in task '{task_id}'"
            )

        target = data[target_column]
        n_missing = int(target.isna().sum())
        if n_missing > 0:
            raise InvalidTaskError(
                f"Target column '{target_column}' has {n_missing} missing values"
            )

        labels = list(pd.unique(target))
        if len(labels) != 2:
            raise InvalidTaskError(
                f"Target column '{target_column}' must be binary, "
                f"found {len(labels)} distinct labels: {labels}"
            )
        if positive_label not in labels:
            raise InvalidTaskError(
                f"Positive label {positive_label!r} not found in target "
                f"column '{target_column}' (labels: {labels})"
            )

        # Own a private copy with positional row ids; category columns become
        # plain object columns so missing cells are uniformly NaN/None.
        owned = data.reset_index(drop=True).copy()
        for column in owned.columns:
            if isinstance(owned[column].dtype, pd.CategoricalDtype):
                owned[column] = owned[column].astype(object)

        object.__setattr__(self, "_data", owned)
        object.__setattr__(self, "target_column", target_column)
        object.__setattr__(self, "positive_label", positive_label)
        object.__setattr__(self, "task_id", task_id)
        object.__setattr__(
            self,
            "_negative_label",
            labels[1] if labels[0] == positive_label else labels[0],
        )

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"Task is immutable, cannot set '{name}'")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"Task is immutable, cannot delete '{name}'")

    @property
    def data(self) -> pd.DataFrame:
        """A copy of the full table, target column included."""
        return self._data.copy()

    @classmethod
    def from_csv(
        cls,
        path: str,
        target_column: str,
        positive_label: Any,
        task_id: Optional[str] = None,
        **read_csv_kwargs: Any,
    ) -> "Task":
        """
        Load a header-row CSV file into a Task.

        The file is expected to be the output of the (external) ETL stage.
        When ``positive_label`` is given as a string but the target column was
        parsed as numbers, the label is matched by its string form.

        Args:
            path: Path to the CSV file.
            target_column: Name of the target column.
            positive_label: Positive class label.
            task_id: Optional identifier, defaults to the file path.
            **read_csv_kwargs: Passed through to ``pandas.read_csv``.

        Returns:
            A validated Task.
        """
        data = pd.read_csv(path, **read_csv_kwargs)
        logger.info(f"Loaded {len(data)} rows and {len(data.columns)} columns from {path}")

        if target_column in data.columns and isinstance(positive_label, str):
            for label in pd.unique(data[target_column].dropna()):
                if str(label) == positive_label:
                    positive_label = label
                    break

        return cls(
            data,
            target_column=target_column,
            positive_label=positive_label,
            task_id=task_id or str(path),
        )

    @property
    def negative_label(self) -> Any:
        """The target value that is not the positive label."""
        return self._negative_label

    @property
    def n_rows(self) -> int:
        return len(self._data)

    @property
    def feature_names(self) -> List[str]:
        return [c for c in self._data.columns if c != self.target_column]

    def column(self, name: str) -> pd.Series:
        """Return a copy of one column."""
        if name not in self._data.columns:
            raise KeyError(f"Column '{name}' not found in task '{self.task_id}'")
        return self._data[name].copy()

    def features(self, indices: Optional[Sequence[int]] = None) -> pd.DataFrame:
        """
        Return a copy of the feature columns, optionally restricted to rows.

        Args:
            indices: Positional row ids. All rows when None.
        """
        frame = self._data[self.feature_names]
        if indices is not None:
            frame = frame.iloc[np.asarray(indices, dtype=int)]
        return frame.reset_index(drop=True).copy()

    def labels(self, indices: Optional[Sequence[int]] = None) -> np.ndarray:
        """Return the target values, optionally restricted to rows."""
        target = self._data[self.target_column].to_numpy()
        if indices is not None:
            target = target[np.asarray(indices, dtype=int)]
        return target.copy()

    def binary_labels(self, indices: Optional[Sequence[int]] = None) -> np.ndarray:
        """Return 1 where the target equals the positive label, 0 elsewhere."""
        return (self.labels(indices) == self.positive_label).astype(int)

    def categorical_features(self) -> List[str]:
        return [c for c in self.feature_names if not is_numeric_column(self._data[c])]

    def numeric_features(self) -> List[str]:
        return [c for c in self.feature_names if is_numeric_column(self._data[c])]

    def missing_counts(self) -> pd.Series:
        """Number of missing cells per feature column."""
        return self._data[self.feature_names].isna().sum()

    def with_data(self, data: pd.DataFrame) -> "Task":
        """Return a new Task over ``data`` with the same target definition."""
        return Task(
            data,
            target_column=self.target_column,
            positive_label=self.positive_label,
            task_id=self.task_id,
        )

    def __repr__(self) -> str:
        return (
            f"Task(task_id={self.task_id!r}, rows={self.n_rows}, "
            f"features={len(self.feature_names)}, target={self.target_column!r}, "
            f"positive_label={self.positive_label!r})"
        )
