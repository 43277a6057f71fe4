"""
Unit tests for the task module.

Tests Task validation, read-only accessors, CSV loading, and derivation of
new tasks.
"""

import os
import sys

import numpy as np
import pandas as pd
import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../src"))

from classifier_benchmark.exceptions import InvalidTaskError
from classifier_benchmark.task import Task


@pytest.fixture
def frame():
    """Small mixed-type frame with a string target."""
    return pd.DataFrame(
        {
            "fare": [10.0, 20.0, np.nan, 40.0, 50.0, 60.0],
            "carrier": ["AA", "BB", "AA", None, "CC", "BB"],
            "delayed": ["no", "yes", "no", "no", "yes", "no"],
        },
        index=[10, 11, 12, 13, 14, 15],
    )


class TestTaskValidation:
    """Tests for Task construction checks."""

    def test_valid_task(self, frame):
        task = Task(frame, target_column="delayed", positive_label="yes")
        assert task.n_rows == 6
        assert task.positive_label == "yes"
        assert task.negative_label == "no"

    def test_missing_target_column(self, frame):
        with pytest.raises(InvalidTaskError, match="not found"):
            Task(frame, target_column="status", positive_label="yes")

    def test_three_labels_rejected(self, frame):
        frame.loc[12, "delayed"] = "maybe"
        with pytest.raises(InvalidTaskError, match="binary"):
            Task(frame, target_column="delayed", positive_label="yes")

    def test_single_label_rejected(self, frame):
        frame["delayed"] = "no"
        with pytest.raises(InvalidTaskError, match="binary"):
            Task(frame, target_column="delayed", positive_label="no")

    def test_zero_rows_rejected(self, frame):
        with pytest.raises(InvalidTaskError, match="zero rows"):
            Task(frame.iloc[0:0], target_column="delayed", positive_label="yes")

    def test_missing_target_values_rejected(self, frame):
        frame.loc[13, "delayed"] = None
        with pytest.raises(InvalidTaskError, match="missing"):
            Task(frame, target_column="delayed", positive_label="yes")

    def test_unknown_positive_label_rejected(self, frame):
        with pytest.raises(InvalidTaskError, match="Positive label"):
            Task(frame, target_column="delayed", positive_label="late")

    def test_non_dataframe_rejected(self):
        with pytest.raises(InvalidTaskError, match="DataFrame"):
            Task([[1, 2]], target_column="a", positive_label=1)


class TestTaskAccessors:
    """Tests for read-only accessors."""

    def test_feature_names_exclude_target(self, frame):
        task = Task(frame, target_column="delayed", positive_label="yes")
        assert task.feature_names == ["fare", "carrier"]

    def test_column_types(self, frame):
        task = Task(frame, target_column="delayed", positive_label="yes")
        assert task.numeric_features() == ["fare"]
        assert task.categorical_features() == ["carrier"]

    def test_rows_are_positional(self, frame):
        task = Task(frame, target_column="delayed", positive_label="yes")
        X = task.features([1, 4])
        assert list(X["carrier"]) == ["BB", "CC"]
        assert list(task.labels([1, 4])) == ["yes", "yes"]

    def test_binary_labels(self, frame):
        task = Task(frame, target_column="delayed", positive_label="yes")
        np.testing.assert_array_equal(task.binary_labels(), [0, 1, 0, 0, 1, 0])

    def test_original_frame_not_shared(self, frame):
        task = Task(frame, target_column="delayed", positive_label="yes")
        frame.loc[10, "fare"] = 999.0
        assert task.column("fare").iloc[0] == 10.0

    def test_accessors_return_copies(self, frame):
        task = Task(frame, target_column="delayed", positive_label="yes")
        X = task.features()
        X.loc[0, "fare"] = -1.0
        task.column("fare").iloc[0] = -1.0
        assert task.features().loc[0, "fare"] == 10.0

    def test_task_is_frozen(self, frame):
        task = Task(frame, target_column="delayed", positive_label="yes")
        with pytest.raises(Exception):
            task.target_column = "fare"

    def test_data_is_a_copy(self, frame):
        task = Task(frame, target_column="delayed", positive_label="yes")

        data = task.data
        data.loc[0, "delayed"] = "maybe"
        data.loc[0, "fare"] = -1.0

        assert list(task.labels()) == ["no", "yes", "no", "no", "yes", "no"]
        assert task.column("fare").iloc[0] == 10.0
        assert task.data is not task.data

    def test_missing_counts(self, frame):
        task = Task(frame, target_column="delayed", positive_label="yes")
        counts = task.missing_counts()
        assert counts["fare"] == 1
        assert counts["carrier"] == 1

    def test_category_columns_become_object(self, frame):
        frame["carrier"] = frame["carrier"].astype("category")
        task = Task(frame, target_column="delayed", positive_label="yes")
        assert task.column("carrier").dtype == object
        assert task.categorical_features() == ["carrier"]

    def test_unknown_column_raises(self, frame):
        task = Task(frame, target_column="delayed", positive_label="yes")
        with pytest.raises(KeyError):
            task.column("nope")

    def test_with_data_returns_new_task(self, frame):
        task = Task(frame, target_column="delayed", positive_label="yes", task_id="flights")
        smaller = task.with_data(frame.iloc[:4])
        assert smaller is not task
        assert smaller.n_rows == 4
        assert smaller.task_id == "flights"
        assert task.n_rows == 6


class TestFromCsv:
    """Tests for Task.from_csv."""

    def test_loads_csv(self, frame, tmp_path):
        path = tmp_path / "flights.csv"
        frame.to_csv(path, index=False)

        task = Task.from_csv(str(path), target_column="delayed", positive_label="yes")

        assert task.n_rows == 6
        assert task.task_id == str(path)

    def test_numeric_target_matched_by_string(self, tmp_path):
        path = tmp_path / "numeric.csv"
        pd.DataFrame({"x": [1.0, 2.0, 3.0], "y": [0, 1, 0]}).to_csv(path, index=False)

        task = Task.from_csv(str(path), target_column="y", positive_label="1")

        assert task.positive_label == 1
        np.testing.assert_array_equal(task.binary_labels(), [0, 1, 0])
