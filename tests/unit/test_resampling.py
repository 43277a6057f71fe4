"""
Unit tests for resampling strategies.

Tests k-fold and holdout partitioning, determinism, stratification, and the
InsufficientDataError edge cases.
"""

import os
import sys

import numpy as np
import pandas as pd
import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../src"))

from classifier_benchmark.exceptions import InsufficientDataError
from classifier_benchmark.resampling import Fold, Holdout, KFoldCV
from classifier_benchmark.task import Task


@pytest.fixture
def task():
    frame = pd.DataFrame({"x": np.arange(50, dtype=float), "y": [0] * 40 + [1] * 10})
    return Task(frame, target_column="y", positive_label=1)


class TestFold:
    """Tests for the Fold record."""

    def test_indices_sorted_and_read_only(self):
        fold = Fold(fold_id=0, train_indices=[4, 1, 3], test_indices=[2, 0])

        np.testing.assert_array_equal(fold.train_indices, [1, 3, 4])
        with pytest.raises(ValueError):
            fold.train_indices[0] = 9

    def test_overlap_rejected(self):
        with pytest.raises(ValueError, match="overlap"):
            Fold(fold_id=0, train_indices=[0, 1], test_indices=[1, 2])


class TestKFoldCV:
    """Tests for KFoldCV."""

    def test_fold_count_and_coverage(self, task):
        folds = KFoldCV(folds=5, seed=1).instantiate(task)

        assert [f.fold_id for f in folds] == [0, 1, 2, 3, 4]
        all_test = np.concatenate([f.test_indices for f in folds])
        np.testing.assert_array_equal(np.sort(all_test), np.arange(50))

    def test_train_is_complement_of_test(self, task):
        for fold in KFoldCV(folds=5, seed=1).instantiate(task):
            assert len(fold.train_indices) + len(fold.test_indices) == 50
            assert np.intersect1d(fold.train_indices, fold.test_indices).size == 0

    def test_same_seed_same_partition(self):
        first = KFoldCV(folds=4, seed=9).split(37)
        second = KFoldCV(folds=4, seed=9).split(37)

        for a, b in zip(first, second):
            np.testing.assert_array_equal(a.test_indices, b.test_indices)

    def test_different_seed_different_partition(self):
        first = KFoldCV(folds=4, seed=1).split(100)
        second = KFoldCV(folds=4, seed=2).split(100)

        assert any(
            not np.array_equal(a.test_indices, b.test_indices) for a, b in zip(first, second)
        )

    def test_rows_are_shuffled(self):
        folds = KFoldCV(folds=2, seed=0).split(100)
        assert not np.array_equal(folds[0].test_indices, np.arange(50))

    def test_stratified_preserves_ratio(self, task):
        folds = KFoldCV(folds=5, seed=3, stratify=True).instantiate(task)
        labels = task.binary_labels()

        for fold in folds:
            assert labels[fold.test_indices].sum() == 2

    def test_one_fold_rejected(self):
        with pytest.raises(InsufficientDataError):
            KFoldCV(folds=1).split(10)

    def test_more_folds_than_rows_rejected(self):
        with pytest.raises(InsufficientDataError, match="non-empty"):
            KFoldCV(folds=5).split(4)

    def test_stratified_small_class_rejected(self, task):
        with pytest.raises(InsufficientDataError, match="Smallest class"):
            KFoldCV(folds=20, stratify=True).instantiate(task)

    def test_stratified_requires_labels(self):
        with pytest.raises(ValueError, match="labels"):
            KFoldCV(folds=2, stratify=True).split(10)


class TestHoldout:
    """Tests for Holdout."""

    def test_single_split_with_ratio(self, task):
        (fold,) = Holdout(ratio=0.8, seed=1).instantiate(task)

        assert len(fold.train_indices) == 40
        assert len(fold.test_indices) == 10
        assert np.intersect1d(fold.train_indices, fold.test_indices).size == 0

    def test_deterministic(self):
        first = Holdout(ratio=0.7, seed=5).split(30)[0]
        second = Holdout(ratio=0.7, seed=5).split(30)[0]

        np.testing.assert_array_equal(first.train_indices, second.train_indices)

    def test_empty_side_rejected(self):
        with pytest.raises(InsufficientDataError):
            Holdout(ratio=0.9).split(1)

    def test_invalid_ratio_rejected(self):
        with pytest.raises(ValueError):
            Holdout(ratio=1.0)

    def test_stratified_holdout(self, task):
        (fold,) = Holdout(ratio=0.8, seed=2, stratify=True).instantiate(task)
        assert task.binary_labels()[fold.test_indices].sum() == 2
