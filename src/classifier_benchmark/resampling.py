"""
Resampling strategies producing deterministic train/test folds.

Example:
    from classifier_benchmark.resampling import KFoldCV, Holdout

    folds = KFoldCV(folds=5, seed=42).instantiate(task)
    for fold in folds:
        X_train = task.features(fold.train_indices)

    (split,) = Holdout(ratio=0.8, seed=42).instantiate(task)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
from sklearn.model_selection import KFold, StratifiedKFold, train_test_split

from .exceptions import InsufficientDataError
from .task import Task

logger = logging.getLogger(__name__)


def _frozen(indices: Sequence[int]) -> np.ndarray:
    array = np.sort(np.asarray(indices, dtype=int))
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class Fold:
    """
    One train/test partition of positional row ids.

    The index arrays are sorted and read-only.
    """

    fold_id: int
    train_indices: np.ndarray
    test_indices: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "train_indices", _frozen(self.train_indices))
        object.__setattr__(self, "test_indices", _frozen(self.test_indices))
        if np.intersect1d(self.train_indices, self.test_indices).size:
            raise ValueError(f"Fold {self.fold_id}: train and test indices overlap")


class ResamplingStrategy(ABC):
    """Generates a deterministic sequence of folds from a row count and a seed."""

    id: str = "resampling"

    @abstractmethod
    def split(self, n_rows: int, labels: Optional[np.ndarray] = None) -> List[Fold]:
        """
        Partition ``n_rows`` positional row ids into folds.

        Args:
            n_rows: Number of rows.
            labels: Target values, required when stratifying.

        Raises:
            InsufficientDataError: If any partition would be empty.
        """

    def instantiate(self, task: Task) -> List[Fold]:
        """Generate the folds for ``task``."""
        folds = self.split(task.n_rows, task.labels())
        logger.info(f"{self.id}: generated {len(folds)} folds over {task.n_rows} rows")
        return folds


class KFoldCV(ResamplingStrategy):
    """
    Shuffled k-fold cross-validation.

    Rows are shuffled with ``seed`` and partitioned into ``folds`` mutually
    exclusive, exhaustive groups; fold i tests on group i and trains on the
    rest.

    Args:
        folds: Number of folds, at least 2.
        seed: Shuffle seed.
        stratify: Preserve the class ratio in every group.
    """

    def __init__(self, folds: int = 5, seed: int = 42, stratify: bool = False) -> None:
        self.folds = int(folds)
        self.seed = int(seed)
        self.stratify = stratify
        self.id = f"cv{self.folds}"

    def split(self, n_rows: int, labels: Optional[np.ndarray] = None) -> List[Fold]:
        if self.folds < 2:
            raise InsufficientDataError(f"k-fold needs at least 2 folds, got {self.folds}")
        if n_rows < self.folds:
            raise InsufficientDataError(
                f"Cannot split {n_rows} rows into {self.folds} non-empty folds"
            )

        rows = np.arange(n_rows)
        if self.stratify:
            if labels is None:
                raise ValueError("Stratified k-fold requires labels")
            _, counts = np.unique(np.asarray(labels), return_counts=True)
            if counts.min() < self.folds:
                raise InsufficientDataError(
                    f"Smallest class has {counts.min()} rows, fewer than {self.folds} folds"
                )
            splitter = StratifiedKFold(n_splits=self.folds, shuffle=True, random_state=self.seed)
            splits = splitter.split(rows, np.asarray(labels))
        else:
            splitter = KFold(n_splits=self.folds, shuffle=True, random_state=self.seed)
            splits = splitter.split(rows)

        return [
            Fold(fold_id=i, train_indices=train, test_indices=test)
            for i, (train, test) in enumerate(splits)
        ]

    def __repr__(self) -> str:
        return f"KFoldCV(folds={self.folds}, seed={self.seed}, stratify={self.stratify})"


class Holdout(ResamplingStrategy):
    """
    A single random train/test split.

    Args:
        ratio: Fraction of rows used for training.
        seed: Shuffle seed.
        stratify: Preserve the class ratio on both sides.
    """

    def __init__(self, ratio: float = 2 / 3, seed: int = 42, stratify: bool = False) -> None:
        if not 0.0 < ratio < 1.0:
            raise ValueError(f"Holdout ratio must be in (0, 1), got {ratio}")
        self.ratio = float(ratio)
        self.seed = int(seed)
        self.stratify = stratify
        self.id = "holdout"

    def split(self, n_rows: int, labels: Optional[np.ndarray] = None) -> List[Fold]:
        n_train = int(round(n_rows * self.ratio))
        if n_train == 0 or n_train == n_rows:
            raise InsufficientDataError(
                f"Holdout ratio {self.ratio} on {n_rows} rows leaves an empty partition"
            )

        stratify = None
        if self.stratify:
            if labels is None:
                raise ValueError("Stratified holdout requires labels")
            stratify = np.asarray(labels)
            _, counts = np.unique(stratify, return_counts=True)
            if counts.min() < 2 or min(n_train, n_rows - n_train) < len(counts):
                raise InsufficientDataError(
                    f"Holdout on {n_rows} rows cannot hold all {len(counts)} classes on both sides"
                )

        train, test = train_test_split(
            np.arange(n_rows),
            train_size=n_train,
            random_state=self.seed,
            stratify=stratify,
        )
        return [Fold(fold_id=0, train_indices=train, test_indices=test)]

    def __repr__(self) -> str:
        return f"Holdout(ratio={self.ratio}, seed={self.seed}, stratify={self.stratify})"
