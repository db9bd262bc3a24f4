"""
Fold Provider for the tuning engine.

Partitions a dataset into training/validation folds once per run so that
every candidate configuration is scored on exactly the same resamples.
Stratified splitting follows the binned-outcome approach: numeric strata are
cut into quantile bins and fed to StratifiedKFold, falling back to plain
KFold when a bin is too sparse to be spread across all folds.
"""
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.model_selection import KFold, StratifiedKFold

from utils.exceptions import InvalidArgument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fold:
    """One train/validation split, expressed as positional row indices."""

    id: str
    train_idx: np.ndarray
    val_idx: np.ndarray
    repeat: int = 1

    def __eq__(self, other):
        if not isinstance(other, Fold):
            return NotImplemented
        return (self.id == other.id and self.repeat == other.repeat
                and np.array_equal(self.train_idx, other.train_idx)
                and np.array_equal(self.val_idx, other.val_idx))

    def __hash__(self):
        return hash((self.id, self.repeat, self.val_idx.tobytes()))


@dataclass(frozen=True)
class FoldSet:
    """Ordered folds over ``n_rows`` rows, reused across all trials of a run."""

    folds: Tuple[Fold, ...]
    n_rows: int
    seed: int
    repeats: int = 1

    def __iter__(self) -> Iterator[Fold]:
        return iter(self.folds)

    def __len__(self) -> int:
        return len(self.folds)

    def __getitem__(self, i: int) -> Fold:
        return self.folds[i]

    @property
    def k(self) -> int:
        return len(self.folds) // self.repeats

    def signature(self) -> str:
        """Content hash of every validation index set, used as a cache key."""
        h = hashlib.md5(f"{self.n_rows}:{self.repeats}".encode())
        for fold in self.folds:
            h.update(fold.id.encode())
            h.update(np.ascontiguousarray(fold.val_idx, dtype=np.int64).tobytes())
        return h.hexdigest()

    def validate(self) -> None:
        """
        Check the partition invariant: within each repeat every row is validated
        exactly once and each training set is the complement of its validation set.
        """
        all_rows = np.arange(self.n_rows)
        for r in range(1, self.repeats + 1):
            counts = np.zeros(self.n_rows, dtype=int)
            for fold in (f for f in self.folds if f.repeat == r):
                counts[fold.val_idx] += 1
                expected_train = np.setdiff1d(all_rows, fold.val_idx)
                if not np.array_equal(np.sort(fold.train_idx), expected_train):
                    raise InvalidArgument(f"{fold.id}: training rows are not the complement of validation rows.")
            if not np.all(counts == 1):
                raise InvalidArgument(f"Repeat {r}: validation sets do not partition the rows.")


def _fold_id(repeat: int, fold: int, repeats: int, k: int) -> str:
    width = max(len(str(k)), 2)
    if repeats == 1:
        return f"Fold{fold:0{width}d}"
    return f"Repeat{repeat}_Fold{fold:0{width}d}"


def _resolve_strata(dataset: Any, strata: Union[None, str, Sequence], bins: int) -> Optional[np.ndarray]:
    if strata is None:
        return None
    if isinstance(strata, str):
        if not isinstance(dataset, pd.DataFrame) or strata not in dataset.columns:
            raise InvalidArgument(f"Strata column '{strata}' not found in dataset.")
        values = dataset[strata]
    else:
        values = pd.Series(np.asarray(strata))

    if pd.api.types.is_numeric_dtype(values) and values.nunique() > bins:
        values = pd.qcut(values, q=bins, labels=False, duplicates='drop')
    return pd.Series(values).astype(str).to_numpy()


def make_folds(dataset: Any, k: int = 10, seed: int = 42, repeats: int = 1,
               strata: Union[None, str, Sequence] = None, bins: int = 4) -> FoldSet:
    """
    Partition ``dataset`` into ``k`` folds (optionally ``repeats`` times).

    Args:
        dataset: Anything with a length (DataFrame, array) or an int row count.
        k: Number of folds, 2 <= k <= number of rows.
        seed: Seed for the shuffle; repeat ``r`` uses ``seed + r - 1``.
        repeats: Number of independent V-fold partitions.
        strata: Optional column name or array to stratify on.
        bins: Quantile bins used when numeric strata are given.

    Returns:
        FoldSet with deterministic content for fixed arguments.
    """
    n_rows = int(dataset) if isinstance(dataset, (int, np.integer)) else len(dataset)
    if k < 2:
        raise InvalidArgument(f"Number of folds must be >= 2, got {k}.")
    if k > n_rows:
        raise InvalidArgument(f"Number of folds ({k}) exceeds dataset size ({n_rows}).")
    if repeats < 1:
        raise InvalidArgument(f"repeats must be >= 1, got {repeats}.")

    strata_values = _resolve_strata(dataset, strata, bins)
    placeholder = np.zeros((n_rows, 1))

    folds = []
    for r in range(1, repeats + 1):
        random_state = seed + r - 1
        splits = None
        if strata_values is not None:
            try:
                cv = StratifiedKFold(n_splits=k, shuffle=True, random_state=random_state)
                splits = list(cv.split(placeholder, strata_values))
            except ValueError as e:
                logger.warning(f"Stratified folds failed ({e}). Falling back to unstratified KFold.")
                strata_values = None
        if splits is None:
            cv = KFold(n_splits=k, shuffle=True, random_state=random_state)
            splits = list(cv.split(placeholder))

        for i, (train_idx, val_idx) in enumerate(splits, start=1):
            folds.append(Fold(
                id=_fold_id(r, i, repeats, k),
                train_idx=np.asarray(train_idx, dtype=np.int64),
                val_idx=np.asarray(val_idx, dtype=np.int64),
                repeat=r,
            ))

    logger.debug(f"Created {len(folds)} folds over {n_rows} rows (k={k}, repeats={repeats}, seed={seed}).")
    fold_set = FoldSet(folds=tuple(folds), n_rows=n_rows, seed=seed, repeats=repeats)
    fold_set.validate()
    return fold_set
