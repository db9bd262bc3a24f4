import numpy as np
import pandas as pd
import pytest
from unittest.mock import patch

from modules.fold_provider import Fold, FoldSet, make_folds
from utils.exceptions import InvalidArgument


@pytest.fixture
def frame():
    rng = np.random.default_rng(0)
    return pd.DataFrame({'x': rng.normal(size=103), 'y': rng.normal(size=103)})


def test_validation_sets_partition_rows(frame):
    fold_set = make_folds(frame, k=10, seed=1)
    assert len(fold_set) == 10
    assert fold_set.k == 10
    val = np.concatenate([f.val_idx for f in fold_set])
    assert sorted(val.tolist()) == list(range(103))
    for fold in fold_set:
        assert np.intersect1d(fold.train_idx, fold.val_idx).size == 0
        assert fold.train_idx.size + fold.val_idx.size == 103
    fold_set.validate()


def test_same_seed_same_folds(frame):
    assert make_folds(frame, k=5, seed=42) == make_folds(frame, k=5, seed=42)


def test_different_seed_different_folds(frame):
    a = make_folds(frame, k=5, seed=1)
    b = make_folds(frame, k=5, seed=2)
    assert a.signature() != b.signature()


def test_accepts_row_count():
    fold_set = make_folds(20, k=4, seed=0)
    assert fold_set.n_rows == 20
    assert [f.id for f in fold_set] == ['Fold01', 'Fold02', 'Fold03', 'Fold04']


def test_repeats(frame):
    fold_set = make_folds(frame, k=3, seed=5, repeats=2)
    assert len(fold_set) == 6
    assert fold_set.k == 3
    assert fold_set[0].id == 'Repeat1_Fold01'
    assert fold_set[5].id == 'Repeat2_Fold03'
    fold_set.validate()
    first = {tuple(sorted(f.val_idx)) for f in fold_set if f.repeat == 1}
    second = {tuple(sorted(f.val_idx)) for f in fold_set if f.repeat == 2}
    assert first != second


@pytest.mark.parametrize("k", [1, 0, 104])
def test_rejects_bad_k(frame, k):
    with pytest.raises(InvalidArgument):
        make_folds(frame, k=k)


def test_rejects_bad_repeats(frame):
    with pytest.raises(InvalidArgument, match="repeats"):
        make_folds(frame, k=3, repeats=0)


def test_stratified_on_numeric_outcome(frame):
    fold_set = make_folds(frame, k=5, seed=3, strata='y', bins=4)
    fold_set.validate()
    bins = pd.qcut(frame['y'], q=4, labels=False).to_numpy()
    for fold in fold_set:
        counts = np.bincount(bins[fold.val_idx], minlength=4)
        assert counts.max() - counts.min() <= 2


def test_stratified_falls_back_when_strata_too_sparse():
    strata = ['a'] * 3 + ['b'] * 3
    fold_set = make_folds(6, k=5, seed=0, strata=strata)
    fold_set.validate()
    assert len(fold_set) == 5


def test_unknown_strata_column(frame):
    with pytest.raises(InvalidArgument, match="not found"):
        make_folds(frame, k=5, strata='missing')


def test_validate_detects_broken_partition():
    bad = FoldSet(
        folds=(
            Fold('Fold01', np.array([2, 3]), np.array([0, 1])),
            Fold('Fold02', np.array([0, 1]), np.array([1, 2])),
        ),
        n_rows=4, seed=0,
    )
    with pytest.raises(InvalidArgument):
        bad.validate()


def test_signature_is_stable(frame):
    assert make_folds(frame, k=5, seed=9).signature() == make_folds(frame, k=5, seed=9).signature()


def test_make_folds_checks_partition(frame):
    with patch.object(FoldSet, 'validate', autospec=True) as mock_validate:
        fold_set = make_folds(frame, k=5, seed=1)
    mock_validate.assert_called_once_with(fold_set)


def test_make_folds_propagates_partition_errors(frame):
    with patch.object(FoldSet, 'validate', side_effect=InvalidArgument("broken")):
        with pytest.raises(InvalidArgument, match="broken"):
            make_folds(frame, k=5, seed=1)
