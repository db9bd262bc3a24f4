"""
Candidate evaluators.

An evaluator turns one Configuration plus the run's FoldSet into a Trial. The
search drivers only rely on the small ``Evaluator`` protocol below, so any
model family can be plugged in: a plain scoring function, a scikit-learn
family from the model factory, or either of those behind the on-disk cache.
"""
import json
import logging
import math
import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Tuple, Union, runtime_checkable

import joblib
import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from modules.fold_provider.fold_provider import Fold, FoldSet
from modules.evaluation.metrics import get_metric
from modules.model_factory.model_factory import ModelFamily
from modules.result_store.trial import FoldPrediction, Trial
from modules.search_space.configuration import Configuration
from modules.search_space.parameter_space import ParameterSpace
from utils import constants
from utils.cache import fingerprint
from utils.exceptions import EvaluationFailed, InvalidArgument
from utils.file_io import NumpyEncoder

FoldFn = Callable[[Configuration, Fold], Tuple[float, Optional[np.ndarray]]]


@runtime_checkable
class Evaluator(Protocol):
    """Anything that can score a configuration on a fold set."""

    name: str
    metric: str
    direction: str

    def evaluate(self, configuration: Configuration, fold_set: FoldSet) -> Trial:
        ...


def _guarded_fold(fold_fn: FoldFn, configuration: Configuration, fold: Fold):
    """Run one fold, turning any failure into EvaluationFailed for this configuration."""
    try:
        score, preds = fold_fn(configuration, fold)
    except EvaluationFailed:
        raise
    except Exception as e:
        raise EvaluationFailed(configuration, f"{fold.id}: {type(e).__name__}: {e}") from e
    if score is None or not math.isfinite(float(score)):
        raise EvaluationFailed(configuration, f"{fold.id}: non-finite metric value {score!r}")
    return float(score), preds


def cross_validate(configuration: Configuration, fold_set: FoldSet, fold_fn: FoldFn, metric: str,
                   n_jobs: int = 1, backend: Optional[str] = None,
                   keep_predictions: bool = False) -> Trial:
    """
    Score ``configuration`` independently on every fold and aggregate by the mean.

    Folds run through joblib; with ``n_jobs=1`` they run in-process.
    """
    start = time.perf_counter()
    fold_results = Parallel(n_jobs=n_jobs, backend=backend)(
        delayed(_guarded_fold)(fold_fn, configuration, fold) for fold in fold_set
    )

    predictions = None
    if keep_predictions:
        predictions = []
        for fold, (_, preds) in zip(fold_set, fold_results):
            if preds is None:
                continue
            values = np.asarray(preds, dtype=float).ravel()
            predictions.append(FoldPrediction(
                fold_id=fold.id,
                row_idx=tuple(int(i) for i in fold.val_idx),
                values=tuple(float(v) for v in values),
            ))

    return Trial.from_folds(
        configuration,
        [score for score, _ in fold_results],
        metric=metric,
        fold_ids=[fold.id for fold in fold_set],
        predictions=predictions,
        elapsed_seconds=time.perf_counter() - start,
    )


def _take(data: Any, idx: np.ndarray):
    if isinstance(data, (pd.DataFrame, pd.Series)):
        return data.iloc[idx]
    return np.asarray(data)[idx]


class FunctionEvaluator:
    """
    Evaluator around a plain scoring callable.

    ``score_fn(configuration, fold, seed)`` returns either a metric value or a
    ``(value, validation_predictions)`` pair. Deterministic whenever
    ``score_fn`` is deterministic for a fixed seed.
    """

    def __init__(self, score_fn: Callable[..., Any], metric: str = 'rmse',
                 direction: Optional[str] = None, seed: int = 0,
                 parameter_space: Optional[ParameterSpace] = None,
                 n_jobs: int = 1, backend: Optional[str] = None,
                 keep_predictions: bool = False, name: Optional[str] = None):
        if direction is None:
            _, direction = get_metric(metric)
        if direction not in constants.DIRECTIONS:
            raise InvalidArgument(f"direction must be one of {constants.DIRECTIONS}, got '{direction}'.")
        self.score_fn = score_fn
        self.metric = metric
        self.direction = direction
        self.seed = seed
        self.parameter_space = parameter_space
        self.n_jobs = n_jobs
        self.backend = backend
        self.keep_predictions = keep_predictions
        fn_name = getattr(score_fn, '__qualname__', type(score_fn).__name__)
        self.name = name or f"{fn_name}:{metric}:{seed}"

    def _score_fold(self, configuration: Configuration, fold: Fold):
        result = self.score_fn(configuration, fold, self.seed)
        if isinstance(result, tuple):
            return result[0], result[1]
        return result, None

    def evaluate(self, configuration: Configuration, fold_set: FoldSet) -> Trial:
        configuration = Configuration(configuration)
        if self.parameter_space is not None:
            problems = self.parameter_space.validate(configuration)
            if problems:
                raise EvaluationFailed(configuration, "; ".join(problems))
        return cross_validate(configuration, fold_set, self._score_fold, self.metric,
                              n_jobs=self.n_jobs, backend=self.backend,
                              keep_predictions=self.keep_predictions)


class EstimatorEvaluator:
    """
    Cross-validated scoring of a scikit-learn model family.

    For each fold a fresh estimator is built from the configuration, fit on the
    training rows only and scored on the validation rows.
    """

    def __init__(self, family: ModelFamily, X, y, metric: str = 'rmse', seed: int = 42,
                 n_jobs: int = 1, backend: Optional[str] = None, keep_predictions: bool = False):
        if len(X) != len(y):
            raise InvalidArgument(f"X has {len(X)} rows but y has {len(y)}.")
        self.family = family
        self.X = X
        self.y = y
        self.metric = metric
        self.metric_fn, self.direction = get_metric(metric)
        self.seed = seed
        self.n_jobs = n_jobs
        self.backend = backend
        self.keep_predictions = keep_predictions
        self.name = f"{family.name}:{metric}:{seed}:{joblib.hash((X, y))[:12]}"

    def _fit_fold(self, configuration: Configuration, fold: Fold):
        estimator = self.family.build(configuration, seed=self.seed)
        estimator.fit(_take(self.X, fold.train_idx), np.ravel(_take(self.y, fold.train_idx)))
        y_val = np.ravel(_take(self.y, fold.val_idx))
        preds = np.asarray(estimator.predict(_take(self.X, fold.val_idx))).ravel()
        return self.metric_fn(y_val, preds), preds

    def evaluate(self, configuration: Configuration, fold_set: FoldSet) -> Trial:
        configuration = Configuration(configuration)
        if fold_set.n_rows != len(self.X):
            raise EvaluationFailed(configuration, f"fold set covers {fold_set.n_rows} rows, data has {len(self.X)}")
        problems = self.family.parameter_space.validate(configuration)
        if problems:
            raise EvaluationFailed(configuration, "; ".join(problems))
        return cross_validate(configuration, fold_set, self._fit_fold, self.metric,
                              n_jobs=self.n_jobs, backend=self.backend,
                              keep_predictions=self.keep_predictions)


class CachingEvaluator:
    """
    On-disk cache in front of another evaluator.

    Entries are keyed by evaluator identity, configuration signature and fold
    set signature. Failed evaluations are never cached.
    """

    def __init__(self, inner: Evaluator, cache_dir: Union[str, Path],
                 logger: Optional[logging.Logger] = None):
        self.inner = inner
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.logger = logger or logging.getLogger("evaluation_cache")
        self.hits = 0
        self.misses = 0

    @property
    def name(self) -> str:
        return self.inner.name

    @property
    def metric(self) -> str:
        return self.inner.metric

    @property
    def direction(self) -> str:
        return self.inner.direction

    def _path(self, configuration: Configuration, fold_set: FoldSet) -> Path:
        key = fingerprint(f"{self.inner.name}|{configuration.signature()}|{fold_set.signature()}")
        return self.cache_dir / f"{key}.json"

    def evaluate(self, configuration: Configuration, fold_set: FoldSet) -> Trial:
        configuration = Configuration(configuration)
        path = self._path(configuration, fold_set)
        if path.exists():
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    trial = Trial.from_dict(json.load(f))
                self.hits += 1
                self.logger.debug(f"Cache hit for {configuration}")
                return trial
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Ignoring unreadable cache entry {path.name}: {e}")

        trial = self.inner.evaluate(configuration, fold_set)
        self.misses += 1
        tmp = path.with_suffix(f".{os.getpid()}.{threading.get_ident()}.tmp")
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump(trial.to_dict(), f, cls=NumpyEncoder)
        os.replace(tmp, path)
        return trial
