import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

from modules.search_space.configuration import Configuration
from utils import constants


@dataclass(frozen=True)
class FoldPrediction:
    """Validation-row predictions produced on one fold."""

    fold_id: str
    row_idx: Tuple[int, ...]
    values: Tuple[float, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {'fold_id': self.fold_id, 'row_idx': list(self.row_idx), 'values': list(self.values)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FoldPrediction':
        return cls(
            fold_id=data['fold_id'],
            row_idx=tuple(int(i) for i in data['row_idx']),
            values=tuple(float(v) for v in data['values']),
        )


@dataclass(frozen=True)
class Trial:
    """
    Recorded outcome of evaluating one Configuration.

    Never mutated once built; drivers use ``with_iteration`` to tag the search
    round, which returns a new Trial.
    """

    configuration: Configuration
    fold_metrics: Tuple[float, ...] = ()
    aggregate: Optional[float] = None
    metric: str = "rmse"
    status: str = constants.STATUS_SUCCESS
    error: Optional[str] = None
    iteration: int = 0
    fold_ids: Tuple[str, ...] = ()
    predictions: Optional[Tuple[FoldPrediction, ...]] = None
    elapsed_seconds: float = field(default=0.0, compare=False)

    @classmethod
    def from_folds(cls, configuration: Configuration, fold_metrics: Sequence[float], metric: str,
                   fold_ids: Sequence[str] = (), predictions: Optional[Sequence[FoldPrediction]] = None,
                   iteration: int = 0, elapsed_seconds: float = 0.0) -> 'Trial':
        values = tuple(float(m) for m in fold_metrics)
        return cls(
            configuration=Configuration(configuration),
            fold_metrics=values,
            aggregate=float(np.mean(values)),
            metric=metric,
            fold_ids=tuple(fold_ids),
            predictions=tuple(predictions) if predictions is not None else None,
            iteration=iteration,
            elapsed_seconds=float(elapsed_seconds),
        )

    @classmethod
    def failure(cls, configuration: Configuration, cause: Any, metric: str,
                iteration: int = 0, elapsed_seconds: float = 0.0) -> 'Trial':
        return cls(
            configuration=Configuration(configuration),
            metric=metric,
            status=constants.STATUS_FAILED,
            error=str(cause),
            iteration=iteration,
            elapsed_seconds=float(elapsed_seconds),
        )

    @property
    def failed(self) -> bool:
        return self.status == constants.STATUS_FAILED

    @property
    def n_folds(self) -> int:
        return len(self.fold_metrics)

    @property
    def std_err(self) -> Optional[float]:
        if len(self.fold_metrics) < 2:
            return None
        return float(np.std(self.fold_metrics, ddof=1) / np.sqrt(len(self.fold_metrics)))

    def with_iteration(self, iteration: int) -> 'Trial':
        return dataclasses.replace(self, iteration=iteration)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'config_hash': self.configuration.signature(),
            'params': self.configuration.to_dict(),
            'metric': self.metric,
            'status': self.status,
            'error': self.error,
            'iteration': self.iteration,
            'fold_ids': list(self.fold_ids),
            'fold_metrics': list(self.fold_metrics),
            'aggregate': self.aggregate,
            'predictions': [p.to_dict() for p in self.predictions] if self.predictions is not None else None,
            'elapsed_seconds': self.elapsed_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Trial':
        predictions = data.get('predictions')
        aggregate = data.get('aggregate')
        return cls(
            configuration=Configuration(data['params']),
            fold_metrics=tuple(float(m) for m in data.get('fold_metrics', [])),
            aggregate=float(aggregate) if aggregate is not None else None,
            metric=data.get('metric', 'rmse'),
            status=data.get('status', constants.STATUS_SUCCESS),
            error=data.get('error'),
            iteration=int(data.get('iteration', 0)),
            fold_ids=tuple(data.get('fold_ids', [])),
            predictions=tuple(FoldPrediction.from_dict(p) for p in predictions) if predictions is not None else None,
            elapsed_seconds=float(data.get('elapsed_seconds', 0.0)),
        )
