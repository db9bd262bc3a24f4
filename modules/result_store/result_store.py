import json
import logging
import threading
from collections import Counter
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union

import numpy as np
import pandas as pd

from modules.result_store.trial import Trial
from modules.search_space.configuration import Configuration
from utils import constants
from utils.exceptions import InvalidArgument
from utils.file_io import NumpyEncoder, append_jsonl, iter_jsonl, save_dataframe


def _check_direction(direction: str) -> str:
    if direction not in constants.DIRECTIONS:
        raise InvalidArgument(f"direction must be one of {constants.DIRECTIONS}, got '{direction}'.")
    return direction


class ResultStore:
    """
    Append-only record of every Trial in a search run.

    Writers only ever append, so concurrent ``add`` calls from parallel
    evaluations need nothing beyond the single lock around the append (and the
    optional journal line written with it). Insertion order is preserved and
    is the tie-breaker for ranking.
    """

    def __init__(self, direction: str = constants.MINIMIZE,
                 journal_path: Optional[Union[str, Path]] = None,
                 trials: Optional[Iterable[Trial]] = None):
        self.direction = _check_direction(direction)
        self.journal_path = Path(journal_path) if journal_path else None
        self._trials: List[Trial] = list(trials or [])
        self._lock = threading.Lock()
        self.logger = logging.getLogger("result_store")

    # --- Writing ---

    def add(self, trial: Trial) -> None:
        with self._lock:
            self._trials.append(trial)
            if self.journal_path is not None:
                append_jsonl(self.journal_path, trial.to_dict())

    def copy(self, journal_path: Optional[Union[str, Path]] = None,
             direction: Optional[str] = None) -> 'ResultStore':
        """Independent store holding the same trials; the original is left untouched."""
        clone = ResultStore(direction or self.direction, journal_path=journal_path, trials=self.all())
        if clone.journal_path is not None:
            for trial in clone._trials:
                append_jsonl(clone.journal_path, trial.to_dict())
        return clone

    # --- Reading ---

    def all(self) -> List[Trial]:
        with self._lock:
            return list(self._trials)

    def __len__(self) -> int:
        return len(self._trials)

    def __iter__(self) -> Iterator[Trial]:
        return iter(self.all())

    def successes(self) -> List[Trial]:
        return [t for t in self.all() if not t.failed]

    def failures(self) -> List[Trial]:
        return [t for t in self.all() if t.failed]

    @property
    def n_failed(self) -> int:
        return len(self.failures())

    def failure_summary(self) -> Dict[str, int]:
        """Count of failed trials per failure cause."""
        return dict(Counter(t.error for t in self.failures()))

    def contains(self, configuration: Configuration) -> bool:
        configuration = Configuration(configuration)
        return any(t.configuration == configuration for t in self.all())

    def get(self, configuration: Configuration) -> List[Trial]:
        configuration = Configuration(configuration)
        return [t for t in self.all() if t.configuration == configuration]

    def best_k(self, k: int = 1, direction: Optional[str] = None) -> List[Trial]:
        """
        The ``k`` best successful trials by aggregate metric.

        ``sorted`` is stable, so equal aggregates keep insertion order.
        """
        if k < 1:
            raise InvalidArgument(f"k must be >= 1, got {k}.")
        direction = _check_direction(direction or self.direction)
        ranked = sorted(self.successes(), key=lambda t: t.aggregate,
                        reverse=(direction == constants.MAXIMIZE))
        return ranked[:k]

    def best(self, direction: Optional[str] = None) -> Optional[Trial]:
        top = self.best_k(1, direction)
        return top[0] if top else None

    # --- Tabular views ---

    def to_frame(self) -> pd.DataFrame:
        """Leaderboard: one row per trial in insertion order, with rank among successes."""
        trials = self.all()
        rows = []
        for i, t in enumerate(trials, start=1):
            row = {
                'trial': i,
                'iteration': t.iteration,
                'status': t.status,
                **{f"param_{k}": v for k, v in t.configuration.items()},
                'metric': t.metric,
                'mean': t.aggregate,
                'std_err': t.std_err,
                'n_folds': t.n_folds,
                'error': t.error,
                'elapsed_seconds': t.elapsed_seconds,
            }
            rows.append(row)
        df = pd.DataFrame(rows)
        if df.empty:
            return df

        ok = [i for i, t in enumerate(trials) if not t.failed]
        ordered = sorted(ok, key=lambda i: trials[i].aggregate,
                         reverse=(self.direction == constants.MAXIMIZE))
        rank = {i: r for r, i in enumerate(ordered, start=1)}
        df['rank'] = [rank.get(i, np.nan) for i in range(len(trials))]
        return df

    def progress_frame(self) -> pd.DataFrame:
        """Best-so-far aggregate after each search iteration."""
        best = None
        rows = []
        better = (lambda a, b: a < b) if self.direction == constants.MINIMIZE else (lambda a, b: a > b)
        by_iteration: Dict[int, List[Trial]] = {}
        for t in self.all():
            by_iteration.setdefault(t.iteration, []).append(t)
        for iteration in sorted(by_iteration):
            batch = by_iteration[iteration]
            for t in batch:
                if not t.failed and (best is None or better(t.aggregate, best)):
                    best = t.aggregate
            rows.append({
                'iteration': iteration,
                'n_trials': len(batch),
                'n_failed': sum(t.failed for t in batch),
                'best_so_far': best,
            })
        return pd.DataFrame(rows)

    # --- Persistence ---

    def save(self, path: Union[str, Path]) -> Path:
        """Write every trial as one JSON line (overwrites ``path``)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            for trial in self.all():
                f.write(json.dumps(trial.to_dict(), cls=NumpyEncoder) + "\n")
        return path

    @classmethod
    def load(cls, path: Union[str, Path], direction: str = constants.MINIMIZE,
             journal_path: Optional[Union[str, Path]] = None) -> 'ResultStore':
        path = Path(path)
        if not path.exists():
            raise InvalidArgument(f"Result file not found: {path}")
        trials = [Trial.from_dict(record) for record in iter_jsonl(path)]
        return cls(direction, journal_path=journal_path, trials=trials)

    def export_leaderboard(self, path: Union[str, Path], excel_copy: bool = False) -> Path:
        df = self.to_frame()
        # parquet needs homogeneous columns; tuple-valued params are stringified
        for col in [c for c in df.columns if c.startswith('param_')]:
            if df[col].map(lambda v: isinstance(v, tuple)).any():
                df[col] = df[col].map(str)
        out = save_dataframe(df, Path(path), excel_copy=excel_copy, index=False)
        self.logger.info(f"Leaderboard with {len(df)} trials written to {out}")
        return out
