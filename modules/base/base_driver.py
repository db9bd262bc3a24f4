import abc
import json
import logging
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from modules.evaluation.evaluator import Evaluator
from modules.fold_provider.fold_provider import FoldSet
from modules.result_store.result_store import ResultStore
from modules.result_store.trial import Trial
from modules.search_space.configuration import Configuration
from utils import constants
from utils.exceptions import EvaluationFailed, InvalidArgument
from utils.file_io import NumpyEncoder


@dataclass(frozen=True)
class ExecutionSettings:
    """
    Explicit parallelism settings handed to each driver.

    workers: concurrent configuration evaluations (grid batches).
    fold_jobs: joblib jobs used inside one evaluation for its folds.
    """

    workers: int = 1
    fold_jobs: int = 1
    backend: Optional[str] = None

    def __post_init__(self):
        if self.workers < 1:
            raise InvalidArgument(f"workers must be >= 1, got {self.workers}.")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'ExecutionSettings':
        execution = config.get('execution', {})
        workers = execution.get('workers', 1)
        if workers == -1:
            workers = os.cpu_count() or 1
        return cls(
            workers=workers,
            fold_jobs=execution.get('n_jobs', 1),
            backend=execution.get('backend'),
        )


_DONE = object()


class BaseSearchDriver(abc.ABC):
    """
    Abstract base class for the search drivers.

    Provides common functionality for:
    - Configuration, logger and execution-settings attachment.
    - Output directory management and the per-run trial journal.
    - Failure-isolated evaluation of single configurations and of batches.
    - Run-level cancellation.
    """

    def __init__(self, config: Dict[str, Any], logger: logging.Logger,
                 settings: Optional[ExecutionSettings] = None, direction: Optional[str] = None):
        self.config = config
        self.logger = logger
        self.search_config = config.get('search', {})
        self.settings = settings or ExecutionSettings.from_config(config)

        direction = direction or self.search_config.get('direction')
        if direction is not None and direction not in constants.DIRECTIONS:
            raise InvalidArgument(f"direction must be one of {constants.DIRECTIONS}, got '{direction}'.")
        self.direction = direction

        outputs = self.config.get('outputs', {})
        self.persist = outputs.get('persist', True)
        self.excel_copy = outputs.get('save_excel_copy', False)
        self.resume = self.search_config.get('resume', False)
        self.base_dir = Path(outputs.get('base_results_dir', 'results'))
        self.output_dir = self.base_dir / self._get_engine_directory_name()
        self._cancel_event = threading.Event()

        self._setup_directories()

    @abc.abstractmethod
    def _get_engine_directory_name(self) -> str:
        """
        Directory name for the driver's output, e.g. '02_GridSearch'.
        """
        raise NotImplementedError("Subclasses must implement _get_engine_directory_name.")

    def _setup_directories(self):
        if not self.persist or self.config.get('outputs', {}).get('skip_dir_creation', False):
            return
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"Output directory for {self.__class__.__name__}: {self.output_dir}")

    @abc.abstractmethod
    def run(self, *args, **kwargs) -> ResultStore:
        """
        Main execution method of the driver.
        """
        pass

    # --- Cancellation ---

    def cancel(self) -> None:
        """Stop submitting new evaluations; in-flight ones finish and are recorded."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    # --- Stores ---

    def _resolve_direction(self, evaluator: Evaluator) -> str:
        return self.direction or evaluator.direction

    def _journal_path(self) -> Optional[Path]:
        return self.output_dir / constants.TRIALS_JOURNAL_FILE if self.persist else None

    def _open_store(self, direction: str) -> ResultStore:
        """
        New store for this run. With ``search.resume`` an existing journal is
        loaded so finished configurations are not evaluated again.
        """
        journal = self._journal_path()
        if journal is not None and journal.exists():
            if self.resume:
                store = ResultStore.load(journal, direction, journal_path=journal)
                self.logger.info(f"Resumed search: {len(store)} trials already recorded.")
                return store
            journal.unlink()
        return ResultStore(direction, journal_path=journal)

    # --- Evaluation ---

    def _evaluate_one(self, configuration: Configuration, fold_set: FoldSet,
                      evaluator: Evaluator, iteration: int = 0) -> Trial:
        """Evaluate one configuration; any failure becomes a failed Trial."""
        start = time.perf_counter()
        try:
            trial = evaluator.evaluate(configuration, fold_set)
        except EvaluationFailed as e:
            self.logger.warning(f"Configuration {dict(configuration)} failed: {e.cause}")
            return Trial.failure(configuration, e.cause, evaluator.metric, iteration,
                                 time.perf_counter() - start)
        except Exception as e:
            self.logger.error(f"Unexpected error evaluating {dict(configuration)}: {e}", exc_info=True)
            return Trial.failure(configuration, f"{type(e).__name__}: {e}", evaluator.metric, iteration,
                                 time.perf_counter() - start)
        return trial.with_iteration(iteration)

    def _evaluate_batch(self, configurations: Iterable[Configuration], fold_set: FoldSet,
                        evaluator: Evaluator, store: ResultStore, iteration: int = 0) -> int:
        """
        Evaluate independent configurations with up to ``settings.workers`` in flight.

        Trials are added in completion order. After cancellation no new work is
        submitted; running evaluations are allowed to finish.

        Returns:
            Number of trials added to the store.
        """
        queue = iter(configurations)
        added = 0

        if self.settings.workers <= 1:
            for configuration in queue:
                if self.cancelled:
                    self.logger.warning("Search cancelled. Remaining configurations skipped.")
                    break
                store.add(self._evaluate_one(configuration, fold_set, evaluator, iteration))
                added += 1
                self._log_progress(added)
            return added

        with ThreadPoolExecutor(max_workers=self.settings.workers) as pool:
            in_flight = set()

            def submit_next() -> bool:
                if self.cancelled:
                    return False
                configuration = next(queue, _DONE)
                if configuration is _DONE:
                    return False
                in_flight.add(pool.submit(self._evaluate_one, configuration, fold_set, evaluator, iteration))
                return True

            for _ in range(self.settings.workers):
                if not submit_next():
                    break

            while in_flight:
                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    in_flight.discard(future)
                    store.add(future.result())
                    added += 1
                    self._log_progress(added)
                    submit_next()

        if self.cancelled:
            self.logger.warning("Search cancelled. Remaining configurations skipped.")
        return added

    def _log_progress(self, n: int) -> None:
        if n % 10 == 0:
            self.logger.info(f"Processed {n} configurations...")

    # --- Finalization ---

    def _finalize(self, store: ResultStore, label: str) -> None:
        self.logger.info(f"{label} finished: {len(store)} trials, {store.n_failed} failed.")
        if store.n_failed:
            self.logger.warning(f"Failure causes: {store.failure_summary()}")

        best = store.best()
        if best is None:
            self.logger.warning(f"{label}: no configuration could be scored.")
        else:
            self.logger.info(
                f"Best configuration: {dict(best.configuration)} ({best.metric} = {best.aggregate:.4f})"
            )

        if not self.persist:
            return
        store.export_leaderboard(self.output_dir / constants.LEADERBOARD_FILE, excel_copy=self.excel_copy)
        if best is not None:
            formatted_best = {
                'params': best.configuration.to_dict(),
                'metric': best.metric,
                'mean': best.aggregate,
                'std_err': best.std_err,
                'iteration': best.iteration,
            }
            with open(self.output_dir / constants.BEST_CONFIGURATION_FILE, 'w') as f:
                json.dump(formatted_best, f, indent=2, cls=NumpyEncoder)
