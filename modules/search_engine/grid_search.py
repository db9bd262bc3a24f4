import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sklearn.model_selection import ParameterGrid

from modules.base.base_driver import BaseSearchDriver, ExecutionSettings
from modules.evaluation.evaluator import Evaluator
from modules.fold_provider.fold_provider import FoldSet
from modules.result_store.result_store import ResultStore
from modules.search_space.configuration import Configuration
from utils import constants
from utils.error_handling import handle_engine_errors
from utils.exceptions import InvalidArgument


class GridSearchDriver(BaseSearchDriver):
    """
    Evaluates a fixed set of candidate configurations.

    - Structural deduplication before evaluation.
    - Configurations already in a supplied (or resumed) store are skipped.
    - Up to ``execution.workers`` evaluations in flight; failures are recorded,
      never fatal.
    """

    DEFAULT_MAX_CONFIGS = 1000

    def __init__(self, config: Dict[str, Any], logger: logging.Logger,
                 settings: Optional[ExecutionSettings] = None, direction: Optional[str] = None):
        super().__init__(config, logger, settings, direction)
        self.max_configs = self.config.get('resources', {}).get('max_search_configs', self.DEFAULT_MAX_CONFIGS)

    def _get_engine_directory_name(self) -> str:
        return constants.GRID_SEARCH_DIR

    @staticmethod
    def expand(grid: Mapping[str, Sequence[Any]]) -> List[Configuration]:
        """Cartesian product of ``{name: [values]}`` (or a list of such mappings)."""
        try:
            return [Configuration(params) for params in ParameterGrid(grid)]
        except (TypeError, ValueError) as e:
            raise InvalidArgument(f"Invalid parameter grid: {e}") from e

    @handle_engine_errors("Grid Search")
    def run(self, configurations: Iterable[Mapping[str, Any]], fold_set: FoldSet,
            evaluator: Evaluator, store: Optional[ResultStore] = None) -> ResultStore:
        """
        Evaluate every distinct configuration exactly once.

        Args:
            configurations: Ordered candidates; duplicates are dropped.
            fold_set: Folds shared by every trial.
            evaluator: Scores one configuration on the folds.
            store: Optional existing store to extend (already-present
                configurations are not re-evaluated).

        Returns:
            The ResultStore holding one Trial per distinct configuration.
        """
        submitted = [Configuration(c) for c in configurations]
        if not submitted:
            raise InvalidArgument("Grid search needs at least one configuration.")

        unique = list(dict.fromkeys(submitted))
        if len(unique) < len(submitted):
            self.logger.info(f"Dropped {len(submitted) - len(unique)} duplicate configurations.")

        if len(unique) > self.max_configs:
            raise InvalidArgument(
                f"Search Grid Explosion Detected! {len(unique)} distinct configurations exceed the "
                f"safety limit ({self.max_configs}). Reduce the grid or increase 'resources.max_search_configs'."
            )

        if store is None:
            store = self._open_store(self._resolve_direction(evaluator))
        seen = {t.configuration for t in store.all()}
        pending = [c for c in unique if c not in seen]
        if len(pending) < len(unique):
            self.logger.info(f"Skipping {len(unique) - len(pending)} configurations already recorded.")

        self.logger.info(
            f"Starting grid search: {len(pending)} configurations x {len(fold_set)} folds "
            f"({self.settings.workers} workers)."
        )
        self._evaluate_batch(pending, fold_set, evaluator, store, iteration=0)
        self._finalize(store, "Grid search")
        return store
