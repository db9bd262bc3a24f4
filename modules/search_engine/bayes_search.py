import logging
import warnings
from typing import Any, Dict, List, Mapping, Optional, Union

import numpy as np
from scipy.spatial.distance import cdist
from sklearn.exceptions import ConvergenceWarning
from sklearn.gaussian_process import GaussianProcessRegressor
from sklearn.gaussian_process.kernels import Matern

from modules.base.base_driver import BaseSearchDriver, ExecutionSettings
from modules.evaluation.evaluator import Evaluator
from modules.fold_provider.fold_provider import FoldSet
from modules.result_store.result_store import ResultStore
from modules.result_store.trial import Trial
from modules.search_engine.acquisition import get_acquisition
from modules.search_space.configuration import Configuration
from modules.search_space.parameter_space import ParameterSpace
from utils import constants
from utils.error_handling import handle_engine_errors
from utils.exceptions import InvalidArgument, SurrogateFitFailed


class BayesSearchDriver(BaseSearchDriver):
    """
    Sequential model-based search.

    Init -> (Propose -> Acquire -> Evaluate)* -> Terminate

    - Init: reuse a prior ResultStore or evaluate a space-filling sample.
    - Propose: refit a Gaussian-process surrogate on every successful trial.
    - Acquire: score a candidate pool with the acquisition function, skipping
      configurations already tried; equal scores go to the candidate farthest
      from anything evaluated.
    - Evaluate: score the winner and append it, tagged with the round number.
    - Terminate: after ``iterations`` rounds, or once ``no_improve`` rounds
      pass without a better aggregate.

    If the surrogate cannot be fit, that round draws a random candidate.
    """

    def __init__(self, config: Dict[str, Any], logger: logging.Logger,
                 settings: Optional[ExecutionSettings] = None, direction: Optional[str] = None):
        super().__init__(config, logger, settings, direction)
        bayes = self.search_config.get('bayes', {})
        self.acquisition_name = bayes.get('acquisition', 'expected_improvement')
        self.acquisition = get_acquisition(self.acquisition_name)
        default_trade_off = 0.1 if self.acquisition_name == 'confidence_bound' else 0.0
        self.trade_off = bayes.get('trade_off', default_trade_off)
        self.candidate_pool_size = bayes.get('candidate_pool', 5000)
        self.no_improve = bayes.get('no_improve')
        if self.no_improve is not None and self.no_improve < 1:
            raise InvalidArgument(f"no_improve must be >= 1 when set, got {self.no_improve}.")

        seeds = self.config.get('_internal_seeds', {})
        master = self.search_config.get('seed', 42)
        self.sampling_seed = seeds.get('sampling', master)
        self.surrogate_seed = seeds.get('surrogate', master)

    def _get_engine_directory_name(self) -> str:
        return constants.BAYES_SEARCH_DIR

    @handle_engine_errors("Bayesian Search")
    def run(self, initial: Union[ResultStore, int], iterations: int, fold_set: FoldSet,
            evaluator: Evaluator, parameter_space: Union[ParameterSpace, Mapping[str, Any]],
            sampling: str = constants.SAMPLING_LATIN_HYPERCUBE) -> ResultStore:
        """
        Run the search.

        Args:
            initial: Prior ResultStore to continue from (copied, not mutated),
                or the number of configurations to sample for initialisation.
            iterations: Number of Propose/Acquire/Evaluate rounds (>= 1).
            fold_set: Folds shared by every trial.
            evaluator: Scores one configuration on the folds.
            parameter_space: Space to search (a ParameterSpace or its dict form).
            sampling: Initial design strategy, 'latin_hypercube' or 'random'.

        Returns:
            ResultStore with the initial trials followed by one trial per round.
        """
        if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 1:
            raise InvalidArgument(f"iterations must be a positive integer, got {iterations!r}.")
        if not isinstance(parameter_space, ParameterSpace):
            parameter_space = ParameterSpace.from_dict(parameter_space)

        direction = self._resolve_direction(evaluator)
        rng = np.random.default_rng(self.sampling_seed)
        better = (lambda a, b: a < b) if direction == constants.MINIMIZE else (lambda a, b: a > b)

        # --- Init ---
        store = self._initialize(initial, fold_set, evaluator, parameter_space, sampling, direction, rng)
        best_trial = store.best(direction)
        best = best_trial.aggregate if best_trial is not None else None
        self.logger.info(
            f"Initial results: {len(store)} trials ({store.n_failed} failed). "
            f"Current best: {evaluator.metric} = {best}"
        )

        # --- Loop ---
        stale = 0
        for round_ in range(1, iterations + 1):
            if self.cancelled:
                self.logger.warning(f"Search cancelled before iteration {round_}.")
                break

            candidate = self._propose(store, parameter_space, direction, rng, round_)
            trial = self._evaluate_one(candidate, fold_set, evaluator, iteration=round_)
            store.add(trial)

            if not trial.failed and (best is None or better(trial.aggregate, best)):
                best = trial.aggregate
                stale = 0
                self.logger.info(f"Iteration {round_}: new best {evaluator.metric} = {best:.4f} at {dict(candidate)}")
            else:
                stale += 1
                outcome = "failed" if trial.failed else f"{evaluator.metric} = {trial.aggregate:.4f}"
                self.logger.info(f"Iteration {round_}: {dict(candidate)} -> {outcome} (no improvement for {stale})")

            if self.no_improve is not None and stale >= self.no_improve:
                self.logger.info(f"No improvement for {stale} iterations. Stopping early.")
                break

        self._finalize(store, "Bayesian search")
        return store

    def _initialize(self, initial, fold_set, evaluator, parameter_space, sampling, direction, rng) -> ResultStore:
        if isinstance(initial, ResultStore):
            if not len(initial):
                raise InvalidArgument("Initial result store is empty.")
            journal = self._journal_path()
            if journal is not None and journal.exists():
                journal.unlink()
            return initial.copy(journal_path=journal, direction=direction)

        if isinstance(initial, bool) or not isinstance(initial, int):
            raise InvalidArgument(f"initial must be a ResultStore or a sample size, got {type(initial).__name__}.")
        if initial < 1:
            raise InvalidArgument(f"Initial sample size must be >= 1, got {initial}.")

        configurations = parameter_space.sample(initial, sampling, seed=rng)
        self.logger.info(f"Evaluating {len(configurations)} initial configurations ({sampling}).")
        store = self._open_store(direction)
        seen = {t.configuration for t in store.all()}
        self._evaluate_batch([c for c in configurations if c not in seen], fold_set, evaluator, store, iteration=0)
        return store

    def _in_space(self, trials: List[Trial], parameter_space: ParameterSpace) -> List[Trial]:
        """Trials whose configuration can be encoded in ``parameter_space``."""
        usable = []
        for trial in trials:
            problems = parameter_space.validate(trial.configuration)
            if problems:
                self.logger.debug(f"Ignoring {dict(trial.configuration)} for the surrogate: {'; '.join(problems)}")
                continue
            usable.append(trial)
        return usable

    def _fit_surrogate(self, store: ResultStore, parameter_space: ParameterSpace) -> GaussianProcessRegressor:
        successes = self._in_space(store.successes(), parameter_space)
        if len(successes) < 2:
            raise SurrogateFitFailed(f"need at least 2 successful trials, have {len(successes)}")

        X = parameter_space.encode_many([t.configuration for t in successes])
        y = np.array([t.aggregate for t in successes], dtype=float)
        if np.unique(X, axis=0).shape[0] < 2:
            raise SurrogateFitFailed("all successful trials encode to the same point")

        gp = GaussianProcessRegressor(
            kernel=Matern(length_scale=1.0, nu=2.5),
            alpha=1e-6,
            normalize_y=True,
            n_restarts_optimizer=2,
            random_state=self.surrogate_seed,
        )
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", ConvergenceWarning)
                gp.fit(X, y)
        except (ValueError, np.linalg.LinAlgError) as e:
            raise SurrogateFitFailed(f"Gaussian process fit failed: {e}") from e
        return gp

    def _propose(self, store: ResultStore, parameter_space: ParameterSpace, direction: str,
                 rng: np.random.Generator, round_: int) -> Configuration:
        seen = {t.configuration for t in store.all()}
        evaluated = list(dict.fromkeys(t.configuration for t in self._in_space(store.all(), parameter_space)))
        pool = parameter_space.candidate_pool(self.candidate_pool_size, seed=rng)
        candidates = [c for c in pool if c not in seen]
        if not candidates:
            self.logger.info(f"Iteration {round_}: every candidate has been evaluated; re-evaluating the most promising one.")
            candidates = pool

        try:
            gp = self._fit_surrogate(store, parameter_space)
        except SurrogateFitFailed as e:
            self.logger.warning(f"Iteration {round_}: surrogate fit failed ({e}). Drawing a random candidate.")
            return candidates[int(rng.integers(len(candidates)))]

        X_cand = parameter_space.encode_many(candidates)
        mu, sigma = gp.predict(X_cand, return_std=True)
        scores = self.acquisition(mu, sigma, store.best(direction).aggregate, direction, self.trade_off)
        scores = np.where(np.isfinite(scores), scores, -np.inf)
        if not np.isfinite(scores).any():
            self.logger.warning(f"Iteration {round_}: acquisition undefined everywhere. Drawing a random candidate.")
            return candidates[int(rng.integers(len(candidates)))]

        top = np.flatnonzero(np.isclose(scores, scores.max(), rtol=1e-9, atol=1e-12))
        choice = top[0]
        if len(top) > 1 and evaluated:
            distance = cdist(X_cand[top], parameter_space.encode_many(evaluated)).min(axis=1)
            choice = top[int(np.argmax(distance))]

        self.logger.debug(
            f"Iteration {round_}: {self.acquisition_name}={scores[choice]:.4g} "
            f"(mean={mu[choice]:.4g}, sd={sigma[choice]:.4g}) among {len(candidates)} candidates"
        )
        return candidates[choice]
