import logging
import threading
from unittest.mock import MagicMock

import pytest

from modules.base.base_driver import ExecutionSettings
from modules.evaluation import FunctionEvaluator
from modules.fold_provider import make_folds
from modules.result_store import ResultStore
from modules.search_engine import GridSearchDriver
from utils import constants
from utils.exceptions import InvalidArgument


def quadratic(configuration, fold, seed):
    return (configuration['x'] - 3) ** 2


def fails_at_two(configuration, fold, seed):
    if configuration['x'] == 2:
        raise ArithmeticError("no fit at x=2")
    return float(configuration['x'])


@pytest.fixture
def mock_logger():
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def config(tmp_path):
    return {'outputs': {'base_results_dir': str(tmp_path / "results")}}


@pytest.fixture
def fold_set():
    return make_folds(20, k=4, seed=3)


def test_expand():
    configurations = GridSearchDriver.expand({'cost': [0.1, 1.0], 'kernel': ['rbf', 'poly']})
    assert len(configurations) == 4
    assert {'cost': 1.0, 'kernel': 'poly'} in configurations


def test_expand_rejects_bad_grid():
    with pytest.raises(InvalidArgument):
        GridSearchDriver.expand({'cost': 0.1})


def test_finds_minimum(config, mock_logger, fold_set):
    driver = GridSearchDriver(config, mock_logger)
    store = driver.run([{'x': x} for x in range(1, 6)], fold_set, FunctionEvaluator(quadratic))
    assert len(store) == 5
    best = store.best_k(1, constants.MINIMIZE)[0]
    assert best.configuration == {'x': 3}
    assert best.aggregate == 0.0


def test_trial_count_matches_distinct_configurations(config, mock_logger, fold_set):
    driver = GridSearchDriver(config, mock_logger)
    store = driver.run([{'x': 1}, {'x': 2}, {'x': 1}, {'x': 2}, {'x': 5}], fold_set, FunctionEvaluator(quadratic))
    assert [t.configuration['x'] for t in store.all()] == [1, 2, 5]
    assert all(t.iteration == 0 for t in store.all())


def test_failures_are_recorded_not_fatal(config, mock_logger, fold_set):
    driver = GridSearchDriver(config, mock_logger)
    store = driver.run([{'x': 1}, {'x': 2}, {'x': 3}], fold_set, FunctionEvaluator(fails_at_two))
    assert len(store) == 3
    assert store.n_failed == 1
    assert "no fit at x=2" in store.failures()[0].error
    assert [t.configuration['x'] for t in store.best_k(3)] == [1, 3]


def test_all_failures_still_return_store(config, mock_logger, fold_set):
    def always(configuration, fold, seed):
        raise RuntimeError("nope")

    store = GridSearchDriver(config, mock_logger).run([{'x': 1}, {'x': 2}], fold_set, FunctionEvaluator(always))
    assert store.n_failed == 2
    assert store.best() is None


def test_parallel_matches_sequential(config, mock_logger, fold_set):
    configurations = [{'x': x} for x in range(1, 9)]
    sequential = GridSearchDriver(config, mock_logger).run(configurations, fold_set, FunctionEvaluator(quadratic))
    parallel = GridSearchDriver(config, mock_logger, ExecutionSettings(workers=4)).run(
        configurations, fold_set, FunctionEvaluator(quadratic))
    assert {t.configuration: t.aggregate for t in parallel} == {t.configuration: t.aggregate for t in sequential}
    assert parallel.best().configuration == {'x': 3}


def test_parallel_respects_worker_limit(config, mock_logger, fold_set):
    lock = threading.Lock()
    state = {'running': 0, 'peak': 0}

    def tracked(configuration, fold, seed):
        with lock:
            state['running'] += 1
            state['peak'] = max(state['peak'], state['running'])
        try:
            return float(configuration['x'])
        finally:
            with lock:
                state['running'] -= 1

    driver = GridSearchDriver(config, mock_logger, ExecutionSettings(workers=2))
    store = driver.run([{'x': x} for x in range(10)], fold_set, FunctionEvaluator(tracked))
    assert len(store) == 10
    assert state['peak'] <= 2


def test_cancel_stops_new_evaluations(config, mock_logger, fold_set):
    driver = GridSearchDriver(config, mock_logger)

    def cancelling(configuration, fold, seed):
        driver.cancel()
        return 1.0

    store = driver.run([{'x': x} for x in range(10)], fold_set, FunctionEvaluator(cancelling))
    assert len(store) == 1
    assert driver.cancelled


def test_cancel_with_workers_keeps_in_flight_results(config, mock_logger, fold_set):
    driver = GridSearchDriver(config, mock_logger, ExecutionSettings(workers=2))

    def cancelling(configuration, fold, seed):
        driver.cancel()
        return 1.0

    store = driver.run([{'x': x} for x in range(10)], fold_set, FunctionEvaluator(cancelling))
    assert 1 <= len(store) <= 2
    assert store.n_failed == 0


def test_existing_store_is_extended(config, mock_logger, fold_set):
    calls = []

    def counting(configuration, fold, seed):
        calls.append(configuration['x'])
        return float(configuration['x'])

    evaluator = FunctionEvaluator(counting)
    driver = GridSearchDriver(config, mock_logger)
    store = driver.run([{'x': 1}, {'x': 2}], fold_set, evaluator)
    calls.clear()
    store = driver.run([{'x': 2}, {'x': 3}], fold_set, evaluator, store=store)
    assert len(store) == 3
    assert set(calls) == {3}


def test_resume_skips_recorded_configurations(config, mock_logger, fold_set):
    calls = []

    def counting(configuration, fold, seed):
        calls.append(configuration['x'])
        return float(configuration['x'])

    GridSearchDriver(config, mock_logger).run([{'x': 1}, {'x': 2}], fold_set, FunctionEvaluator(counting))
    calls.clear()

    config['search'] = {'resume': True}
    store = GridSearchDriver(config, mock_logger).run(
        [{'x': 1}, {'x': 2}, {'x': 3}], fold_set, FunctionEvaluator(counting))
    assert len(store) == 3
    assert set(calls) == {3}


def test_max_configs_exceeded_raises_before_evaluating(config, mock_logger, fold_set):
    config['resources'] = {'max_search_configs': 3}
    calls = []

    def counting(configuration, fold, seed):
        calls.append(configuration['x'])
        return float(configuration['x'])

    with pytest.raises(InvalidArgument, match="safety limit"):
        GridSearchDriver(config, mock_logger).run(
            [{'x': x} for x in range(10)], fold_set, FunctionEvaluator(counting))
    assert calls == []


def test_default_limit_rejects_oversized_grid(config, mock_logger, fold_set):
    with pytest.raises(InvalidArgument):
        GridSearchDriver(config, mock_logger).run(
            [{'x': x} for x in range(1200)], fold_set, FunctionEvaluator(quadratic))


def test_duplicates_do_not_count_towards_limit(config, mock_logger, fold_set):
    config['resources'] = {'max_search_configs': 3}
    store = GridSearchDriver(config, mock_logger).run(
        [{'x': 1}, {'x': 2}, {'x': 3}, {'x': 1}, {'x': 3}], fold_set, FunctionEvaluator(quadratic))
    assert len(store) == 3


def test_empty_grid_rejected(config, mock_logger, fold_set):
    with pytest.raises(InvalidArgument):
        GridSearchDriver(config, mock_logger).run([], fold_set, FunctionEvaluator(quadratic))


def test_outputs_written(config, mock_logger, fold_set):
    driver = GridSearchDriver(config, mock_logger)
    driver.run([{'x': x} for x in range(1, 4)], fold_set, FunctionEvaluator(quadratic))
    assert (driver.output_dir / constants.TRIALS_JOURNAL_FILE).exists()
    assert (driver.output_dir / constants.LEADERBOARD_FILE).exists()
    assert (driver.output_dir / constants.BEST_CONFIGURATION_FILE).exists()
    assert len(ResultStore.load(driver.output_dir / constants.TRIALS_JOURNAL_FILE)) == 3


def test_maximize_direction(config, mock_logger, fold_set):
    evaluator = FunctionEvaluator(lambda c, f, s: -(c['x'] - 3) ** 2, metric='rsq')
    store = GridSearchDriver(config, mock_logger).run([{'x': x} for x in range(1, 6)], fold_set, evaluator)
    assert store.direction == constants.MAXIMIZE
    assert store.best().configuration == {'x': 3}
