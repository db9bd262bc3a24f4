import json
from unittest.mock import Mock, patch
from pathlib import Path

import pytest

from modules.config_manager.config_manager import ConfigurationManager
from utils import constants
from utils.exceptions import ConfigurationError

SCHEMA_PATH = Path(__file__).resolve().parents[2] / "config" / "schema.json"


@pytest.fixture
def valid_config(tmp_path):
    return {
        "data": {"file_path": "data/training.csv", "outcome": "y"},
        "model": {"family": "knn"},
        "folds": {"k": 5, "repeats": 1},
        "search": {
            "method": "grid",
            "metric": "rmse",
            "seed": 42,
            "grid": {"levels": 3},
            "bayes": {"initial": 4, "iterations": 10},
        },
        "execution": {"workers": 2, "n_jobs": -1},
        "outputs": {"base_results_dir": str(tmp_path / "results")},
    }


@pytest.fixture(autouse=True)
def mock_memory():
    """Keeps the memory check independent of the machine running the tests."""
    with patch('psutil.virtual_memory') as mock_virtual_memory:
        memory = Mock()
        memory.total = 8 * (1024 ** 3)  # 8 GB
        mock_virtual_memory.return_value = memory
        yield mock_virtual_memory


def write_config(tmp_path, config):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps(config))
    return ConfigurationManager(str(config_path), str(SCHEMA_PATH))


def test_load_and_validate_success(tmp_path, valid_config, mock_memory):
    config = write_config(tmp_path, valid_config).load_and_validate()

    assert config['model']['family'] == "knn"
    mock_memory.assert_called_once()
    assert config['_internal_seeds'] == {
        'folds': 42, 'sampling': 1042, 'surrogate': 2042, 'model': 3042,
    }
    assert config['resources']['max_memory_mb'] == int(8 * 1024 * 0.8)


def test_shipped_config_is_valid():
    root = SCHEMA_PATH.parent
    config = ConfigurationManager(str(root / "config.json"), str(SCHEMA_PATH)).load_and_validate()
    assert config['search']['method'] in ("grid", "bayes")


def test_config_not_found(tmp_path):
    manager = ConfigurationManager(str(tmp_path / "missing.json"), str(SCHEMA_PATH))
    with pytest.raises(ConfigurationError, match="File not found"):
        manager.load_and_validate()


def test_invalid_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    with pytest.raises(ConfigurationError, match="Invalid JSON"):
        ConfigurationManager(str(path), str(SCHEMA_PATH)).load_and_validate()


def test_schema_violation(tmp_path, valid_config):
    valid_config['search']['method'] = 'random'
    with pytest.raises(ConfigurationError, match="Schema validation failed"):
        write_config(tmp_path, valid_config).load_and_validate()


class TestLogicalValidation:
    @pytest.mark.parametrize("mutate, message", [
        (lambda c: c['folds'].update(k=1), "folds.k"),
        (lambda c: c['folds'].update(repeats=0), "folds.repeats"),
        (lambda c: c['model'].update(family='xgboost'), "Unknown model family"),
        (lambda c: c['search'].update(metric='mape'), "Unknown metric"),
        (lambda c: c['search']['bayes'].update(iterations=0), "iterations"),
        (lambda c: c['search']['bayes'].update(initial=0), "initial"),
        (lambda c: c['search']['bayes'].update(no_improve=0), "no_improve"),
        (lambda c: c['search']['bayes'].update(sampling='sobol'), "sampling"),
        (lambda c: c['search']['grid'].update(levels=0), "levels"),
        (lambda c: c['execution'].update(workers=0), "execution.workers"),
        (lambda c: c['search'].update(seed=-1), "seed"),
        (lambda c: c['data'].update(outcome=""), "outcome"),
    ])
    def test_rejects(self, tmp_path, valid_config, mutate, message):
        mutate(valid_config)
        with pytest.raises(ConfigurationError, match=message):
            write_config(tmp_path, valid_config).load_and_validate()

    def test_custom_parameter_space(self, tmp_path, valid_config):
        valid_config['model']['parameter_space'] = {
            'neighbors': {'type': 'integer', 'range': [2, 8]},
            'weight_func': {'type': 'categorical', 'values': ['distance']},
            'dist_power': {'type': 'continuous', 'range': [1, 2]},
        }
        write_config(tmp_path, valid_config).load_and_validate()

    def test_parameter_space_must_match_family(self, tmp_path, valid_config):
        valid_config['model']['parameter_space'] = {'neighbors': {'type': 'integer', 'range': [2, 8]}}
        with pytest.raises(ConfigurationError, match="Invalid parameter_space"):
            write_config(tmp_path, valid_config).load_and_validate()

    def test_parameter_space_bounds_checked(self, tmp_path, valid_config):
        valid_config['model']['parameter_space'] = {
            'neighbors': {'type': 'integer', 'range': [8, 2]},
            'weight_func': {'type': 'categorical', 'values': ['distance']},
            'dist_power': {'type': 'continuous', 'range': [1, 2]},
        }
        with pytest.raises(ConfigurationError):
            write_config(tmp_path, valid_config).load_and_validate()


class TestResources:
    def test_grid_explosion_detected(self, tmp_path, valid_config):
        valid_config['resources'] = {'max_search_configs': 10}
        # knn at 3 levels: 3 x 2 x 3 = 18 configurations
        with pytest.raises(ConfigurationError, match="Grid Explosion"):
            write_config(tmp_path, valid_config).load_and_validate()

    def test_explicit_grid_counted(self, tmp_path, valid_config):
        valid_config['resources'] = {'max_search_configs': 5}
        valid_config['search']['grid']['configurations'] = {
            'neighbors': [1, 3, 5], 'weight_func': ['uniform', 'distance'], 'dist_power': [1.0],
        }
        with pytest.raises(ConfigurationError, match=r"\(6\) exceeds"):
            write_config(tmp_path, valid_config).load_and_validate()

    def test_bayes_method_skips_grid_check(self, tmp_path, valid_config):
        valid_config['resources'] = {'max_search_configs': 1}
        valid_config['search']['method'] = 'bayes'
        write_config(tmp_path, valid_config).load_and_validate()

    def test_memory_over_physical_ram_warns(self, tmp_path, valid_config):
        valid_config['resources'] = {'max_memory_mb': 10 ** 7}
        manager = write_config(tmp_path, valid_config)
        with patch.object(manager.logger, 'warning') as warning:
            config = manager.load_and_validate()
        warning.assert_called_once()
        assert config['resources']['max_memory_mb'] == 10 ** 7


def test_save_artifacts(tmp_path, valid_config):
    manager = write_config(tmp_path, valid_config)
    manager.load_and_validate()
    manager.generate_run_id()
    manager.save_artifacts(str(tmp_path / "run"))

    config_dir = tmp_path / "run" / constants.CONFIG_DIR
    saved = json.loads((config_dir / constants.CONFIG_USED_FILE).read_text())
    assert saved['_internal_seeds']['surrogate'] == 2042
    assert len((config_dir / constants.CONFIG_HASH_FILE).read_text()) == 64
    metadata = json.loads((config_dir / constants.RUN_METADATA_FILE).read_text())
    assert metadata['run_id'] == manager.run_id


def test_generate_run_id_is_stable():
    manager = ConfigurationManager()
    assert manager.generate_run_id() == manager.generate_run_id()
