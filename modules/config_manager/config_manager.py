import json
import os
import hashlib
import sys
import logging
import jsonschema
import psutil  # Required for memory awareness
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from sklearn.model_selection import ParameterGrid

from modules.evaluation.metrics import METRICS
from modules.model_factory.model_factory import ModelFactory
from modules.search_space.parameter_space import ParameterSpace
from utils.exceptions import ConfigurationError, InvalidArgument
from utils import constants

class ConfigurationManager:
    """
    Manages tuning-run configuration loading, validation, and access.
    Acts as the single source of truth and safety guard for a search run.

    Validation happens in four passes: JSON schema, logical rules (fold
    counts, iteration budgets, metric and family names, parameter spaces),
    resource limits (grid size, memory) and finally seed propagation.
    """

    # Default Resource Limits (Safety Guardrails)
    DEFAULT_MAX_SEARCH_CONFIGS = 1000  # Prevent accidental combinatoric explosions

    def __init__(self, config_path: str = "config/config.json",
                 schema_path: str = "config/schema.json"):
        """
        Initialize the ConfigurationManager.

        Args:
            config_path (str): Path to the user configuration JSON.
            schema_path (str): Path to the JSON schema definition.
        """
        self.config_path = config_path
        self.schema_path = schema_path
        self.config: Dict[str, Any] = {}
        self.schema: Dict[str, Any] = {}
        self.run_id: Optional[str] = None
        self.logger = logging.getLogger("config_manager")

    def load_and_validate(self) -> Dict[str, Any]:
        """
        Main entry point. Loads config, validates schema/logic/resources,
        and propagates seeds.

        Returns:
            Dict[str, Any]: The fully validated and hydrated configuration.

        Raises:
            ConfigurationError: If any validation step fails.
        """
        # 1. Load Files
        self.config = self._load_json(self.config_path)
        self.schema = self._load_json(self.schema_path)

        # 2. Structural Validation (Schema)
        self._validate_schema()

        # 3. Logical Validation (Business Rules & Bounds)
        self._validate_logic()

        # 4. Resource Validation (Prevent Exhaustion)
        self._validate_resources()

        # 5. Internal Seed Propagation (Reproducibility)
        self._propagate_seeds()

        return self.config

    def generate_run_id(self) -> str:
        """
        Generate or retrieve a unique run identifier based on timestamp.
        """
        if not self.run_id:
            # Format: YYYYMMDD_HHMMSS
            self.run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
        return self.run_id

    def save_artifacts(self, output_dir: str) -> None:
        """
        Save configuration artifacts to the run directory for full reproducibility.

        Saves:
        1. config_used.json: The exact config object in memory.
        2. config_hash.txt: SHA256 hash for versioning.
        3. run_metadata.json: Environment details (Python version, Platform, etc.).
        """
        config_dir = Path(output_dir) / constants.CONFIG_DIR
        config_dir.mkdir(parents=True, exist_ok=True)

        # 1. Save Config
        with open(config_dir / constants.CONFIG_USED_FILE, 'w') as f:
            json.dump(self.config, f, indent=2)

        # 2. Calculate and Save Hash
        config_str = json.dumps(self.config, sort_keys=True)
        config_hash = hashlib.sha256(config_str.encode()).hexdigest()

        with open(config_dir / constants.CONFIG_HASH_FILE, 'w') as f:
            f.write(config_hash)

        # 3. Save Metadata (Environment Capture)
        metadata = {
            'run_id': self.run_id,
            'start_time': datetime.now().isoformat(),
            'python_version': sys.version,
            'platform': sys.platform,
            'config_hash': config_hash,
            'working_directory': os.getcwd()
        }

        with open(config_dir / constants.RUN_METADATA_FILE, 'w') as f:
            json.dump(metadata, f, indent=2)

    def _load_json(self, path: str) -> Dict[str, Any]:
        """Safely load a JSON file."""
        if not os.path.exists(path):
            raise ConfigurationError(f"File not found: {path}")
        try:
            with open(path, 'r') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {str(e)}")

    def _validate_schema(self) -> None:
        """Validate config structure against JSON schema."""
        try:
            jsonschema.validate(instance=self.config, schema=self.schema)
        except jsonschema.ValidationError as e:
            raise ConfigurationError(f"Schema validation failed: {e.message}")

    def _validate_logic(self) -> None:
        """Comprehensive logical validation."""
        # --- Data Section ---
        data = self.config.get('data', {})
        for key in ['file_path', 'outcome']:
            if not data.get(key):
                raise ConfigurationError(f"Data '{key}' must be specified and non-empty.")

        # --- Model Section ---
        model = self.config.get('model', {})
        family = model.get('family')
        if family not in ModelFactory.FAMILIES:
            raise ConfigurationError(
                f"Unknown model family '{family}'. Available: {ModelFactory.get_available_families()}"
            )
        if model.get('parameter_space'):
            try:
                space = ParameterSpace.from_dict(model['parameter_space'])
                ModelFactory.get(family, space)
            except InvalidArgument as e:
                raise ConfigurationError(f"Invalid parameter_space for '{family}': {e}")

        # --- Folds Section ---
        folds = self.config.get('folds', {})
        k = folds.get('k', 10)
        if k < 2:
            raise ConfigurationError(f"folds.k must be >= 2, got {k}.")
        if folds.get('repeats', 1) < 1:
            raise ConfigurationError(f"folds.repeats must be >= 1, got {folds.get('repeats')}.")
        if folds.get('bins', 4) < 2:
            raise ConfigurationError(f"folds.bins must be >= 2, got {folds.get('bins')}.")

        # --- Search Section ---
        search = self.config.get('search', {})
        if search.get('seed', 42) < 0:
            raise ConfigurationError("Search seed must be non-negative.")

        metric = search.get('metric', 'rmse')
        if metric not in METRICS:
            raise ConfigurationError(f"Unknown metric '{metric}'. Available: {sorted(METRICS)}")
        direction = search.get('direction')
        if direction is not None and direction not in constants.DIRECTIONS:
            raise ConfigurationError(f"search.direction must be one of {constants.DIRECTIONS}, got '{direction}'.")

        grid = search.get('grid', {})
        if grid.get('levels', 3) < 1:
            raise ConfigurationError(f"search.grid.levels must be >= 1, got {grid.get('levels')}.")

        bayes = search.get('bayes', {})
        if bayes.get('initial', 5) < 1:
            raise ConfigurationError(f"search.bayes.initial must be >= 1, got {bayes.get('initial')}.")
        if bayes.get('iterations', 10) < 1:
            raise ConfigurationError(f"search.bayes.iterations must be >= 1, got {bayes.get('iterations')}.")
        sampling = bayes.get('sampling', constants.SAMPLING_LATIN_HYPERCUBE)
        if sampling not in constants.SAMPLING_STRATEGIES:
            raise ConfigurationError(f"search.bayes.sampling must be one of {constants.SAMPLING_STRATEGIES}, got '{sampling}'.")
        no_improve = bayes.get('no_improve')
        if no_improve is not None and no_improve < 1:
            raise ConfigurationError(f"search.bayes.no_improve must be >= 1 when provided, got {no_improve}.")
        if bayes.get('candidate_pool', 5000) < 1:
            raise ConfigurationError(f"search.bayes.candidate_pool must be >= 1, got {bayes.get('candidate_pool')}.")

        # --- Execution Section ---
        execution = self.config.get('execution', {})
        for key in ['workers', 'n_jobs']:
            if key in execution:
                value = execution[key]
                if value == 0 or value < -1:
                    raise ConfigurationError(f"execution.{key} must be -1 (all cores) or a positive integer, got {value}")

    def _validate_resources(self) -> None:
        """
        Validate against system resources.
        Calculates the explicit grid size and ensures it fits within safe limits.
        """
        resources = self.config.get('resources', {})
        max_configs = resources.get('max_search_configs', self.DEFAULT_MAX_SEARCH_CONFIGS)

        # 1. Grid Explosion Check
        search = self.config.get('search', {})
        grid = search.get('grid', {})
        if search.get('method', 'grid') == 'grid':
            if grid.get('configurations'):
                try:
                    total_configs = len(ParameterGrid(grid['configurations']))
                except Exception as e:
                    raise ConfigurationError(f"Invalid parameter grid: {str(e)}")
            else:
                levels = grid.get('levels', 3)
                axes = {p.name: p.regular(levels) for p in self._parameter_space()}
                total_configs = len(ParameterGrid(axes))

            if total_configs > max_configs:
                raise ConfigurationError(
                    f"Search Grid Explosion Detected! Total configurations ({total_configs}) exceeds "
                    f"safety limit ({max_configs}). Reduce the grid or increase 'resources.max_search_configs'."
                )

            # Log the grid size for visibility
            self.logger.info(f"Search grid size validated: {total_configs} combinations (Limit: {max_configs})")

        # 2. Memory Limits Check
        # Get system total memory in MB
        system_ram_mb = int(psutil.virtual_memory().total / (1024 * 1024))
        # Default safety buffer: 80% of system RAM
        safe_ram_limit = int(system_ram_mb * 0.8)

        config_max_ram = resources.get('max_memory_mb', safe_ram_limit)

        if config_max_ram > system_ram_mb:
            self.logger.warning(
                f"Configured max_memory_mb ({config_max_ram}MB) exceeds physical system RAM ({system_ram_mb}MB). "
                "This may lead to instability."
            )

        # Inject the safe limit back into config if not present, for other modules to use
        if 'resources' not in self.config:
            self.config['resources'] = {}
        self.config['resources']['max_memory_mb'] = config_max_ram

    def _parameter_space(self) -> ParameterSpace:
        model = self.config.get('model', {})
        if model.get('parameter_space'):
            return ParameterSpace.from_dict(model['parameter_space'])
        return ModelFactory.get(model['family']).parameter_space

    def _propagate_seeds(self) -> None:
        """
        Propagate master seed to internal components to ensure full run reproducibility.
        Uses large, non-overlapping offsets to avoid correlation between components.
        """
        master_seed = self.config.get('search', {}).get('seed', 42)

        self.config['_internal_seeds'] = {
            'folds': master_seed,
            'sampling': master_seed + 1000,
            'surrogate': master_seed + 2000,
            'model': master_seed + 3000,
        }
        self.logger.debug(f"Seeds propagated from master ({master_seed}): {self.config['_internal_seeds']}")
