#!/usr/bin/env python
"""
Nonlinear Regression Tuning - Main Entry Point
Runs a grid or Bayesian hyperparameter search for one model family.
"""
import sys
import logging
import argparse
import traceback
import random
from pathlib import Path

import pandas as pd
import numpy as np

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

# Core Infrastructure
from modules.base.base_driver import ExecutionSettings
from modules.config_manager import ConfigurationManager
from modules.logging_config import LoggingConfigurator
from modules.evaluation import CachingEvaluator, EstimatorEvaluator
from modules.fold_provider import make_folds
from modules.model_factory import ModelFactory
from modules.result_store import ResultStore
from modules.search_engine import BayesSearchDriver, GridSearchDriver
from modules.search_space import ParameterSpace
from utils import constants
from utils.cache import ensure_cache_dir
from utils.exceptions import ConfigurationError, TuningException
from utils.file_io import read_dataframe, save_dataframe


def parse_arguments(argv=None):
    """
    Parse command-line arguments. Anything given here overrides the config file.

    Returns:
        argparse.Namespace: Parsed command-line arguments.
    """
    parser = argparse.ArgumentParser(
        description="Nonlinear Regression Tuning - grid and Bayesian hyperparameter search",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument("--config", type=str, default="config/config.json",
                        help="Path to the configuration JSON file")
    parser.add_argument("--data", type=str, default=None,
                        help="Training data (.csv, .parquet, .xlsx); overrides data.file_path")
    parser.add_argument("--outcome", type=str, default=None,
                        help="Outcome column; overrides data.outcome")
    parser.add_argument("--family", type=str, default=None,
                        choices=ModelFactory.get_available_families(),
                        help="Model family; overrides model.family")
    parser.add_argument("--method", type=str, default=None, choices=["grid", "bayes"],
                        help="Search method; overrides search.method")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable verbose (DEBUG) logging")
    parser.add_argument("--dry-run", action="store_true",
                        help="Validate configuration and setup without running the search")

    return parser.parse_args(argv)


def apply_overrides(config: dict, args: argparse.Namespace) -> dict:
    """Fold CLI overrides into the loaded configuration."""
    if args.data:
        config.setdefault('data', {})['file_path'] = args.data
    if args.outcome:
        config.setdefault('data', {})['outcome'] = args.outcome
    if args.family:
        model = config.setdefault('model', {})
        if model.get('family') != args.family:
            # Custom ranges belong to the configured family only
            model.pop('parameter_space', None)
        model['family'] = args.family
    if args.method:
        config.setdefault('search', {})['method'] = args.method
    if args.verbose:
        config.setdefault('logging', {})['level'] = 'DEBUG'
    return config


def setup_global_determinism(config: dict, logger: logging.Logger):
    """
    Seed the global generators. Components also receive explicit seeds.
    """
    seed = config.get('search', {}).get('seed', 42)
    logger.info(f"Setting Global Deterministic Seed: {seed}")
    random.seed(seed)
    np.random.seed(seed)


def load_training_data(config: dict, logger: logging.Logger):
    """
    Read the training table and split it into predictors and outcome.

    Returns:
        tuple: (X DataFrame, y Series)
    """
    data_cfg = config['data']
    path = Path(data_cfg['file_path'])
    if not path.exists():
        raise ConfigurationError(f"Data file not found: {path}")
    try:
        df = read_dataframe(path)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    outcome = data_cfg['outcome']
    if outcome not in df.columns:
        raise ConfigurationError(f"Outcome column '{outcome}' not found in {path.name}.")

    features = data_cfg.get('features') or [c for c in df.columns if c != outcome]
    missing = [c for c in features if c not in df.columns]
    if missing:
        raise ConfigurationError(f"Feature columns not found: {missing}")

    df = df.dropna(subset=features + [outcome]).reset_index(drop=True)
    logger.info(f"Data loaded: {len(df)} rows, {len(features)} predictors, outcome '{outcome}'")
    return df[features], df[outcome]


def run_search(config: dict, X: pd.DataFrame, y: pd.Series, logger: logging.Logger):
    """
    Build folds, evaluator and driver from the config and run the search.

    Returns:
        tuple: (driver, ResultStore)
    """
    seeds = config['_internal_seeds']
    folds_cfg = config.get('folds', {})
    search_cfg = config.get('search', {})
    settings = ExecutionSettings.from_config(config)

    fold_set = make_folds(
        X,
        k=folds_cfg.get('k', 10),
        seed=seeds['folds'],
        repeats=folds_cfg.get('repeats', 1),
        strata=y.to_numpy() if folds_cfg.get('stratify', False) else None,
        bins=folds_cfg.get('bins', 4),
    )
    logger.info(f"Fold set: {len(fold_set)} folds over {fold_set.n_rows} rows")

    model_cfg = config['model']
    space = None
    if model_cfg.get('parameter_space'):
        space = ParameterSpace.from_dict(model_cfg['parameter_space'])
    family = ModelFactory.get(model_cfg['family'], space)
    logger.info(f"Model family '{family.name}' over {family.parameter_space}")

    evaluator = EstimatorEvaluator(
        family, X, y,
        metric=search_cfg.get('metric', 'rmse'),
        seed=seeds['model'],
        n_jobs=settings.fold_jobs,
        backend=settings.backend,
    )
    if config.get('cache', {}).get('enabled', False):
        base_dir = config.get('outputs', {}).get('base_results_dir', 'results')
        cache_dir = ensure_cache_dir(base_dir, constants.EVALUATION_CACHE_NAMESPACE)
        evaluator = CachingEvaluator(evaluator, cache_dir, logger=logging.getLogger("evaluation_cache"))

    method = search_cfg.get('method', 'grid')
    if method == 'grid':
        grid_cfg = search_cfg.get('grid', {})
        driver = GridSearchDriver(config, logger, settings)
        if grid_cfg.get('configurations'):
            configurations = GridSearchDriver.expand(grid_cfg['configurations'])
        else:
            configurations = family.parameter_space.grid(grid_cfg.get('levels', 3))
        store = driver.run(configurations, fold_set, evaluator)
    else:
        bayes_cfg = search_cfg.get('bayes', {})
        driver = BayesSearchDriver(config, logger, settings)
        store = driver.run(
            bayes_cfg.get('initial', 5),
            bayes_cfg.get('iterations', 10),
            fold_set,
            evaluator,
            family.parameter_space,
            sampling=bayes_cfg.get('sampling', constants.SAMPLING_LATIN_HYPERCUBE),
        )

    if isinstance(evaluator, CachingEvaluator):
        logger.info(f"Evaluation cache: {evaluator.hits} hits, {evaluator.misses} misses")
    return driver, store


def print_leaderboard(store: ResultStore, top: int = 10):
    df = store.to_frame()
    if df.empty:
        print("\nNo trials were recorded.")
        return
    ranked = df[df['status'] == constants.STATUS_SUCCESS].sort_values('rank').head(top)
    columns = ['rank', 'iteration'] + [c for c in df.columns if c.startswith('param_')] + ['mean', 'std_err']
    print("\n" + "=" * 80)
    print(f"    TOP {len(ranked)} CONFIGURATIONS ({store.direction} {df['metric'].iloc[0]})")
    print("=" * 80)
    print(ranked[columns].to_string(index=False))
    if store.n_failed:
        print(f"\n{store.n_failed} of {len(store)} trials failed.")


def main(argv=None):
    """
    Main orchestration function.

    Returns:
        int: Exit code (0 for success, 1 for errors, 130 when interrupted)
    """
    logger = None

    try:
        args = parse_arguments(argv)

        print("\n" + "=" * 80)
        print("    NONLINEAR REGRESSION TUNING")
        print("=" * 80 + "\n")

        # ---------------------------------------------------------------
        # PHASE 0: INITIALIZATION & VALIDATION
        # ---------------------------------------------------------------
        config_manager = ConfigurationManager(config_path=args.config)
        config = config_manager.load_and_validate()
        config = apply_overrides(config, args)

        logging_configurator = LoggingConfigurator(config)
        logging_configurator.setup()
        logger = logging_configurator.get_logger('tuning')

        logger.info(f"Configuration loaded from: {args.config}")

        run_id = config_manager.generate_run_id()
        run_dir = Path(config.get('outputs', {}).get('base_results_dir', 'results'))
        if config.get('outputs', {}).get('persist', True):
            config_manager.save_artifacts(str(run_dir))
        setup_global_determinism(config, logger)

        logger.info(f"Run ID: {run_id}")
        logger.info(f"Output Directory: {run_dir.absolute()}")

        if args.dry_run:
            logger.info("Dry run mode: validation complete. Exiting without running the search.")
            print("\n[SUCCESS] Configuration validated successfully.")
            return 0

        # ---------------------------------------------------------------
        # PHASE 1: DATA
        # ---------------------------------------------------------------
        X, y = load_training_data(config, logger)

        # ---------------------------------------------------------------
        # PHASE 2: SEARCH
        # ---------------------------------------------------------------
        driver, store = run_search(config, X, y, logger)
        if driver.persist:
            save_dataframe(store.progress_frame(), driver.output_dir / constants.PROGRESS_FILE,
                           excel_copy=driver.excel_copy)

        print_leaderboard(store)
        print(f"\n[SUCCESS] Search completed. Results saved to: {run_dir}")
        return 0

    except TuningException as e:
        msg = f"Tuning Error: {str(e)}"
        print(f"\n[ERROR] {msg}")
        if logger:
            logger.critical(msg, exc_info=True)
        else:
            traceback.print_exc()
        return 1

    except KeyboardInterrupt:
        print("\n[INTERRUPTED] Search interrupted by user.")
        if logger:
            logger.warning("Search interrupted by user (Ctrl+C)")
        return 130

    except Exception as e:
        msg = f"Unexpected Error: {str(e)}"
        print(f"\n[CRITICAL] {msg}")
        if logger:
            logger.critical(msg, exc_info=True)
        else:
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
