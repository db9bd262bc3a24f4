# utils/constants.py

# --- Top-Level Result Directories ---
# Sequentially numbered for proper sorting

CONFIG_DIR = "01_RunConfiguration"          # Run config, metadata, seeds
GRID_SEARCH_DIR = "02_GridSearch"           # Grid driver journal + leaderboard
BAYES_SEARCH_DIR = "03_BayesianSearch"      # Bayesian driver journal + leaderboard
EVALUATION_CACHE_NAMESPACE = "evaluations"  # <base>/.cache/evaluations

# --- File Names ---
CONFIG_USED_FILE = "config_used.json"
CONFIG_HASH_FILE = "config_hash.txt"
RUN_METADATA_FILE = "run_metadata.json"
TRIALS_JOURNAL_FILE = "trials.jsonl"
LEADERBOARD_FILE = "leaderboard.parquet"
PROGRESS_FILE = "search_progress.parquet"
BEST_CONFIGURATION_FILE = "best_configuration.json"

# --- Trial Status ---
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"

# --- Metric Directions ---
MINIMIZE = "minimize"
MAXIMIZE = "maximize"
DIRECTIONS = (MINIMIZE, MAXIMIZE)

# --- Sampling Strategies ---
SAMPLING_RANDOM = "random"
SAMPLING_LATIN_HYPERCUBE = "latin_hypercube"
SAMPLING_STRATEGIES = (SAMPLING_RANDOM, SAMPLING_LATIN_HYPERCUBE)
