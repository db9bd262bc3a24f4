"""
Result Store Module
===================

Responsibility:
- Immutable Trial records (configuration, per-fold metrics, aggregate, predictions).
- Thread-safe, append-only accumulation of trials for one search run.
- Best-k ranking in a caller-chosen direction, failure accounting.
- Lossless JSON Lines persistence and leaderboard export.
"""

from .trial import FoldPrediction, Trial
from .result_store import ResultStore

__all__ = ['FoldPrediction', 'Trial', 'ResultStore']
