"""
Evaluation Module
=================

Responsibility:
- The Evaluator capability interface (configuration + folds -> Trial).
- Cross-validated scoring of plain scoring functions and scikit-learn model families.
- Fold-level parallelism via joblib.
- On-disk caching of successful evaluations.
"""

from .metrics import METRICS, get_metric
from .evaluator import Evaluator, FunctionEvaluator, EstimatorEvaluator, CachingEvaluator, cross_validate

__all__ = [
    'METRICS', 'get_metric',
    'Evaluator', 'FunctionEvaluator', 'EstimatorEvaluator', 'CachingEvaluator', 'cross_validate',
]
