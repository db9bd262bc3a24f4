"""
Search Engine Module
====================

Responsibility:
- Grid search over explicit or expanded configuration sets.
- Sequential model-based (Bayesian) search with a Gaussian-process surrogate.
- Acquisition functions (expected improvement, probability of improvement, confidence bound).
- Parallel, failure-isolated, cancellable evaluation of candidates.
"""

from .grid_search import GridSearchDriver
from .bayes_search import BayesSearchDriver
from .acquisition import ACQUISITIONS, get_acquisition

__all__ = ['GridSearchDriver', 'BayesSearchDriver', 'ACQUISITIONS', 'get_acquisition']
