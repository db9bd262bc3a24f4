"""
Acquisition functions for the Bayesian search driver.

Each function scores candidates from the surrogate's predictive mean ``mu``
and standard deviation ``sigma`` relative to the best observed value; larger
scores are always more attractive, whatever the metric direction.
"""
from typing import Callable, Dict

import numpy as np
from scipy.stats import norm

from utils import constants
from utils.exceptions import InvalidArgument

AcquisitionFn = Callable[[np.ndarray, np.ndarray, float, str, float], np.ndarray]


def _improvement(mu: np.ndarray, best: float, direction: str, trade_off: float) -> np.ndarray:
    if direction == constants.MINIMIZE:
        return best - mu - trade_off
    return mu - best - trade_off


def expected_improvement(mu, sigma, best, direction, trade_off=0.0) -> np.ndarray:
    mu, sigma = np.asarray(mu, dtype=float), np.asarray(sigma, dtype=float)
    improvement = _improvement(mu, best, direction, trade_off)
    with np.errstate(divide='ignore', invalid='ignore'):
        z = improvement / sigma
        ei = improvement * norm.cdf(z) + sigma * norm.pdf(z)
    return np.where(sigma > 0, ei, np.maximum(improvement, 0.0))


def probability_of_improvement(mu, sigma, best, direction, trade_off=0.0) -> np.ndarray:
    mu, sigma = np.asarray(mu, dtype=float), np.asarray(sigma, dtype=float)
    improvement = _improvement(mu, best, direction, trade_off)
    with np.errstate(divide='ignore', invalid='ignore'):
        pi = norm.cdf(improvement / sigma)
    return np.where(sigma > 0, pi, (improvement > 0).astype(float))


def confidence_bound(mu, sigma, best, direction, trade_off=0.1) -> np.ndarray:
    """Optimistic bound; ``trade_off`` is the number of standard deviations (kappa)."""
    mu, sigma = np.asarray(mu, dtype=float), np.asarray(sigma, dtype=float)
    if direction == constants.MINIMIZE:
        return -(mu - trade_off * sigma)
    return mu + trade_off * sigma


ACQUISITIONS: Dict[str, AcquisitionFn] = {
    'expected_improvement': expected_improvement,
    'probability_of_improvement': probability_of_improvement,
    'confidence_bound': confidence_bound,
}


def get_acquisition(name: str) -> AcquisitionFn:
    if name not in ACQUISITIONS:
        raise InvalidArgument(f"Unknown acquisition function: {name}. Available: {list(ACQUISITIONS)}")
    return ACQUISITIONS[name]
