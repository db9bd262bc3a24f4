from typing import Callable, Dict, Tuple

import numpy as np
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

from utils import constants
from utils.exceptions import InvalidArgument

MetricFn = Callable[[np.ndarray, np.ndarray], float]


def rmse(y_true, y_pred) -> float:
    return float(np.sqrt(mean_squared_error(y_true, y_pred)))


def mae(y_true, y_pred) -> float:
    return float(mean_absolute_error(y_true, y_pred))


def rsq(y_true, y_pred) -> float:
    return float(r2_score(y_true, y_pred))


# name -> (function, optimisation direction)
METRICS: Dict[str, Tuple[MetricFn, str]] = {
    'rmse': (rmse, constants.MINIMIZE),
    'mae': (mae, constants.MINIMIZE),
    'rsq': (rsq, constants.MAXIMIZE),
}


def get_metric(name: str) -> Tuple[MetricFn, str]:
    if name not in METRICS:
        raise InvalidArgument(f"Unknown metric: {name}. Available: {list(METRICS)}")
    return METRICS[name]
