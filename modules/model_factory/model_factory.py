import dataclasses
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sklearn.linear_model import Ridge
from sklearn.neighbors import KNeighborsRegressor
from sklearn.neural_network import MLPRegressor
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import SplineTransformer
from sklearn.svm import SVR

from modules.search_space.configuration import Configuration
from modules.search_space.parameter_space import Parameter, ParameterSpace
from utils.exceptions import InvalidArgument


def spline_regressor(n_knots: int = 5, degree: int = 3, alpha: float = 1.0):
    """Additive spline basis expansion followed by a ridge fit (MARS-like hinge surrogate)."""
    return make_pipeline(SplineTransformer(n_knots=n_knots, degree=degree), Ridge(alpha=alpha))


@dataclass(frozen=True)
class ModelFamily:
    """
    One tunable model family.

    ``translate`` maps a Configuration (tuning parameter names) onto keyword
    arguments of ``estimator``; ``fixed`` holds constructor arguments that are
    never tuned.
    """

    name: str
    estimator: Callable[..., Any]
    parameter_space: ParameterSpace
    translate: Callable[[Configuration], Dict[str, Any]]
    fixed: Dict[str, Any] = field(default_factory=dict, hash=False)

    def build(self, configuration: Configuration, seed: Optional[int] = None) -> Any:
        params = {**self.fixed, **self.translate(configuration)}
        if seed is not None:
            params.setdefault('random_state', seed)
        return self.estimator(**ModelFactory._filter_params(self.estimator, params))

    def with_space(self, parameter_space: ParameterSpace) -> 'ModelFamily':
        """Same family, different tuning ranges over the same parameter names."""
        expected, given = set(self.parameter_space.names), set(parameter_space.names)
        if expected != given:
            raise InvalidArgument(
                f"Family '{self.name}' tunes {sorted(expected)}; got {sorted(given)}."
            )
        return dataclasses.replace(self, parameter_space=parameter_space)


def _neural_net(c: Configuration) -> Dict[str, Any]:
    return {'hidden_layer_sizes': (int(c['hidden_units']),), 'alpha': c['penalty'], 'max_iter': int(c['epochs'])}


def _spline(c: Configuration) -> Dict[str, Any]:
    return {'n_knots': int(c['n_knots']), 'degree': int(c['degree']), 'alpha': c['penalty']}


def _svm_rbf(c: Configuration) -> Dict[str, Any]:
    return {'C': c['cost'], 'gamma': c['rbf_sigma'], 'epsilon': c['margin']}


def _svm_poly(c: Configuration) -> Dict[str, Any]:
    return {'C': c['cost'], 'degree': int(c['degree']), 'gamma': c['scale_factor'], 'epsilon': c['margin']}


def _knn(c: Configuration) -> Dict[str, Any]:
    return {'n_neighbors': int(c['neighbors']), 'weights': c['weight_func'], 'p': c['dist_power']}


_PENALTY = Parameter.continuous('penalty', 1e-10, 1.0, transform='log10')
_COST = Parameter.continuous('cost', 2.0 ** -10, 2.0 ** 5, transform='log2')
_MARGIN = Parameter.continuous('margin', 0.0, 0.2)


class ModelFactory:
    """
    Registry of the nonlinear regression families available for tuning.
    """

    FAMILIES: Dict[str, ModelFamily] = {
        # Single-layer feed-forward network
        'neural_net': ModelFamily(
            name='neural_net',
            estimator=MLPRegressor,
            parameter_space=ParameterSpace([
                Parameter.integer('hidden_units', 1, 10),
                _PENALTY,
                Parameter.integer('epochs', 10, 1000),
            ]),
            translate=_neural_net,
            fixed={'solver': 'lbfgs'},
        ),
        # Additive regression splines
        'spline': ModelFamily(
            name='spline',
            estimator=spline_regressor,
            parameter_space=ParameterSpace([
                Parameter.integer('n_knots', 2, 10),
                Parameter.integer('degree', 1, 3),
                _PENALTY,
            ]),
            translate=_spline,
        ),
        # Support vector machines
        'svm_rbf': ModelFamily(
            name='svm_rbf',
            estimator=SVR,
            parameter_space=ParameterSpace([
                _COST,
                Parameter.continuous('rbf_sigma', 1e-10, 1.0, transform='log10'),
                _MARGIN,
            ]),
            translate=_svm_rbf,
            fixed={'kernel': 'rbf'},
        ),
        'svm_poly': ModelFamily(
            name='svm_poly',
            estimator=SVR,
            parameter_space=ParameterSpace([
                _COST,
                Parameter.integer('degree', 1, 3),
                Parameter.continuous('scale_factor', 1e-10, 0.1, transform='log10'),
                _MARGIN,
            ]),
            translate=_svm_poly,
            fixed={'kernel': 'poly', 'coef0': 1.0},
        ),
        # Nearest neighbors
        'knn': ModelFamily(
            name='knn',
            estimator=KNeighborsRegressor,
            parameter_space=ParameterSpace([
                Parameter.integer('neighbors', 1, 15),
                Parameter.categorical('weight_func', ['uniform', 'distance']),
                Parameter.continuous('dist_power', 1.0, 2.0),
            ]),
            translate=_knn,
        ),
    }

    @classmethod
    def get(cls, name: str, parameter_space: Optional[ParameterSpace] = None) -> ModelFamily:
        """
        Return a model family, optionally with overridden tuning ranges.
        """
        if name not in cls.FAMILIES:
            raise InvalidArgument(f"Unknown model family: {name}. Available: {cls.get_available_families()}")
        family = cls.FAMILIES[name]
        if parameter_space is not None:
            family = family.with_space(parameter_space)
        return family

    @classmethod
    def get_available_families(cls) -> List[str]:
        return list(cls.FAMILIES.keys())

    @staticmethod
    def _filter_params(estimator: Callable[..., Any], params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Remove parameters from `params` that are not accepted by the `estimator` constructor.
        """
        target = estimator.__init__ if inspect.isclass(estimator) else estimator
        sig = inspect.signature(target)

        valid_keys = [
            p.name for p in sig.parameters.values()
            if p.kind in (p.POSITIONAL_OR_KEYWORD, p.KEYWORD_ONLY)
        ]

        # Always allow **kwargs if the estimator supports it
        has_kwargs = any(p.kind == p.VAR_KEYWORD for p in sig.parameters.values())

        if has_kwargs:
            return params

        return {k: v for k, v in params.items() if k in valid_keys}
