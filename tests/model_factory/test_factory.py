import numpy as np
import pytest
from sklearn.neighbors import KNeighborsRegressor
from sklearn.neural_network import MLPRegressor
from sklearn.pipeline import Pipeline
from sklearn.svm import SVR

from modules.model_factory import ModelFactory
from modules.search_space import Configuration, Parameter, ParameterSpace
from utils.exceptions import InvalidArgument


def test_get_available_families():
    families = ModelFactory.get_available_families()
    assert set(families) == {'neural_net', 'spline', 'svm_rbf', 'svm_poly', 'knn'}


def test_unknown_family_error():
    with pytest.raises(InvalidArgument, match="Unknown model family"):
        ModelFactory.get('gradient_boosting')


def test_build_neural_net_with_seed():
    family = ModelFactory.get('neural_net')
    model = family.build(Configuration({'hidden_units': 4, 'penalty': 0.01, 'epochs': 200}), seed=7)
    assert isinstance(model, MLPRegressor)
    assert model.hidden_layer_sizes == (4,)
    assert model.alpha == 0.01
    assert model.max_iter == 200
    assert model.solver == 'lbfgs'
    assert model.random_state == 7


def test_build_svm_families():
    rbf = ModelFactory.get('svm_rbf').build(Configuration({'cost': 2.0, 'rbf_sigma': 0.1, 'margin': 0.05}))
    assert isinstance(rbf, SVR)
    assert (rbf.kernel, rbf.C, rbf.gamma, rbf.epsilon) == ('rbf', 2.0, 0.1, 0.05)

    poly = ModelFactory.get('svm_poly').build(
        Configuration({'cost': 1.0, 'degree': 2, 'scale_factor': 0.01, 'margin': 0.1}))
    assert (poly.kernel, poly.degree, poly.gamma, poly.coef0) == ('poly', 2, 0.01, 1.0)


def test_parameter_filtering():
    """KNN does not take random_state; a seed must not break construction."""
    model = ModelFactory.get('knn').build(
        Configuration({'neighbors': 3, 'weight_func': 'distance', 'dist_power': 1.0}), seed=123)
    assert isinstance(model, KNeighborsRegressor)
    assert model.n_neighbors == 3
    assert not hasattr(model, 'random_state')


def test_spline_family_fits():
    model = ModelFactory.get('spline').build(Configuration({'n_knots': 8, 'degree': 3, 'penalty': 1e-6}))
    assert isinstance(model, Pipeline)
    X = np.linspace(0, 1, 40).reshape(-1, 1)
    y = np.sin(4 * X).ravel()
    model.fit(X, y)
    assert np.abs(model.predict(X) - y).max() < 0.1


def test_default_spaces_are_legal():
    for name in ModelFactory.get_available_families():
        family = ModelFactory.get(name)
        for configuration in family.parameter_space.sample(3, seed=0):
            assert family.parameter_space.validate(configuration) == []


def test_parameter_space_override():
    narrow = ParameterSpace([
        Parameter.integer('neighbors', 3, 7),
        Parameter.categorical('weight_func', ['uniform']),
        Parameter.continuous('dist_power', 1.0, 1.5),
    ])
    family = ModelFactory.get('knn', narrow)
    assert family.parameter_space is narrow
    assert ModelFactory.get('knn').parameter_space is not narrow


def test_parameter_space_override_must_match_names():
    with pytest.raises(InvalidArgument, match="tunes"):
        ModelFactory.get('knn', ParameterSpace([Parameter.integer('neighbors', 1, 5)]))
