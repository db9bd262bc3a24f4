import math

import numpy as np
import pytest

from modules.search_space import Configuration, Parameter, ParameterSpace
from utils import constants
from utils.exceptions import InvalidArgument


@pytest.fixture
def mixed_space():
    return ParameterSpace([
        Parameter.continuous('cost', 2.0 ** -10, 2.0 ** 5, transform='log2'),
        Parameter.integer('neighbors', 1, 15),
        Parameter.categorical('weight_func', ['uniform', 'distance']),
    ])


@pytest.fixture
def discrete_space():
    return ParameterSpace([Parameter.integer('x', 1, 5)])


class TestParameter:
    def test_rejects_bad_bounds(self):
        with pytest.raises(InvalidArgument):
            Parameter.continuous('c', 1.0, 1.0)
        with pytest.raises(InvalidArgument):
            Parameter.integer('n', 5, 1)
        with pytest.raises(InvalidArgument):
            Parameter.integer('n', 1.5, 3)

    def test_log_transform_needs_positive_lower(self):
        with pytest.raises(InvalidArgument, match="positive lower bound"):
            Parameter.continuous('penalty', 0.0, 1.0, transform='log10')

    def test_unknown_transform_and_kind(self):
        with pytest.raises(InvalidArgument):
            Parameter.continuous('c', 1.0, 2.0, transform='sqrt')
        with pytest.raises(InvalidArgument):
            Parameter('c', 'ordinal', 0, 1)

    def test_categorical_needs_levels(self):
        with pytest.raises(InvalidArgument):
            Parameter.categorical('w', [])

    def test_unit_mapping_uses_transform(self):
        p = Parameter.continuous('penalty', 1e-10, 1.0, transform='log10')
        assert p.to_unit(1e-5) == pytest.approx(0.5)
        assert p.from_unit(0.5) == pytest.approx(1e-5)
        assert p.from_unit(0.0) == pytest.approx(1e-10)
        assert p.from_unit(1.0) == pytest.approx(1.0)

    def test_integer_from_unit_covers_every_value(self):
        p = Parameter.integer('x', 1, 5)
        values = {p.from_unit(u) for u in np.linspace(0, 1, 101)}
        assert values == {1, 2, 3, 4, 5}

    def test_check(self):
        p = Parameter.integer('x', 1, 5)
        assert p.check(3) is None
        assert p.check(3.0) is None
        assert "not an integer" in p.check(2.5)
        assert "outside" in p.check(6)
        assert "not numeric" in p.check("3")
        assert "not finite" in p.check(math.nan)

    def test_regular_levels(self):
        assert Parameter.continuous('m', 0.0, 0.2).regular(3) == pytest.approx([0.0, 0.1, 0.2])
        assert Parameter.integer('d', 1, 3).regular(5) == [1, 2, 3]
        cost = Parameter.continuous('cost', 1.0, 100.0, transform='log10').regular(3)
        assert cost == pytest.approx([1.0, 10.0, 100.0])

    def test_from_dict_round_trip(self):
        spec = {'type': 'continuous', 'range': [1e-10, 1.0], 'transform': 'log10'}
        p = Parameter.from_dict('penalty', spec)
        assert p.kind == 'continuous'
        assert Parameter.from_dict('penalty', p.to_dict()) == p

    def test_from_dict_requires_range(self):
        with pytest.raises(InvalidArgument, match="range"):
            Parameter.from_dict('x', {'type': 'integer'})


class TestParameterSpace:
    def test_rejects_empty_and_duplicates(self):
        with pytest.raises(InvalidArgument):
            ParameterSpace([])
        with pytest.raises(InvalidArgument, match="Duplicate"):
            ParameterSpace([Parameter.integer('x', 1, 2), Parameter.integer('x', 1, 3)])

    def test_dimension_counts_one_hot_columns(self, mixed_space):
        assert mixed_space.dimension == 4
        assert mixed_space.names == ['cost', 'neighbors', 'weight_func']

    def test_cardinality(self, mixed_space, discrete_space):
        assert mixed_space.cardinality() is None
        assert discrete_space.cardinality() == 5

    def test_validate(self, mixed_space):
        ok = Configuration({'cost': 1.0, 'neighbors': 3, 'weight_func': 'uniform'})
        assert mixed_space.validate(ok) == []
        problems = mixed_space.validate(Configuration({'cost': 1.0, 'weight_func': 'cosine'}))
        assert any("missing" in p for p in problems)
        assert any("cosine" in p for p in problems)

    @pytest.mark.parametrize("strategy", constants.SAMPLING_STRATEGIES)
    def test_sample_is_legal_distinct_and_seeded(self, mixed_space, strategy):
        first = mixed_space.sample(20, strategy, seed=7)
        second = mixed_space.sample(20, strategy, seed=7)
        assert first == second
        assert len(set(first)) == 20
        assert all(mixed_space.validate(c) == [] for c in first)

    def test_sample_is_capped_by_cardinality(self, discrete_space):
        sample = discrete_space.sample(10, seed=1)
        assert sorted(c['x'] for c in sample) == [1, 2, 3, 4, 5]

    def test_sample_rejects_unknown_strategy(self, mixed_space):
        with pytest.raises(InvalidArgument, match="sampling strategy"):
            mixed_space.sample(3, 'sobol', seed=0)

    def test_latin_hypercube_spreads_continuous_values(self):
        space = ParameterSpace([Parameter.continuous('margin', 0.0, 1.0)])
        values = sorted(c['margin'] for c in space.sample(10, constants.SAMPLING_LATIN_HYPERCUBE, seed=3))
        # one draw per stratum
        assert [int(v * 10) for v in values] == list(range(10))

    def test_grid(self, mixed_space):
        grid = mixed_space.grid(3)
        assert len(grid) == 3 * 3 * 2
        assert len(set(grid)) == len(grid)

    def test_enumerate_requires_discrete_space(self, mixed_space, discrete_space):
        assert [c['x'] for c in discrete_space.enumerate()] == [1, 2, 3, 4, 5]
        with pytest.raises(InvalidArgument):
            mixed_space.enumerate()

    def test_candidate_pool(self, mixed_space, discrete_space):
        assert len(discrete_space.candidate_pool(5000, seed=0)) == 5
        pool = mixed_space.candidate_pool(50, seed=0)
        assert 0 < len(pool) <= 50
        assert len(set(pool)) == len(pool)

    def test_encode(self, mixed_space):
        row = mixed_space.encode(Configuration({'cost': 2.0 ** -10, 'neighbors': 15, 'weight_func': 'distance'}))
        assert row.tolist() == pytest.approx([0.0, 1.0, 0.0, 1.0])
        assert mixed_space.encode_many([]).shape == (0, 4)

    def test_from_dict(self):
        space = ParameterSpace.from_dict({
            'x': {'type': 'integer', 'range': [1, 5]},
            'w': {'type': 'categorical', 'values': ['a', 'b']},
        })
        assert space.names == ['x', 'w']
        assert ParameterSpace.from_dict(space.to_dict()).names == ['x', 'w']
        with pytest.raises(InvalidArgument):
            ParameterSpace.from_dict({})
