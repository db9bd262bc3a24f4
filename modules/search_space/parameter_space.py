import logging
import math
import numbers
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.stats import qmc
from sklearn.model_selection import ParameterGrid

from modules.search_space.configuration import Configuration
from utils import constants
from utils.exceptions import InvalidArgument

logger = logging.getLogger(__name__)

CONTINUOUS = "continuous"
INTEGER = "integer"
CATEGORICAL = "categorical"
KINDS = (CONTINUOUS, INTEGER, CATEGORICAL)

# forward / inverse pairs applied before scaling into the unit interval
TRANSFORMS = {
    'log10': (np.log10, lambda t: 10.0 ** t),
    'log2': (np.log2, lambda t: 2.0 ** t),
}

SeedLike = Union[None, int, np.random.Generator]


def _as_rng(seed: SeedLike) -> np.random.Generator:
    if isinstance(seed, np.random.Generator):
        return seed
    return np.random.default_rng(seed)


@dataclass(frozen=True)
class Parameter:
    """
    A single tunable parameter.

    Numeric bounds are given in natural units; ``transform`` only changes how
    values are spread when sampling, gridding and encoding.
    """

    name: str
    kind: str
    lower: Optional[float] = None
    upper: Optional[float] = None
    levels: Tuple[Any, ...] = ()
    transform: Optional[str] = None

    def __post_init__(self):
        if not self.name:
            raise InvalidArgument("Parameter name must be a non-empty string.")
        if self.kind not in KINDS:
            raise InvalidArgument(f"Parameter '{self.name}': unknown type '{self.kind}'. Expected one of {KINDS}.")

        if self.kind == CATEGORICAL:
            if not self.levels:
                raise InvalidArgument(f"Categorical parameter '{self.name}' needs at least one level.")
            if self.transform is not None:
                raise InvalidArgument(f"Categorical parameter '{self.name}' cannot declare a transform.")
            object.__setattr__(self, 'levels', tuple(self.levels))
            return

        if self.lower is None or self.upper is None:
            raise InvalidArgument(f"Numeric parameter '{self.name}' needs both lower and upper bounds.")
        if self.kind == CONTINUOUS and not self.lower < self.upper:
            raise InvalidArgument(f"Parameter '{self.name}': lower ({self.lower}) must be < upper ({self.upper}).")
        if self.kind == INTEGER:
            if int(self.lower) != self.lower or int(self.upper) != self.upper:
                raise InvalidArgument(f"Integer parameter '{self.name}' needs integer bounds.")
            if self.lower > self.upper:
                raise InvalidArgument(f"Parameter '{self.name}': lower ({self.lower}) must be <= upper ({self.upper}).")
            object.__setattr__(self, 'lower', int(self.lower))
            object.__setattr__(self, 'upper', int(self.upper))
        if self.transform is not None:
            if self.transform not in TRANSFORMS:
                raise InvalidArgument(f"Parameter '{self.name}': unknown transform '{self.transform}'.")
            if self.lower <= 0:
                raise InvalidArgument(f"Parameter '{self.name}': {self.transform} transform needs a positive lower bound.")

    # --- Constructors ---

    @classmethod
    def continuous(cls, name: str, lower: float, upper: float, transform: Optional[str] = None) -> 'Parameter':
        return cls(name, CONTINUOUS, float(lower), float(upper), transform=transform)

    @classmethod
    def integer(cls, name: str, lower: int, upper: int, transform: Optional[str] = None) -> 'Parameter':
        return cls(name, INTEGER, lower, upper, transform=transform)

    @classmethod
    def categorical(cls, name: str, levels: Sequence[Any]) -> 'Parameter':
        return cls(name, CATEGORICAL, levels=tuple(levels))

    @classmethod
    def from_dict(cls, name: str, spec: Dict[str, Any]) -> 'Parameter':
        """Build from the config form ``{"type": ..., "range": [lo, hi], "values": [...], "transform": ...}``."""
        kind = spec.get('type')
        if kind == CATEGORICAL:
            return cls.categorical(name, spec.get('values', []))
        bounds = spec.get('range')
        if not bounds or len(bounds) != 2:
            raise InvalidArgument(f"Parameter '{name}' needs a two-element 'range'.")
        if kind == INTEGER:
            return cls.integer(name, bounds[0], bounds[1], spec.get('transform'))
        if kind == CONTINUOUS:
            return cls.continuous(name, bounds[0], bounds[1], spec.get('transform'))
        raise InvalidArgument(f"Parameter '{name}': unknown type '{kind}'.")

    def to_dict(self) -> Dict[str, Any]:
        if self.kind == CATEGORICAL:
            return {'type': CATEGORICAL, 'values': list(self.levels)}
        out = {'type': self.kind, 'range': [self.lower, self.upper]}
        if self.transform:
            out['transform'] = self.transform
        return out

    # --- Geometry ---

    @property
    def is_numeric(self) -> bool:
        return self.kind != CATEGORICAL

    @property
    def width(self) -> int:
        """Number of encoded columns."""
        return len(self.levels) if self.kind == CATEGORICAL else 1

    @property
    def n_values(self) -> Optional[int]:
        if self.kind == CATEGORICAL:
            return len(self.levels)
        if self.kind == INTEGER:
            return self.upper - self.lower + 1
        return None

    def _forward(self, value: float) -> float:
        if self.transform is None:
            return float(value)
        return float(TRANSFORMS[self.transform][0](value))

    def _inverse(self, value: float) -> float:
        if self.transform is None:
            return float(value)
        return float(TRANSFORMS[self.transform][1](value))

    def to_unit(self, value: Any) -> float:
        """Map a numeric value into [0, 1] in transformed space."""
        lo, hi = self._forward(self.lower), self._forward(self.upper)
        if hi == lo:
            return 0.0
        return (self._forward(value) - lo) / (hi - lo)

    def from_unit(self, u: float) -> Any:
        """Map a point of the unit interval back onto a legal value."""
        u = min(max(float(u), 0.0), 1.0)
        if self.kind == CATEGORICAL:
            idx = min(int(math.floor(u * len(self.levels))), len(self.levels) - 1)
            return self.levels[idx]
        if self.kind == INTEGER and self.transform is None:
            n = self.n_values
            return self.lower + min(int(math.floor(u * n)), n - 1)

        lo, hi = self._forward(self.lower), self._forward(self.upper)
        value = self._inverse(lo + u * (hi - lo))
        if self.kind == INTEGER:
            return int(min(max(round(value), self.lower), self.upper))
        return float(min(max(value, self.lower), self.upper))

    def encode(self, value: Any) -> List[float]:
        if self.kind == CATEGORICAL:
            return [1.0 if value == level else 0.0 for level in self.levels]
        return [self.to_unit(value)]

    def regular(self, levels: int) -> List[Any]:
        """Evenly spaced values (in transformed space) for regular grids."""
        if self.kind == CATEGORICAL:
            return list(self.levels)
        lo, hi = self._forward(self.lower), self._forward(self.upper)
        points = [self._inverse(t) for t in np.linspace(lo, hi, levels)]
        if self.kind == INTEGER:
            values = [int(min(max(round(p), self.lower), self.upper)) for p in points]
            return list(dict.fromkeys(values))
        return [float(p) for p in points]

    def all_values(self) -> List[Any]:
        if self.kind == CATEGORICAL:
            return list(self.levels)
        if self.kind == INTEGER:
            return list(range(self.lower, self.upper + 1))
        raise InvalidArgument(f"Continuous parameter '{self.name}' has no finite value set.")

    def check(self, value: Any) -> Optional[str]:
        """Return a description of why ``value`` is illegal, or None."""
        if self.kind == CATEGORICAL:
            return None if value in self.levels else f"{self.name}={value!r} is not one of {list(self.levels)}"
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            return f"{self.name}={value!r} is not numeric"
        if not math.isfinite(value):
            return f"{self.name}={value!r} is not finite"
        if self.kind == INTEGER and not float(value).is_integer():
            return f"{self.name}={value!r} is not an integer"
        tol = 1e-12 * max(1.0, abs(self.upper - self.lower))
        if value < self.lower - tol or value > self.upper + tol:
            return f"{self.name}={value!r} is outside [{self.lower}, {self.upper}]"
        return None


class ParameterSpace:
    """
    Ordered collection of tunable parameters for one model family.

    Supports validation of configurations, space-filling sampling, regular
    grids and the vector encoding used by the Bayesian surrogate.
    """

    def __init__(self, parameters: Iterable[Parameter]):
        self.parameters: List[Parameter] = list(parameters)
        if not self.parameters:
            raise InvalidArgument("Parameter space cannot be empty.")
        names = [p.name for p in self.parameters]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise InvalidArgument(f"Duplicate parameter names: {duplicates}")
        self._by_name = {p.name: p for p in self.parameters}

    @classmethod
    def from_dict(cls, spec: Dict[str, Dict[str, Any]]) -> 'ParameterSpace':
        if not spec:
            raise InvalidArgument("Parameter space cannot be empty.")
        return cls(Parameter.from_dict(name, p) for name, p in spec.items())

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {p.name: p.to_dict() for p in self.parameters}

    def __iter__(self) -> Iterator[Parameter]:
        return iter(self.parameters)

    def __len__(self) -> int:
        return len(self.parameters)

    def __getitem__(self, name: str) -> Parameter:
        return self._by_name[name]

    def __contains__(self, name) -> bool:
        return name in self._by_name

    def __repr__(self):
        return f"ParameterSpace({[p.name for p in self.parameters]})"

    @property
    def names(self) -> List[str]:
        return [p.name for p in self.parameters]

    @property
    def dimension(self) -> int:
        return sum(p.width for p in self.parameters)

    def cardinality(self) -> Optional[int]:
        """Number of distinct configurations, or None when any parameter is continuous."""
        total = 1
        for p in self.parameters:
            if p.n_values is None:
                return None
            total *= p.n_values
        return total

    def validate(self, configuration: Configuration) -> List[str]:
        """List every problem with ``configuration``; empty when it is legal."""
        problems = []
        missing = [n for n in self.names if n not in configuration]
        if missing:
            problems.append(f"missing parameters {missing}")
        for p in self.parameters:
            if p.name in configuration:
                issue = p.check(configuration[p.name])
                if issue:
                    problems.append(issue)
        return problems

    # --- Candidate generation ---

    def _from_unit_row(self, row: Sequence[float]) -> Configuration:
        return Configuration({p.name: p.from_unit(u) for p, u in zip(self.parameters, row)})

    def _unit_sample(self, n: int, strategy: str, rng: np.random.Generator) -> np.ndarray:
        if strategy == constants.SAMPLING_LATIN_HYPERCUBE:
            sampler = qmc.LatinHypercube(d=len(self.parameters), seed=int(rng.integers(2**31 - 1)))
            return sampler.random(n)
        if strategy == constants.SAMPLING_RANDOM:
            return rng.random((n, len(self.parameters)))
        raise InvalidArgument(f"Unknown sampling strategy '{strategy}'. Expected one of {constants.SAMPLING_STRATEGIES}.")

    def sample(self, n: int, strategy: str = constants.SAMPLING_LATIN_HYPERCUBE,
               seed: SeedLike = None, max_rounds: int = 20) -> List[Configuration]:
        """
        Draw ``n`` distinct configurations.

        The first draw uses ``strategy``; collisions (integer/categorical
        rounding) are topped up with random draws. Fewer than ``n`` are
        returned only when the space holds fewer distinct configurations.
        """
        if n < 1:
            raise InvalidArgument(f"Sample size must be >= 1, got {n}.")
        rng = _as_rng(seed)
        limit = self.cardinality()
        target = n if limit is None else min(n, limit)

        chosen: Dict[Configuration, None] = {}
        for row in self._unit_sample(n, strategy, rng):
            chosen.setdefault(self._from_unit_row(row), None)

        rounds = 0
        while len(chosen) < target and rounds < max_rounds:
            for row in self._unit_sample(target - len(chosen), constants.SAMPLING_RANDOM, rng):
                chosen.setdefault(self._from_unit_row(row), None)
            rounds += 1

        configs = list(chosen)[:target]
        if len(configs) < n:
            logger.warning(f"Requested {n} distinct configurations but only {len(configs)} could be drawn.")
        return configs

    def grid(self, levels: int = 3) -> List[Configuration]:
        """Regular grid: ``levels`` points per numeric parameter, every categorical level."""
        if levels < 1:
            raise InvalidArgument(f"Grid levels must be >= 1, got {levels}.")
        axes = {p.name: p.regular(levels) for p in self.parameters}
        return [Configuration(c) for c in ParameterGrid(axes)]

    def enumerate(self) -> List[Configuration]:
        """Every configuration of a fully discrete space."""
        axes = {p.name: p.all_values() for p in self.parameters}
        return [Configuration(c) for c in ParameterGrid(axes)]

    def candidate_pool(self, size: int, seed: SeedLike = None) -> List[Configuration]:
        """Candidates for acquisition search: the whole space when small enough, else a random draw."""
        limit = self.cardinality()
        if limit is not None and limit <= size:
            return self.enumerate()
        return self.sample(size, constants.SAMPLING_RANDOM, seed=seed, max_rounds=1)

    # --- Encoding ---

    def encode(self, configuration: Configuration) -> np.ndarray:
        row: List[float] = []
        for p in self.parameters:
            row.extend(p.encode(configuration[p.name]))
        return np.asarray(row, dtype=float)

    def encode_many(self, configurations: Sequence[Configuration]) -> np.ndarray:
        if not configurations:
            return np.empty((0, self.dimension))
        return np.vstack([self.encode(c) for c in configurations])
