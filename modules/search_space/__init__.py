"""
Search Space Module
===================

Responsibility:
- Immutable, hashable hyperparameter configurations.
- Typed parameter declarations (continuous, integer, categorical) with transforms.
- Random / Latin hypercube sampling and regular grid expansion.
- Numeric encoding of configurations for surrogate modelling.
"""

from .configuration import Configuration
from .parameter_space import Parameter, ParameterSpace

__all__ = ['Configuration', 'Parameter', 'ParameterSpace']
