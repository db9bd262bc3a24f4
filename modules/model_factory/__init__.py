"""
Model Factory Module
====================

Responsibility:
- Tagged model-family records (estimator builder + default tuning space).
- Translation of tuning parameter names onto scikit-learn constructor arguments.
"""

from .model_factory import ModelFamily, ModelFactory

__all__ = ['ModelFamily', 'ModelFactory']
