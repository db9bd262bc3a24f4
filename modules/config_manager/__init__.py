"""
Configuration Manager Module
============================

Responsibility:
- Centralized loading and validation of the tuning-run JSON configuration.
- Enforcement of schema constraints and logical rules (folds, budgets, spaces).
- Resource usage guardrails (grid size, memory).
- Deterministic seed propagation for reproducibility.
"""

from .config_manager import ConfigurationManager

__all__ = ['ConfigurationManager']
