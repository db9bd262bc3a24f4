"""
Logging Configuration Module
============================

Console (colorama) and rotating file logging for tuning runs.
"""

from .logging_config import LoggingConfigurator

__all__ = ['LoggingConfigurator']
