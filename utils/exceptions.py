"""
Custom exception hierarchy for the nonlinear regression tuning engine.
"""

class TuningException(Exception):
    """Base exception for all system errors."""
    pass

class ConfigurationError(TuningException):
    """Configuration validation failed."""
    pass

class InvalidArgument(TuningException, ValueError):
    """A driver, fold provider or parameter space received a malformed argument."""
    pass

class EvaluationFailed(TuningException):
    """
    A single configuration could not be scored.

    Non-fatal: search drivers record it as a failed Trial and carry on.
    """

    def __init__(self, configuration, cause):
        self.configuration = configuration
        self.cause = cause
        super().__init__(f"Evaluation failed for {dict(configuration)}: {cause}")

    def __reduce__(self):
        return (EvaluationFailed, (self.configuration, self.cause))

class SurrogateFitFailed(TuningException):
    """The Bayesian surrogate could not be fit for the current round."""
    pass
