"""Exceptions raised by the radio source estimators.

Invalid arguments (bad readings, negative linear power, wrong dimensions) are
reported with the built-in ``ValueError`` / ``TypeError``. The classes below
cover the estimator state machine and numerical failures of a fit.
"""


class RadioSourceError(Exception):
    """Base class for radio source estimation errors."""


class LockedError(RadioSourceError):
    """Raised when an estimator is modified or re-run while an estimation is in progress."""

    def __init__(self, message: str = "Estimator is locked while an estimation is in progress"):
        super().__init__(message)


class NotReadyError(RadioSourceError):
    """Raised when estimate() is called on an estimator that is not ready."""

    def __init__(self, message: str = "Estimator is not ready"):
        super().__init__(message)


class RadioSourceEstimationError(RadioSourceError):
    """Raised when a fit fails numerically (singular or rank-deficient problem)."""


class PropagationSingularityError(RadioSourceEstimationError):
    """Raised when a reader coincides with the hypothesized emitter position.

    The log-distance model is undefined at zero distance, so this is treated
    as a hard failure rather than a recoverable numeric case.
    """
