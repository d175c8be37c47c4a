"""
Exceptions raised by the isoforest package.

Every error derives from IsolationForestError and from ValueError, so callers
can catch either the package-specific type or the builtin one.
"""


class IsolationForestError(ValueError):
    """Base class for all isoforest errors."""


class InvalidConfigurationError(IsolationForestError):
    """Raised when a forest is constructed or fitted with invalid parameters."""


class EmptyDatasetError(IsolationForestError):
    """Raised when fit receives a dataset without rows."""


class DimensionMismatchError(IsolationForestError):
    """Raised when input has the wrong shape or a feature count unseen in fit."""


class NonFiniteValueError(IsolationForestError):
    """Raised when input contains NaN or infinite feature values."""


class NotFittedError(IsolationForestError):
    """Raised when an operation needs a fitted forest."""
