"""
Exceptions raised by covariance functions and their delegates.

All errors are deterministic given the inputs and are raised where they are
detected. Each class also derives from the builtin it refines, so callers that
only know about ValueError / NotImplementedError still catch them.
"""

from __future__ import annotations


class KernelError(Exception):
    """Base class for covariance function errors."""


class InvalidParameterError(KernelError, ValueError):
    """A hyperparameter value violates its domain (e.g. non-positive variance)."""


class DimensionError(KernelError, ValueError):
    """A packed parameter vector cannot be unpacked into a valid state."""


class DimensionMismatch(KernelError, ValueError):
    """Input matrices or length-scales disagree on the input dimension."""


class UnsupportedCombinationError(KernelError, NotImplementedError):
    """The requested operation is not defined for this configuration."""
