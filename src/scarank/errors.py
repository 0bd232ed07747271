"""Errors raised by scarank.

Every error raised by the library derives from `ScarankError` and carries an
`ErrorKind`. Argument errors are also `ValueError` and I/O errors are also
`OSError`, such that generic handlers keep working.

.. currentmodule:: scarank.errors

.. autosummary::
   :toctree:
   :nosignatures:

   ErrorKind
   ScarankError
   InvalidArgumentError
   UnsupportedOperationError
   IoFailureError
   NumericInstabilityError
   InternalError
"""

from enum import Enum


class ErrorKind(Enum):
    INVALID_ARGUMENT = "invalid argument"
    UNSUPPORTED_OPERATION = "unsupported operation"
    IO_FAILURE = "I/O failure"
    NUMERIC_INSTABILITY = "numeric instability"
    INTERNAL = "internal error"


class ScarankError(Exception):
    """Base class of all scarank errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __str__(self):
        msg = super().__str__()
        return f"[{self.kind.value}] {msg}" if msg else self.kind.value


class InvalidArgumentError(ScarankError, ValueError):
    """Bad configuration, or out-of-range sample window or trace bound."""

    kind = ErrorKind.INVALID_ARGUMENT


class UnsupportedOperationError(ScarankError):
    """The dataset or the power model cannot be handled (e.g. non-fixed key)."""

    kind = ErrorKind.UNSUPPORTED_OPERATION


class IoFailureError(ScarankError, OSError):
    """Access to the trace store or to the power model failed."""

    kind = ErrorKind.IO_FAILURE


class NumericInstabilityError(ScarankError):
    """A covariance matrix is not (numerically) positive-definite."""

    kind = ErrorKind.NUMERIC_INSTABILITY


class InternalError(ScarankError):
    """An internal invariant does not hold."""

    kind = ErrorKind.INTERNAL
