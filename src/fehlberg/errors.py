# fehlberg/src/fehlberg/errors.py
"""Error types and standardized raise helpers for fehlberg.

This module centralizes:
- explicit error classes with actionable messages, and
- small helpers that build uniform precondition messages.

Design intent:
- precondition violations fail fast at the call that received the bad value
- numerical breakdowns (non-finite error estimates, runaway rejection) surface
  as dedicated exceptions instead of NaN/Inf results
"""

from __future__ import annotations


class FehlbergError(Exception):
    """Base exception for fehlberg errors."""


class PreconditionError(FehlbergError, ValueError):
    """Raised when a step argument violates its documented precondition."""


class BufferShapeError(PreconditionError):
    """Raised when a stage buffer or destination does not match the state shape."""


class NonFiniteErrorEstimate(FehlbergError, FloatingPointError):
    """Raised when the error metric returns NaN or an infinite value."""


class ConvergenceError(FehlbergError, RuntimeError):
    """Raised when the rejection loop fails to reach the tolerance."""


class StepSizeUnderflowError(ConvergenceError):
    """Raised when a rejected step shrinks dt to min_dt or below."""


class UnknownMetricError(FehlbergError, KeyError):
    """Raised when an error metric name is not registered."""

    def __str__(self) -> str:
        """Return the message without KeyError's repr quoting."""
        return str(self.args[0]) if self.args else ""


def raise_precondition(*, name: str, expected: str, got: object) -> None:
    """Raise a standardized PreconditionError.

    Args:
        name: Name of the offending argument.
        expected: Human-readable description of the valid range.
        got: Actual value received.

    Raises:
        PreconditionError: Always.
    """
    msg = f"{name} is invalid. Expected {expected}. Got: {got!r}."
    raise PreconditionError(msg)


def raise_buffer_shape_error(*, name: str, expected: object, got: object) -> None:
    """Raise a standardized BufferShapeError.

    Args:
        name: Name of the buffer slot or destination with the wrong shape.
        expected: Shape of the state.
        got: Observed shape.

    Raises:
        BufferShapeError: Always.
    """
    msg = (
        f"{name} has shape {got!r} but the state has shape {expected!r}. "
        "Allocate stage buffers and destinations with make_stage_buffer(x) / "
        "numpy.empty_like(x)."
    )
    raise BufferShapeError(msg)
