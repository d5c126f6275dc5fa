# fehlberg/src/fehlberg/stages.py
"""Fehlberg stage evaluation for one trial step of RKF45.

Given ``dx/dt = f(x, t)``, a base state ``x`` at time ``t`` and a trial step
``dt``, the six Fehlberg stages k1..k6 are evaluated and combined into two
increment estimates of different order:

    order4 = k1*(dt*25/216) + k3*(dt*1408/2565) + k4*(dt*2197/4104) - k5*(dt/5)
    order5 = k1*(dt*16/135) + k3*(dt*6656/12825) + k4*(dt*28561/56430)
             - k5*(dt*9/50) + k6*(dt*2/55)

k2 only feeds the later stages. Reference: E. Fehlberg, Computing 6, 61 (1970).

Two forms are provided:
    - fehlberg_increments: allocating. Works for any value supporting +, - and
      scalar * (Python floats, NumPy arrays). x is never modified.
    - fehlberg_increments_into: in-place. Takes an in-place derivative
      ``f(x, t, out)`` and a StageBuffer, writes the estimates into
      caller-owned destinations, and allocates no state-sized arrays.

Floating point arithmetic is not associative, so both forms take their
scalar coefficients from fehlberg_weights and apply the terms in the same
order. For NumPy states the two forms give bit-identical results.

Performance hygiene (in-place form):
    - The stage argument is assembled in buffer.tmp.
    - Each product term of stage i is staged in the not-yet-computed slot k_i.
    - The final estimates are assembled in the destinations with buffer.tmp
      as product scratch.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, fields
from typing import Any

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .errors import PreconditionError, raise_buffer_shape_error

# =============================================================================
# Errors / messages
# =============================================================================

_ALIASED_DESTINATION_ERROR_MSG = (
    "{name} shares memory with the state or a stage buffer slot; "
    "destinations must be separate arrays"
)
_SAME_DESTINATION_ERROR_MSG = "out4 and out5 must be different arrays"
_NON_FLOAT_SLOT_ERROR_MSG = (
    "{name} has dtype {dtype}; stage slots and destinations need a floating "
    "or complex dtype (make_stage_buffer promotes integer states to float64)"
)


# =============================================================================
# Type aliases
# =============================================================================

FloatArray = NDArray[np.floating[Any]]
DerivativeFunction = Callable[[Any, float], Any]
InplaceDerivativeFunction = Callable[[FloatArray, float, FloatArray], object]


# =============================================================================
# Tableau
# =============================================================================


@dataclass(slots=True, frozen=True)
class FehlbergWeights:
    """Scalar stage times and dt-scaled tableau weights for one trial step.

    Signs are not stored: the stage evaluators add or subtract each term as the
    tableau prescribes.

    Attributes:
        t2..t6: Evaluation times of stages 2-6 (stage 1 runs at t).
        aij: Weight of stage j in the state argument of stage i.
        b4j: Weight of stage j in the 4th-order estimate.
        b5j: Weight of stage j in the 5th-order estimate.
    """

    t2: float
    t3: float
    t4: float
    t5: float
    t6: float
    a21: float
    a31: float
    a32: float
    a41: float
    a42: float
    a43: float
    a51: float
    a52: float
    a53: float
    a54: float
    a61: float
    a62: float
    a63: float
    a64: float
    a65: float
    b41: float
    b43: float
    b44: float
    b45: float
    b51: float
    b53: float
    b54: float
    b55: float
    b56: float


def fehlberg_weights(t: float, dt: float) -> FehlbergWeights:
    """Evaluate the Fehlberg tableau for a trial step.

    Each expression is evaluated left to right exactly as written
    (``dt * 1932 / 2197`` rather than ``dt * (1932 / 2197)``).

    Args:
        t: Time at the start of the step.
        dt: Trial step size.

    Returns:
        Stage times and weights scaled by dt.
    """
    return FehlbergWeights(
        t2=t + dt / 4,
        t3=t + 3 / 8 * dt,
        t4=t + 12 / 13 * dt,
        t5=t + dt,
        t6=t + dt / 2,
        a21=dt * 1 / 4,
        a31=dt * 3 / 32,
        a32=dt * 9 / 32,
        a41=dt * 1932 / 2197,
        a42=dt * 7200 / 2197,
        a43=dt * 7296 / 2197,
        a51=dt * 439 / 216,
        a52=dt * 8,
        a53=dt * 3680 / 513,
        a54=dt * 845 / 4104,
        a61=dt * 8 / 27,
        a62=dt * 2,
        a63=dt * 3544 / 2565,
        a64=dt * 1859 / 4104,
        a65=dt * 11 / 40,
        b41=dt * 25 / 216,
        b43=dt * 1408 / 2565,
        b44=dt * 2197 / 4104,
        b45=dt / 5,
        b51=dt * 16 / 135,
        b53=dt * 6656 / 12825,
        b54=dt * 28561 / 56430,
        b55=dt * 9 / 50,
        b56=dt * 2 / 55,
    )


# =============================================================================
# Allocating form
# =============================================================================


def fehlberg_increments(
    f: DerivativeFunction,
    x: Any,
    t: float,
    dt: float,
) -> tuple[Any, Any]:
    """Compute the 4th- and 5th-order Fehlberg increment estimates.

    Args:
        f: Derivative ``f(x, t)`` returning a value shaped like x.
        x: State at time t. Not modified.
        t: Current time.
        dt: Trial step size.

    Returns:
        (order4, order5) increment estimates for x over dt.
    """
    w = fehlberg_weights(t, dt)

    k1 = f(x, t)
    k2 = f(x + k1 * w.a21, w.t2)
    k3 = f(x + k1 * w.a31 + k2 * w.a32, w.t3)
    k4 = f(x + k1 * w.a41 - k2 * w.a42 + k3 * w.a43, w.t4)
    k5 = f(x + k1 * w.a51 - k2 * w.a52 + k3 * w.a53 - k4 * w.a54, w.t5)
    k6 = f(
        x - k1 * w.a61 + k2 * w.a62 - k3 * w.a63 + k4 * w.a64 - k5 * w.a65,
        w.t6,
    )

    order4 = k1 * w.b41 + k3 * w.b43 + k4 * w.b44 - k5 * w.b45
    order5 = k1 * w.b51 + k3 * w.b53 + k4 * w.b54 - k5 * w.b55 + k6 * w.b56
    return order4, order5


# =============================================================================
# Stage buffer
# =============================================================================


def _slot_dtype(dtype: np.dtype[Any]) -> np.dtype[Any]:
    """Return the slot dtype for a state of the given dtype."""
    if np.issubdtype(dtype, np.inexact):
        return dtype
    return np.result_type(dtype, np.float64)


@dataclass(slots=True)
class StageBuffer:
    """Reusable scratch storage for the in-place stage evaluator.

    All seven slots are independent arrays with the state's shape and a
    floating (or complex) dtype.
    The buffer is overwritten by every evaluation and must not be shared by
    interleaved integrations.

    Attributes:
        k1..k6: Stage derivatives.
        tmp: Stage argument (base state plus weighted stages).
    """

    k1: FloatArray
    k2: FloatArray
    k3: FloatArray
    k4: FloatArray
    k5: FloatArray
    k6: FloatArray
    tmp: FloatArray

    @classmethod
    def like(cls, x: ArrayLike) -> StageBuffer:
        """Allocate a buffer whose slots match the shape of x.

        Floating and complex states keep their dtype; integer and boolean
        states get float64 slots.

        Args:
            x: Sample state.

        Returns:
            New StageBuffer with uninitialized slots.
        """
        sample = np.asarray(x)
        dtype = _slot_dtype(sample.dtype)
        return cls(*(np.empty(sample.shape, dtype=dtype) for _ in fields(cls)))

    @property
    def shape(self) -> tuple[int, ...]:
        """Return the common slot shape."""
        return self.tmp.shape

    @property
    def stages(self) -> tuple[FloatArray, ...]:
        """Return the stage slots (k1, ..., k6)."""
        return (self.k1, self.k2, self.k3, self.k4, self.k5, self.k6)

    def slots(self) -> tuple[tuple[str, FloatArray], ...]:
        """Return (name, array) pairs for all seven slots."""
        return tuple((f.name, getattr(self, f.name)) for f in fields(self))

    def check_compatible(self, x: ArrayLike) -> None:
        """Validate that every slot matches the shape of x.

        Args:
            x: State the buffer will be used with.

        Raises:
            BufferShapeError: If any slot shape differs from x's shape.
        """
        expected = np.shape(x)
        for name, slot in self.slots():
            if slot.shape != expected:
                raise_buffer_shape_error(
                    name=f"buffer.{name}",
                    expected=expected,
                    got=slot.shape,
                )


def make_stage_buffer(x: ArrayLike) -> StageBuffer:
    """Allocate a StageBuffer for states shaped like x.

    Args:
        x: Sample state.

    Returns:
        New StageBuffer.
    """
    return StageBuffer.like(x)


# =============================================================================
# In-place form
# =============================================================================


def _start(
    x: ArrayLike,
    k: FloatArray,
    coeff: float,
    *,
    negate: bool,
    out: FloatArray,
) -> None:
    """Write ``x + k*coeff`` (or ``x - k*coeff``) into out."""
    np.multiply(k, coeff, out=out)
    if negate:
        np.subtract(x, out, out=out)
    else:
        np.add(x, out, out=out)


def _accumulate(
    acc: FloatArray,
    k: FloatArray,
    coeff: float,
    *,
    negate: bool,
    scratch: FloatArray,
) -> None:
    """Add (or subtract) ``k*coeff`` to acc, staging the product in scratch."""
    np.multiply(k, coeff, out=scratch)
    if negate:
        np.subtract(acc, scratch, out=acc)
    else:
        np.add(acc, scratch, out=acc)


def _check_destinations(
    x: ArrayLike,
    buffer: StageBuffer,
    out4: FloatArray,
    out5: FloatArray,
) -> None:
    """Validate shapes, dtypes and aliasing of the in-place operands.

    Raises:
        BufferShapeError: If any slot or destination shape differs from x.
        PreconditionError: If a slot or destination is not floating point, or
            a destination aliases x, a slot or the other destination.
    """
    buffer.check_compatible(x)
    for name, slot in buffer.slots():
        if not np.issubdtype(slot.dtype, np.inexact):
            raise PreconditionError(
                _NON_FLOAT_SLOT_ERROR_MSG.format(
                    name=f"buffer.{name}", dtype=slot.dtype
                )
            )
    expected = np.shape(x)
    for name, out in (("out4", out4), ("out5", out5)):
        if np.shape(out) != expected:
            raise_buffer_shape_error(name=name, expected=expected, got=np.shape(out))
        if not np.issubdtype(np.asarray(out).dtype, np.inexact):
            raise PreconditionError(
                _NON_FLOAT_SLOT_ERROR_MSG.format(
                    name=name, dtype=np.asarray(out).dtype
                )
            )
        if np.may_share_memory(out, x) or any(
            np.may_share_memory(out, slot) for _name, slot in buffer.slots()
        ):
            raise PreconditionError(_ALIASED_DESTINATION_ERROR_MSG.format(name=name))
    if np.may_share_memory(out4, out5):
        raise PreconditionError(_SAME_DESTINATION_ERROR_MSG)


def _fill_increments(
    f: InplaceDerivativeFunction,
    x: ArrayLike,
    t: float,
    dt: float,
    buffer: StageBuffer,
    out4: FloatArray,
    out5: FloatArray,
) -> None:
    """Evaluate all stages into buffer and both estimates into out4/out5.

    No validation; callers check the operands once per step.
    """
    w = fehlberg_weights(t, dt)
    b = buffer
    tmp = b.tmp

    f(x, t, b.k1)

    _start(x, b.k1, w.a21, negate=False, out=tmp)
    f(tmp, w.t2, b.k2)

    _start(x, b.k1, w.a31, negate=False, out=tmp)
    _accumulate(tmp, b.k2, w.a32, negate=False, scratch=b.k3)
    f(tmp, w.t3, b.k3)

    _start(x, b.k1, w.a41, negate=False, out=tmp)
    _accumulate(tmp, b.k2, w.a42, negate=True, scratch=b.k4)
    _accumulate(tmp, b.k3, w.a43, negate=False, scratch=b.k4)
    f(tmp, w.t4, b.k4)

    _start(x, b.k1, w.a51, negate=False, out=tmp)
    _accumulate(tmp, b.k2, w.a52, negate=True, scratch=b.k5)
    _accumulate(tmp, b.k3, w.a53, negate=False, scratch=b.k5)
    _accumulate(tmp, b.k4, w.a54, negate=True, scratch=b.k5)
    f(tmp, w.t5, b.k5)

    _start(x, b.k1, w.a61, negate=True, out=tmp)
    _accumulate(tmp, b.k2, w.a62, negate=False, scratch=b.k6)
    _accumulate(tmp, b.k3, w.a63, negate=True, scratch=b.k6)
    _accumulate(tmp, b.k4, w.a64, negate=False, scratch=b.k6)
    _accumulate(tmp, b.k5, w.a65, negate=True, scratch=b.k6)
    f(tmp, w.t6, b.k6)

    # tmp is free from here on and serves as product scratch.
    np.multiply(b.k1, w.b41, out=out4)
    _accumulate(out4, b.k3, w.b43, negate=False, scratch=tmp)
    _accumulate(out4, b.k4, w.b44, negate=False, scratch=tmp)
    _accumulate(out4, b.k5, w.b45, negate=True, scratch=tmp)

    np.multiply(b.k1, w.b51, out=out5)
    _accumulate(out5, b.k3, w.b53, negate=False, scratch=tmp)
    _accumulate(out5, b.k4, w.b54, negate=False, scratch=tmp)
    _accumulate(out5, b.k5, w.b55, negate=True, scratch=tmp)
    _accumulate(out5, b.k6, w.b56, negate=False, scratch=tmp)


def fehlberg_increments_into(
    f: InplaceDerivativeFunction,
    x: ArrayLike,
    t: float,
    dt: float,
    buffer: StageBuffer,
    out4: FloatArray,
    out5: FloatArray,
) -> None:
    """Compute the Fehlberg increment estimates without allocating.

    Args:
        f: In-place derivative ``f(x, t, out)`` writing dx/dt into out. It must
            not keep references to its arguments.
        x: State at time t. Read only.
        t: Current time.
        dt: Trial step size.
        buffer: Stage buffer shaped like x; overwritten.
        out4: Destination for the 4th-order increment estimate.
        out5: Destination for the 5th-order increment estimate.

    Raises:
        BufferShapeError: If the buffer or destinations do not match x.
        PreconditionError: If destinations alias x, the buffer or each other.
    """
    _check_destinations(x, buffer, out4, out5)
    _fill_increments(f, x, t, dt, buffer, out4, out5)
