# fehlberg/src/fehlberg/stepper.py
"""Adaptive RKF45 step controller.

One call advances ``dx/dt = f(x, t)`` by a single accepted step:

1. Evaluate the 4th- and 5th-order increment estimates at the trial dt.
2. err = error_metric(order4, order5).
3. While err > tolerance, shrink

       dt <- dt * (safety * (tolerance / err) ** (1/5))

   and re-evaluate.
4. Once accepted, suggest

       next_dt = dt * (safety * (tolerance / err) ** (1/4))

   clamped above by max_next_dt (no lower clamp).
5. Return the 5th-order increment, the accepted dt and next_dt.

The shrink exponent (1/5) and growth exponent (1/4) are distinct.
The order4 estimate is only used for the error.

Entry points:
    - rkf45_step:      allocating; f(x, t) -> dx/dt.
    - rkf45_step_into: buffer-reusing; f(x, t, out), increment written into
                       out_increment_5.

Both share one rejection loop, so for the same mathematics they return
identical (increment, dt, next_dt).

Numerical guards:
    - err == 0 is floored at ERROR_FLOOR before the growth formula; the
      result is then clamped to max_next_dt.
    - A NaN/Inf err raises NonFiniteErrorEstimate.
    - max_rejections (default None: unbounded) caps the rejection loop.
    - A shrunk dt at or below min_dt (default 0.0) raises
      StepSizeUnderflowError.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Final, NamedTuple

import numpy as np
from numpy.typing import ArrayLike

from .errors import (
    ConvergenceError,
    NonFiniteErrorEstimate,
    StepSizeUnderflowError,
    raise_precondition,
)
from .metrics import ErrorMetric, l1_metric
from .stages import (
    DerivativeFunction,
    FloatArray,
    InplaceDerivativeFunction,
    StageBuffer,
    _check_destinations,
    _fill_increments,
    fehlberg_increments,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Constants / messages
# =============================================================================

ERROR_FLOOR: Final[float] = float(np.finfo(np.float64).tiny)

_SHRINK_EXPONENT: Final[float] = 1 / 5
_GROW_EXPONENT: Final[float] = 1 / 4

_NON_FINITE_ERROR_MSG = (
    "error metric returned {err!r} at t={t!r}, dt={dt!r}; "
    "check the derivative function for NaN/Inf values"
)
_TOO_MANY_REJECTS_ERROR_MSG = (
    "Step at t={t!r} rejected {count} times (max_rejections={limit}); "
    "last dt={dt!r}, err={err!r}, tolerance={tolerance!r}"
)
_DT_UNDERFLOW_ERROR_MSG = (
    "dt fell to {dt!r} (min_dt={min_dt!r}) at t={t!r} while err={err!r} "
    "still exceeded tolerance={tolerance!r}"
)


# =============================================================================
# Result type
# =============================================================================


class StepResult(NamedTuple):
    """Result of one adaptive step.

    Attributes:
        increment: Accepted 5th-order increment, shaped like the state.
        dt: Step size that produced the increment.
        next_dt: Suggested step size for the next call (<= max_next_dt).
    """

    increment: Any
    dt: float
    next_dt: float


# =============================================================================
# Step-size formulas
# =============================================================================


def shrink_dt(dt: float, err: float, tolerance: float, safety: float) -> float:
    """Return the retry step size after a rejected step.

    Args:
        dt: Rejected step size.
        err: Error of the rejected step (> tolerance).
        tolerance: Target error.
        safety: Safety factor in (0, 1).

    Returns:
        Smaller step size.
    """
    return dt * (safety * (tolerance / err) ** _SHRINK_EXPONENT)


def propose_next_dt(
    dt: float,
    err: float,
    tolerance: float,
    safety: float,
    max_next_dt: float,
) -> float:
    """Return the suggested step size following an accepted step.

    Args:
        dt: Accepted step size.
        err: Error of the accepted step (<= tolerance, may be zero).
        tolerance: Target error.
        safety: Safety factor in (0, 1).
        max_next_dt: Upper bound on the suggestion.

    Returns:
        Suggested next step size, at most max_next_dt.
    """
    err_eff = max(float(err), ERROR_FLOOR)
    next_dt = dt * (safety * (float(tolerance) / err_eff) ** _GROW_EXPONENT)
    if next_dt > max_next_dt:
        return float(max_next_dt)
    return float(next_dt)


# =============================================================================
# Validation
# =============================================================================


def _check_controls(
    *,
    tolerance: float,
    dt: float,
    max_next_dt: float,
    safety: float,
    max_rejections: int | None,
    min_dt: float,
) -> None:
    """Validate the controller arguments shared by both step forms.

    Raises:
        PreconditionError: If any argument is outside its valid range.
    """
    if not (np.isfinite(tolerance) and tolerance > 0.0):
        raise_precondition(
            name="tolerance", expected="a finite value > 0", got=tolerance
        )
    if not (np.isfinite(dt) and dt > 0.0):
        raise_precondition(name="dt", expected="a finite value > 0", got=dt)
    if not (0.0 < safety < 1.0):
        raise_precondition(name="safety", expected="a value in (0, 1)", got=safety)
    if not (np.isfinite(max_next_dt) and max_next_dt > 0.0):
        raise_precondition(
            name="max_next_dt", expected="a finite value > 0", got=max_next_dt
        )
    if not (np.isfinite(min_dt) and min_dt >= 0.0):
        raise_precondition(name="min_dt", expected="a finite value >= 0", got=min_dt)
    if max_rejections is not None and max_rejections < 0:
        raise_precondition(
            name="max_rejections",
            expected="None or an integer >= 0",
            got=max_rejections,
        )


# =============================================================================
# Rejection loop
# =============================================================================


def _adapt(
    attempt: Callable[[float], tuple[Any, Any]],
    *,
    t: float,
    tolerance: float,
    dt: float,
    error_metric: ErrorMetric,
    max_next_dt: float,
    safety: float,
    max_rejections: int | None,
    min_dt: float,
) -> StepResult:
    """Run the shrink-until-accepted loop around a stage evaluator.

    Args:
        attempt: Maps a trial dt to (order4, order5) estimates.
        t: Current time (diagnostics only).
        tolerance: Target error.
        dt: Initial trial step size.
        error_metric: Metric comparing the two estimates.
        max_next_dt: Upper bound on the suggested next dt.
        safety: Safety factor in (0, 1).
        max_rejections: Maximum rejections before giving up; None for no cap.
        min_dt: Shrinking to this value or below raises.

    Raises:
        NonFiniteErrorEstimate: If the metric returns NaN or Inf.
        ConvergenceError: If more than max_rejections steps are rejected.
        StepSizeUnderflowError: If dt shrinks to min_dt or below.

    Returns:
        StepResult of the accepted step.
    """

    def measure(trial_dt: float) -> tuple[Any, float]:
        order4, order5 = attempt(trial_dt)
        err = float(error_metric(order4, order5))
        if not np.isfinite(err):
            raise NonFiniteErrorEstimate(
                _NON_FINITE_ERROR_MSG.format(err=err, t=t, dt=trial_dt)
            )
        return order5, err

    order5, err = measure(dt)
    rejections = 0
    while err > tolerance:
        if max_rejections is not None and rejections >= max_rejections:
            raise ConvergenceError(
                _TOO_MANY_REJECTS_ERROR_MSG.format(
                    t=t,
                    count=rejections + 1,
                    limit=max_rejections,
                    dt=dt,
                    err=err,
                    tolerance=tolerance,
                )
            )

        dt_new = shrink_dt(dt, err, tolerance, safety)
        logger.debug(
            "rejected step at t=%g: dt=%g err=%g > tolerance=%g, retrying dt=%g",
            t,
            dt,
            err,
            tolerance,
            dt_new,
        )
        if dt_new <= min_dt:
            raise StepSizeUnderflowError(
                _DT_UNDERFLOW_ERROR_MSG.format(
                    dt=dt_new,
                    min_dt=min_dt,
                    t=t,
                    err=err,
                    tolerance=tolerance,
                )
            )
        dt = dt_new
        rejections += 1
        order5, err = measure(dt)

    next_dt = propose_next_dt(dt, err, tolerance, safety, max_next_dt)
    logger.debug(
        "accepted step at t=%g: dt=%g err=%g after %d rejection(s), next dt=%g",
        t,
        dt,
        err,
        rejections,
        next_dt,
    )
    return StepResult(order5, float(dt), next_dt)


# =============================================================================
# Public steppers
# =============================================================================


def rkf45_step(  # noqa: PLR0913
    f: DerivativeFunction,
    x: Any,
    t: float,
    tolerance: float,
    dt: float,
    error_metric: ErrorMetric = l1_metric,
    max_next_dt: float = 1.0,
    safety: float = 0.9,
    *,
    max_rejections: int | None = None,
    min_dt: float = 0.0,
) -> StepResult:
    """Take one adaptive RKF45 step, allocating fresh intermediates.

    Args:
        f: Derivative ``f(x, t)`` returning dx/dt shaped like x.
        x: State at time t (scalar or array). Not modified.
        t: Current time.
        tolerance: Target value for error_metric; dt is adapted to reach it.
        dt: Initial step-size guess, typically the previous call's next_dt.
        error_metric: Distance between the two increment estimates.
        max_next_dt: Upper bound on the suggested next step size.
        safety: Safety factor in (0, 1); smaller values are more conservative.
        max_rejections: Optional cap on rejected trial steps.
        min_dt: Shrinking dt to this value or below raises.

    Raises:
        PreconditionError: If a controller argument is out of range.
        NonFiniteErrorEstimate: If the error metric returns NaN or Inf.
        ConvergenceError: If the rejection cap is exceeded.

    Returns:
        StepResult(increment, dt, next_dt); unpacks as a 3-tuple.
    """
    _check_controls(
        tolerance=tolerance,
        dt=dt,
        max_next_dt=max_next_dt,
        safety=safety,
        max_rejections=max_rejections,
        min_dt=min_dt,
    )

    def attempt(trial_dt: float) -> tuple[Any, Any]:
        return fehlberg_increments(f, x, t, trial_dt)

    return _adapt(
        attempt,
        t=t,
        tolerance=tolerance,
        dt=dt,
        error_metric=error_metric,
        max_next_dt=max_next_dt,
        safety=safety,
        max_rejections=max_rejections,
        min_dt=min_dt,
    )


def rkf45_step_into(  # noqa: PLR0913
    f_inplace: InplaceDerivativeFunction,
    x: ArrayLike,
    t: float,
    tolerance: float,
    dt: float,
    buffer: StageBuffer,
    out_increment_4: FloatArray,
    out_increment_5: FloatArray,
    error_metric: ErrorMetric = l1_metric,
    max_next_dt: float = 1.0,
    safety: float = 0.9,
    *,
    max_rejections: int | None = None,
    min_dt: float = 0.0,
) -> tuple[float, float]:
    """Take one adaptive RKF45 step using caller-owned scratch storage.

    The accepted 5th-order increment is left in out_increment_5; the matching
    4th-order estimate is left in out_increment_4. x is never written.
    The stage evaluation allocates no state-sized arrays; the error metric
    is called once per trial and may allocate (the built-in metrics do).

    Args:
        f_inplace: Derivative ``f(x, t, out)`` writing dx/dt into out.
        x: State array at time t.
        t: Current time.
        tolerance: Target value for error_metric.
        dt: Initial step-size guess.
        buffer: StageBuffer shaped like x (see make_stage_buffer).
        out_increment_4: Destination for the 4th-order estimate.
        out_increment_5: Destination for the accepted increment.
        error_metric: Distance between the two increment estimates.
        max_next_dt: Upper bound on the suggested next step size.
        safety: Safety factor in (0, 1).
        max_rejections: Optional cap on rejected trial steps.
        min_dt: Shrinking dt to this value or below raises.

    Raises:
        PreconditionError: If a controller argument is out of range or a
            destination aliases x or the buffer.
        BufferShapeError: If the buffer or destinations do not match x.
        NonFiniteErrorEstimate: If the error metric returns NaN or Inf.
        ConvergenceError: If the rejection cap is exceeded.

    Returns:
        (accepted_dt, next_dt).
    """
    _check_controls(
        tolerance=tolerance,
        dt=dt,
        max_next_dt=max_next_dt,
        safety=safety,
        max_rejections=max_rejections,
        min_dt=min_dt,
    )
    _check_destinations(x, buffer, out_increment_4, out_increment_5)

    def attempt(trial_dt: float) -> tuple[FloatArray, FloatArray]:
        _fill_increments(
            f_inplace,
            x,
            t,
            trial_dt,
            buffer,
            out_increment_4,
            out_increment_5,
        )
        return out_increment_4, out_increment_5

    result = _adapt(
        attempt,
        t=t,
        tolerance=tolerance,
        dt=dt,
        error_metric=error_metric,
        max_next_dt=max_next_dt,
        safety=safety,
        max_rejections=max_rejections,
        min_dt=min_dt,
    )
    return result.dt, result.next_dt
