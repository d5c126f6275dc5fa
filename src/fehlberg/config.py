# fehlberg/src/fehlberg/config.py
"""Validated stepper settings.

This module defines a pydantic model bundling the controller parameters of
rkf45_step / rkf45_step_into, so a driver can keep them in one place or load
them from a dict / YAML mapping.

Notes:
    - Unknown fields are rejected (`extra="forbid"`) so misspelled settings
      fail loudly.
    - The error metric is selected by name; see fehlberg.metrics.METRICS.
    - Validation mirrors the preconditions enforced by the step functions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from .metrics import MetricName, get_metric
from .stepper import StepResult, rkf45_step, rkf45_step_into

if TYPE_CHECKING:
    from numpy.typing import ArrayLike

    from .stages import (
        DerivativeFunction,
        FloatArray,
        InplaceDerivativeFunction,
        StageBuffer,
    )


class StepperSettings(BaseModel):
    """Controller configuration for the RKF45 steppers.

    Attributes:
        tolerance: Target value for the error metric.
        metric: Name of the error metric ("l1", "l2" or "max").
        max_next_dt: Upper bound on the suggested next step size.
        safety: Safety factor applied to step-size updates.
        max_rejections: Optional cap on rejected trial steps per call.
        min_dt: Shrinking dt to this value or below raises.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    tolerance: float = Field(
        gt=0.0, allow_inf_nan=False, description="Target error per step"
    )
    metric: MetricName = Field(default="l1", description="Error metric name")
    max_next_dt: float = Field(default=1.0, gt=0.0, allow_inf_nan=False)
    safety: float = Field(default=0.9, gt=0.0, lt=1.0)
    max_rejections: int | None = Field(default=None, ge=0)
    min_dt: float = Field(default=0.0, ge=0.0, allow_inf_nan=False)

    def controller_kwargs(self) -> dict[str, Any]:
        """Return keyword arguments accepted by both step functions.

        Returns:
            Mapping with tolerance, error_metric, max_next_dt, safety,
            max_rejections and min_dt.
        """
        return {
            "tolerance": self.tolerance,
            "error_metric": get_metric(self.metric),
            "max_next_dt": self.max_next_dt,
            "safety": self.safety,
            "max_rejections": self.max_rejections,
            "min_dt": self.min_dt,
        }

    def step(
        self,
        f: DerivativeFunction,
        x: Any,
        t: float,
        dt: float,
    ) -> StepResult:
        """Run rkf45_step with these settings.

        Args:
            f: Derivative ``f(x, t)``.
            x: State at time t.
            t: Current time.
            dt: Initial step-size guess.

        Returns:
            StepResult(increment, dt, next_dt).
        """
        return rkf45_step(f, x, t, dt=dt, **self.controller_kwargs())

    def step_into(  # noqa: PLR0913
        self,
        f_inplace: InplaceDerivativeFunction,
        x: ArrayLike,
        t: float,
        dt: float,
        buffer: StageBuffer,
        out_increment_4: FloatArray,
        out_increment_5: FloatArray,
    ) -> tuple[float, float]:
        """Run rkf45_step_into with these settings.

        Args:
            f_inplace: Derivative ``f(x, t, out)``.
            x: State array at time t.
            t: Current time.
            dt: Initial step-size guess.
            buffer: Stage buffer shaped like x.
            out_increment_4: Destination for the 4th-order estimate.
            out_increment_5: Destination for the accepted increment.

        Returns:
            (accepted_dt, next_dt).
        """
        return rkf45_step_into(
            f_inplace,
            x,
            t,
            dt=dt,
            buffer=buffer,
            out_increment_4=out_increment_4,
            out_increment_5=out_increment_5,
            **self.controller_kwargs(),
        )
