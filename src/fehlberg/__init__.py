"""fehlberg: adaptive Runge-Kutta-Fehlberg 4(5) stepping for NumPy states."""

from __future__ import annotations

from .config import StepperSettings
from .errors import (
    BufferShapeError,
    ConvergenceError,
    FehlbergError,
    NonFiniteErrorEstimate,
    PreconditionError,
    StepSizeUnderflowError,
    UnknownMetricError,
)
from .metrics import METRICS, ErrorMetric, get_metric, l1_metric, l2_metric, max_metric
from .stages import (
    FehlbergWeights,
    StageBuffer,
    fehlberg_increments,
    fehlberg_increments_into,
    fehlberg_weights,
    make_stage_buffer,
)
from .stepper import (
    ERROR_FLOOR,
    StepResult,
    propose_next_dt,
    rkf45_step,
    rkf45_step_into,
    shrink_dt,
)

__all__ = [
    "ERROR_FLOOR",
    "METRICS",
    "BufferShapeError",
    "ConvergenceError",
    "ErrorMetric",
    "FehlbergError",
    "FehlbergWeights",
    "NonFiniteErrorEstimate",
    "PreconditionError",
    "StageBuffer",
    "StepResult",
    "StepSizeUnderflowError",
    "StepperSettings",
    "UnknownMetricError",
    "fehlberg_increments",
    "fehlberg_increments_into",
    "fehlberg_weights",
    "get_metric",
    "l1_metric",
    "l2_metric",
    "make_stage_buffer",
    "max_metric",
    "propose_next_dt",
    "rkf45_step",
    "rkf45_step_into",
    "shrink_dt",
]

__version__ = "0.1.0"
