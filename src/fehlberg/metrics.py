# fehlberg/src/fehlberg/metrics.py
"""Error metrics comparing the two Fehlberg increment estimates.

A metric maps ``(estimate_a, estimate_b)`` to a non-negative float that is zero
only when the estimates agree. The adaptive controller compares this value
directly against the caller's tolerance, so the metric fixes the units of the
tolerance as well.

Available metrics:
    - "l1":  sum of absolute differences (Manhattan distance). Default.
    - "l2":  Euclidean distance.
    - "max": largest absolute difference (infinity norm).

Scalars and NumPy arrays of any shape are accepted, including zero-size
arrays (zero error). Each built-in metric allocates one temporary array shaped
like the state per call; rkf45_step_into callers who need a fully
allocation-free step can pass their own metric.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Final, Literal

import numpy as np
from numpy.typing import ArrayLike

from .errors import UnknownMetricError

ErrorMetric = Callable[[ArrayLike, ArrayLike], float]
MetricName = Literal["l1", "l2", "max"]

_UNKNOWN_METRIC_ERROR_MSG = "Unknown error metric: {name!r}. Available: {available}"


def l1_metric(a: ArrayLike, b: ArrayLike) -> float:
    """Return the l1 norm of ``a - b``.

    Args:
        a: First increment estimate.
        b: Second increment estimate, same shape as ``a``.

    Returns:
        Sum of absolute elementwise differences.
    """
    return float(np.sum(np.abs(np.subtract(a, b))))


def l2_metric(a: ArrayLike, b: ArrayLike) -> float:
    """Return the Euclidean norm of ``a - b``."""
    return float(np.sqrt(np.sum(np.square(np.subtract(a, b)))))


def max_metric(a: ArrayLike, b: ArrayLike) -> float:
    """Return the largest absolute elementwise difference of ``a`` and ``b``."""
    return float(np.max(np.abs(np.subtract(a, b)), initial=0.0))


METRICS: Final[dict[str, ErrorMetric]] = {
    "l1": l1_metric,
    "l2": l2_metric,
    "max": max_metric,
}


def get_metric(name: str) -> ErrorMetric:
    """Look up a registered error metric by name.

    Args:
        name: Metric name, case-insensitive ("l1", "l2" or "max").

    Raises:
        UnknownMetricError: If no metric is registered under ``name``.

    Returns:
        The metric callable.
    """
    key = str(name).strip().lower()
    try:
        return METRICS[key]
    except KeyError:
        msg = _UNKNOWN_METRIC_ERROR_MSG.format(name=name, available=sorted(METRICS))
        raise UnknownMetricError(msg) from None
