# tests/test_stages.py
"""Unit tests for fehlberg.stages.

This module contains tests that verify:
- fehlberg_weights reproduces the Fehlberg tableau (times and dt-scaled weights).
- fehlberg_increments integrates low-degree polynomials exactly and matches
  exp(dt) - 1 for x' = x to 5th order.
- fehlberg_increments leaves the state untouched and preserves its shape.
- fehlberg_increments_into is bit-identical to the allocating form, writes
  only into the buffer and destinations, and never touches x.
- StageBuffer allocation, independence of slots and shape validation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from fehlberg.errors import BufferShapeError, PreconditionError
from fehlberg.stages import (
    StageBuffer,
    fehlberg_increments,
    fehlberg_increments_into,
    fehlberg_weights,
    make_stage_buffer,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray

    FloatArray = NDArray[np.floating]


# -----------------------------------------------------------------------------
# Tableau
# -----------------------------------------------------------------------------


def test_weights_stage_times() -> None:
    """Stage times sit at the Fehlberg nodes 1/4, 3/8, 12/13, 1, 1/2."""
    w = fehlberg_weights(2.0, 0.5)
    assert w.t2 == pytest.approx(2.0 + 0.5 / 4)
    assert w.t3 == pytest.approx(2.0 + 0.5 * 3 / 8)
    assert w.t4 == pytest.approx(2.0 + 0.5 * 12 / 13)
    assert w.t5 == 2.5
    assert w.t6 == 2.25


def test_weights_are_scaled_by_dt() -> None:
    """Every weight is the tableau coefficient times dt."""
    dt = 0.3
    w = fehlberg_weights(0.0, dt)
    expected = {
        "a21": 1 / 4,
        "a31": 3 / 32,
        "a32": 9 / 32,
        "a41": 1932 / 2197,
        "a42": 7200 / 2197,
        "a43": 7296 / 2197,
        "a51": 439 / 216,
        "a52": 8.0,
        "a53": 3680 / 513,
        "a54": 845 / 4104,
        "a61": 8 / 27,
        "a62": 2.0,
        "a63": 3544 / 2565,
        "a64": 1859 / 4104,
        "a65": 11 / 40,
        "b41": 25 / 216,
        "b43": 1408 / 2565,
        "b44": 2197 / 4104,
        "b45": 1 / 5,
        "b51": 16 / 135,
        "b53": 6656 / 12825,
        "b54": 28561 / 56430,
        "b55": 9 / 50,
        "b56": 2 / 55,
    }
    for name, coeff in expected.items():
        assert getattr(w, name) == pytest.approx(coeff * dt, rel=1e-15), name


def test_weights_rows_are_consistent() -> None:
    """Row sums of the signed stage weights equal the stage nodes."""
    w = fehlberg_weights(0.0, 1.0)
    assert w.a21 == pytest.approx(1 / 4)
    assert w.a31 + w.a32 == pytest.approx(3 / 8)
    assert w.a41 - w.a42 + w.a43 == pytest.approx(12 / 13)
    assert w.a51 - w.a52 + w.a53 - w.a54 == pytest.approx(1.0)
    assert -w.a61 + w.a62 - w.a63 + w.a64 - w.a65 == pytest.approx(1 / 2)
    assert w.b41 + w.b43 + w.b44 - w.b45 == pytest.approx(1.0)
    assert w.b51 + w.b53 + w.b54 - w.b55 + w.b56 == pytest.approx(1.0)


# -----------------------------------------------------------------------------
# Allocating form
# -----------------------------------------------------------------------------


def test_increments_exact_for_cubic_in_time() -> None:
    """Both estimates integrate f = t**3 exactly."""
    t, dt = 0.5, 0.2
    order4, order5 = fehlberg_increments(lambda _x, s: s**3, 0.0, t, dt)
    exact = ((t + dt) ** 4 - t**4) / 4
    assert order4 == pytest.approx(exact, rel=1e-12)
    assert order5 == pytest.approx(exact, rel=1e-12)


def test_increments_quartic_separates_orders() -> None:
    """Only the 5th-order estimate is exact for f = t**4."""
    t, dt = 0.0, 1.0
    order4, order5 = fehlberg_increments(lambda _x, s: s**4, 0.0, t, dt)
    assert order5 == pytest.approx(1 / 5, rel=1e-12)
    assert abs(order4 - 1 / 5) > 1e-6


def test_increments_exponential_growth_fifth_order() -> None:
    """For x' = x the 5th-order increment matches exp(dt) - 1 to O(dt**6)."""
    dt = 0.1
    order4, order5 = fehlberg_increments(lambda x, _t: x, 1.0, 0.0, dt)
    exact = np.expm1(dt)
    assert abs(order5 - exact) < 5e-9
    assert abs(order4 - exact) < 1e-7
    assert abs(order5 - exact) < abs(order4 - exact)


def test_increments_preserve_shape_and_input() -> None:
    """Array states keep their shape and are not modified."""
    x = np.arange(6, dtype=float).reshape(2, 3)
    x_before = x.copy()
    order4, order5 = fehlberg_increments(lambda y, _t: -y, x, 0.0, 0.1)
    assert order4.shape == x.shape
    assert order5.shape == x.shape
    np.testing.assert_array_equal(x, x_before)


def test_stage_two_only_feeds_later_stages() -> None:
    """Perturbing k2 alone changes the estimates only through later stages."""
    calls: list[float] = []

    def f(_x: float, t: float) -> float:
        calls.append(t)
        return 1.0 if t == pytest.approx(0.25) else 0.0

    order4, order5 = fehlberg_increments(f, 0.0, 0.0, 1.0)
    assert len(calls) == 6
    # k2 = 1 never reaches the combinations directly and all other stages are 0.
    assert order4 == 0.0
    assert order5 == 0.0


# -----------------------------------------------------------------------------
# Stage buffer
# -----------------------------------------------------------------------------


def test_make_stage_buffer_slots_match_state() -> None:
    """Buffer slots copy the shape and dtype of the sample state."""
    x = np.zeros((4, 3), dtype=np.float32)
    buffer = make_stage_buffer(x)
    assert isinstance(buffer, StageBuffer)
    assert buffer.shape == (4, 3)
    names = [name for name, _slot in buffer.slots()]
    assert names == ["k1", "k2", "k3", "k4", "k5", "k6", "tmp"]
    for _name, slot in buffer.slots():
        assert slot.shape == x.shape
        assert slot.dtype == np.float32
    assert len(buffer.stages) == 6


def test_make_stage_buffer_slots_are_independent() -> None:
    """No two slots share memory with each other or with the sample."""
    x = np.ones(5)
    buffer = make_stage_buffer(x)
    arrays = [slot for _name, slot in buffer.slots()]
    for i, a in enumerate(arrays):
        assert not np.shares_memory(a, x)
        for b in arrays[i + 1 :]:
            assert not np.shares_memory(a, b)


def test_check_compatible_rejects_other_shape() -> None:
    """A buffer built for one shape rejects a state of another shape."""
    buffer = make_stage_buffer(np.zeros(3))
    buffer.check_compatible(np.ones(3))
    with pytest.raises(BufferShapeError, match=r"buffer\.k1"):
        buffer.check_compatible(np.ones(4))


def test_check_compatible_detects_single_bad_slot() -> None:
    """Replacing one slot with a wrong-shaped array is reported by name."""
    buffer = make_stage_buffer(np.zeros(3))
    buffer.k5 = np.zeros(2)
    with pytest.raises(BufferShapeError, match=r"buffer\.k5"):
        buffer.check_compatible(np.zeros(3))


# -----------------------------------------------------------------------------
# In-place form
# -----------------------------------------------------------------------------


def test_inplace_matches_allocating_bitwise(
    nonlinear_pair: tuple,
    rng: np.random.Generator,
) -> None:
    """In-place estimates are bit-identical to the allocating ones."""
    f, f_into = nonlinear_pair
    x = rng.normal(size=7)
    buffer = make_stage_buffer(x)
    out4 = np.empty_like(x)
    out5 = np.empty_like(x)

    for t, dt in [(0.0, 0.1), (1.3, 0.02), (-2.0, 0.5)]:
        ref4, ref5 = fehlberg_increments(f, x, t, dt)
        fehlberg_increments_into(f_into, x, t, dt, buffer, out4, out5)
        np.testing.assert_array_equal(out4, ref4)
        np.testing.assert_array_equal(out5, ref5)


def test_inplace_leaves_state_and_reuses_storage(
    nonlinear_pair: tuple,
    rng: np.random.Generator,
) -> None:
    """x is read only; results land in the same buffer/destination objects."""
    _f, f_into = nonlinear_pair
    x = rng.normal(size=(3, 4))
    x_before = x.copy()
    buffer = make_stage_buffer(x)
    slot_ids = [id(slot) for _name, slot in buffer.slots()]
    out4 = np.empty_like(x)
    out5 = np.empty_like(x)

    fehlberg_increments_into(f_into, x, 0.0, 0.1, buffer, out4, out5)

    np.testing.assert_array_equal(x, x_before)
    assert [id(slot) for _name, slot in buffer.slots()] == slot_ids
    expected_k1 = np.empty_like(x)
    f_into(x, 0.0, expected_k1)
    np.testing.assert_array_equal(buffer.k1, expected_k1)


def test_inplace_passes_stage_times_in_order() -> None:
    """The in-place derivative sees the six Fehlberg stage times in order."""
    seen: list[float] = []

    def f_into(x: FloatArray, t: float, out: FloatArray) -> None:
        seen.append(t)
        out[...] = x

    x = np.ones(2)
    buffer = make_stage_buffer(x)
    fehlberg_increments_into(
        f_into, x, 1.0, 0.5, buffer, np.empty_like(x), np.empty_like(x)
    )
    w = fehlberg_weights(1.0, 0.5)
    assert seen == [1.0, w.t2, w.t3, w.t4, w.t5, w.t6]


def test_inplace_rejects_mismatched_destination() -> None:
    """Destinations must have the state's shape."""
    x = np.zeros(3)
    buffer = make_stage_buffer(x)
    with pytest.raises(BufferShapeError, match="out5"):
        fehlberg_increments_into(
            lambda y, _t, out: np.copyto(out, y),
            x,
            0.0,
            0.1,
            buffer,
            np.empty(3),
            np.empty(4),
        )


def test_inplace_rejects_aliased_destinations() -> None:
    """Destinations may not alias x, buffer slots or each other."""
    x = np.zeros(3)
    buffer = make_stage_buffer(x)
    out = np.empty_like(x)

    def f_into(y: FloatArray, _t: float, dest: FloatArray) -> None:
        np.copyto(dest, y)

    with pytest.raises(PreconditionError, match="out4"):
        fehlberg_increments_into(f_into, x, 0.0, 0.1, buffer, x, out)
    with pytest.raises(PreconditionError, match="out5"):
        fehlberg_increments_into(f_into, x, 0.0, 0.1, buffer, out, buffer.tmp)
    with pytest.raises(PreconditionError, match="different arrays"):
        fehlberg_increments_into(f_into, x, 0.0, 0.1, buffer, out, out)
