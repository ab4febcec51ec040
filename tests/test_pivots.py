"""Tests for zig-zag pivot detection."""

from __future__ import annotations

import threading

import numpy as np
import pytest

from barstats.errors import PivotConsistencyError, RunCancelled
from barstats.pivots import detect_pivots, pivot_list, validate_alternation


def _v_shape(size: int = 200, bottom: int = 100) -> np.ndarray:
    return np.array([100.0 + abs(index - bottom) for index in range(size)])


def test_v_shape_has_single_bottom_at_minimum() -> None:
    values = _v_shape()
    flags = detect_pivots(values, bars_ahead=10)

    pivots = pivot_list(flags, values)
    assert len(pivots) == 1
    assert pivots[0].index == int(np.argmin(values))
    assert pivots[0].direction == -1
    assert pivots[0].value == 100.0


def test_boundary_bars_never_pivots() -> None:
    values = np.array([5.0, 1.0, 2.0, 3.0, 9.0, 3.0, 2.0, 1.0, 5.0])
    flags = detect_pivots(values, bars_ahead=3)
    assert flags.tolist() == [0, 0, 0, 0, 1, 0, 0, 0, 0]

    assert not detect_pivots(values, bars_ahead=5).any()


def test_ties_follow_strict_top_and_non_strict_bottom() -> None:
    # an equal neighbor blocks a top but not a bottom
    plateau_top = np.array([1.0, 2.0, 5.0, 5.0, 2.0, 1.0])
    assert not (detect_pivots(plateau_top, bars_ahead=2) == 1).any()

    plateau_bottom = np.array([5.0, 4.0, 1.0, 1.0, 4.0, 5.0])
    flags = detect_pivots(plateau_bottom, bars_ahead=2)
    assert flags.tolist() == [0, 0, -1, 0, 0, 0]


def test_same_direction_candidates_are_suppressed() -> None:
    values = np.array([1.0, 2.0, 9.0, 7.0, 5.0, 8.0, 3.0, 2.0, 1.0])
    flags = detect_pivots(values, bars_ahead=2)
    # index 5 is a local top too, but no bottom was confirmed since the top at index 2
    assert flags.tolist() == [0, 0, 1, 0, 0, 0, 0, 0, 0]


def test_random_walk_pivots_alternate_and_are_extrema() -> None:
    rng = np.random.default_rng(1234)
    for trial in range(40):
        size = int(rng.integers(30, 400))
        bars_ahead = int(rng.integers(1, 12))
        values = 100.0 + np.cumsum(rng.normal(0.0, 1.0, size=size))
        if trial % 4 == 0:
            values = np.round(values)

        flags = detect_pivots(values, bars_ahead)
        validate_alternation(flags)

        previous_index = -1
        for pivot in pivot_list(flags, values):
            assert bars_ahead <= pivot.index <= size - 1 - bars_ahead
            low = max(0, pivot.index - bars_ahead, previous_index)
            backward = values[low : pivot.index]
            forward = values[pivot.index + 1 : pivot.index + bars_ahead + 1]
            if pivot.direction == 1:
                assert np.all(backward < pivot.value)
                assert np.all(forward < pivot.value)
            else:
                assert np.all(backward >= pivot.value)
                assert np.all(forward >= pivot.value)
            previous_index = pivot.index


def test_nan_input_is_a_consistency_error() -> None:
    values = np.array([1.0, 2.0, 3.0, np.nan, 3.0, 2.0, 1.0])
    with pytest.raises(PivotConsistencyError, match="both top and bottom"):
        detect_pivots(values, bars_ahead=2)


def test_cancellation_and_progress() -> None:
    values = _v_shape(50, 25)
    seen: list[tuple[int, int]] = []
    detect_pivots(values, 3, progress=lambda done, total: seen.append((done, total)))
    assert seen[-1] == (50, 50)
    assert len(seen) == 50

    cancel = threading.Event()
    cancel.set()
    with pytest.raises(RunCancelled):
        detect_pivots(values, 3, cancel=cancel)


def test_validate_alternation_rejects_repeats_and_bad_values() -> None:
    validate_alternation(np.array([0, 1, 0, -1, 0, 1]))
    with pytest.raises(ValueError, match="alternate"):
        validate_alternation(np.array([1, 0, 0, 1]))
    with pytest.raises(ValueError, match="-1, 0 or 1"):
        validate_alternation(np.array([0, 2, 0]))
