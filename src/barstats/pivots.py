"""Zig-zag pivot detection over a full price series."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from barstats.errors import PivotConsistencyError, RunCancelled
from core.logging import get_logger

LOGGER = get_logger(__name__)

PIVOT_TOP = 1
PIVOT_BOTTOM = -1
PIVOT_NONE = 0


@dataclass(frozen=True)
class Pivot:
    """Confirmed turning point."""

    index: int
    direction: int
    value: float


def detect_pivots(
    values: np.ndarray,
    bars_ahead: int,
    *,
    cancel: threading.Event | None = None,
    progress: Callable[[int, int], None] | None = None,
) -> np.ndarray:
    """Return one flag per bar: +1 top, -1 bottom, 0 otherwise.

    A bar is a top when every scanned neighbor is strictly lower, and a bottom
    when every scanned neighbor is greater or equal. Neighbors are scanned up to
    `bars_ahead` bars on each side; the backward scan stops once it reaches the
    previous confirmed pivot. Bars closer than `bars_ahead` to either end are
    never pivots. A candidate with the same direction as the previous pivot is
    dropped, so the result always alternates.
    """
    if bars_ahead <= 0:
        raise ValueError(f"bars_ahead must be > 0, got {bars_ahead}.")

    series = np.asarray(values, dtype="float64")
    total = len(series)
    flags = np.zeros(total, dtype="int8")
    previous_direction = PIVOT_NONE
    previous_index = -1

    for index in range(total):
        if cancel is not None and cancel.is_set():
            raise RunCancelled(f"Pivot detection cancelled at bar {index}.")
        if progress is not None:
            progress(index + 1, total)
        if index < bars_ahead or total - 1 - index < bars_ahead:
            continue

        value = series[index]
        top_backward = bottom_backward = True
        for scan in range(index - 1, max(0, index - bars_ahead) - 1, -1):
            check = series[scan]
            if check >= value:
                top_backward = False
            if check < value:
                bottom_backward = False
            if (not top_backward and not bottom_backward) or scan == previous_index:
                break
        if not top_backward and not bottom_backward:
            continue

        top_forward = bottom_forward = True
        for scan in range(index + 1, min(total - 1, index + bars_ahead) + 1):
            check = series[scan]
            if check >= value:
                top_forward = False
            if check < value:
                bottom_forward = False
            if not top_forward and not bottom_forward:
                break
        if not top_forward and not bottom_forward:
            continue

        if top_backward and bottom_backward and top_forward and bottom_forward:
            raise PivotConsistencyError(f"Bar {index} is both top and bottom (value={value}).")

        direction = PIVOT_NONE
        if top_backward and top_forward:
            direction = PIVOT_TOP
        elif bottom_backward and bottom_forward:
            direction = PIVOT_BOTTOM
        if direction == PIVOT_NONE or direction == previous_direction:
            continue

        flags[index] = direction
        previous_direction = direction
        previous_index = index

    LOGGER.debug("Pivots detected | bars=%d pivots=%d", total, int(np.count_nonzero(flags)))
    return flags


def pivot_list(flags: np.ndarray, values: np.ndarray) -> list[Pivot]:
    """Sparse view of the non-zero flags."""
    series = np.asarray(values, dtype="float64")
    return [
        Pivot(index=int(index), direction=int(flags[index]), value=float(series[index]))
        for index in np.flatnonzero(flags)
    ]


def validate_alternation(flags: np.ndarray) -> None:
    """Raise ValueError if two consecutive non-zero flags share a direction or a flag is out of range."""
    flags = np.asarray(flags)
    invalid = ~np.isin(flags, (PIVOT_BOTTOM, PIVOT_NONE, PIVOT_TOP))
    if invalid.any():
        raise ValueError(f"Pivot flags must be -1, 0 or 1; got {sorted(set(flags[invalid].tolist()))}.")
    directions = flags[flags != PIVOT_NONE]
    repeated = np.flatnonzero(directions[1:] == directions[:-1])
    if repeated.size:
        raise ValueError(f"Pivots must alternate; pivot #{int(repeated[0]) + 1} repeats direction.")
