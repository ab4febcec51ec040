"""Directional labels propagated from pivots."""

from __future__ import annotations

import numpy as np

from barstats.parameters import PERCENT_HIGH, PERCENT_LOW
from barstats.pivots import PIVOT_TOP
from barstats.schema import LABEL_DOWN, LABEL_NEUTRAL, LABEL_UNSET, LABEL_UP


def direction_label(direction: int) -> str:
    return LABEL_UP if direction == PIVOT_TOP else LABEL_DOWN


def _label_side(
    labels: np.ndarray,
    neutral: np.ndarray,
    values: np.ndarray,
    pivot: int,
    neighbor: int,
    label: str,
    percent: float,
) -> None:
    if neighbor == pivot:
        return
    value = values[pivot]
    threshold = abs(value - values[neighbor]) * percent / 100
    step = 1 if neighbor < pivot else -1

    # walk from the neighbor toward the pivot; the first bar close enough to it starts the neutral zone
    boundary = pivot
    for index in range(neighbor, pivot, step):
        if abs(value - values[index]) <= threshold:
            boundary = index
            break

    for index in range(neighbor, boundary, step):
        labels[index] = label
    neutral[boundary:pivot:step] = True


def assign_labels(values: np.ndarray, flags: np.ndarray, percent: float) -> np.ndarray:
    """Label every bar from the pivots in `flags`.

    On each side of a pivot, bars far from the pivot value carry the direction
    of the move: toward a top they are "1", away from it "-1", and the reverse
    for a bottom. Bars within `percent` of the swing to the neighboring pivot
    (or series end) are neutral, as are pivots themselves. Bars never reached
    stay unset. The result depends only on the inputs, so re-running after a
    reset gives the same labels.
    """
    if not PERCENT_LOW < percent < PERCENT_HIGH:
        raise ValueError(f"percent must be in ({PERCENT_LOW:g}, {PERCENT_HIGH:g}), got {percent}.")
    series = np.asarray(values, dtype="float64")
    flags = np.asarray(flags)
    if len(series) != len(flags):
        raise ValueError(f"values and flags differ in length: {len(series)} != {len(flags)}")

    total = len(series)
    labels = np.full(total, LABEL_UNSET, dtype=object)
    neutral = np.zeros(total, dtype=bool)
    pivots = np.flatnonzero(flags)

    for position, pivot in enumerate(pivots):
        direction = int(flags[pivot])
        previous = int(pivots[position - 1]) if position > 0 else 0
        following = int(pivots[position + 1]) if position + 1 < len(pivots) else total - 1
        _label_side(labels, neutral, series, int(pivot), previous, direction_label(direction), percent)
        _label_side(labels, neutral, series, int(pivot), following, direction_label(-direction), percent)
        neutral[pivot] = True

    labels[neutral] = LABEL_NEUTRAL
    return labels
