"""Simple and weighted moving averages with optional chained smoothing."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from barstats.buffer import RingBuffer
from barstats.parameters import AverageSpec


def wma_weights(span: int) -> np.ndarray:
    """Linear weights 1..span (oldest first) normalized to sum to 1."""
    if span <= 0:
        raise ValueError(f"WMA span must be > 0, got {span}.")
    weights = np.arange(1, span + 1, dtype="float64")
    return weights / weights.sum()


def sma(values: Sequence[float]) -> float:
    """Mean of `values`; callers pass the already clipped window."""
    if len(values) == 0:
        raise ValueError("Cannot average an empty window.")
    return float(sum(values) / len(values))


def wma(values: Sequence[float]) -> float:
    """Linearly weighted mean of `values`, oldest first."""
    if len(values) == 0:
        raise ValueError("Cannot average an empty window.")
    weights = wma_weights(len(values))
    return float(np.dot(weights, np.asarray(values, dtype="float64")))


def average(kind: str, values: Sequence[float]) -> float:
    if kind == "SMA":
        return sma(values)
    if kind == "WMA":
        return wma(values)
    raise ValueError(f"Unsupported average kind: {kind!r}")


class MovingAverage:
    """Stateful average for one `AverageSpec`.

    The base value is computed from the trailing `min(period, available)` closes.
    Each smoothing level keeps its own window of the previous level's outputs
    and re-applies the same kind of average over it.
    """

    def __init__(self, spec: AverageSpec) -> None:
        self.spec = spec
        self._smoothing = [RingBuffer(smooth) for smooth in spec.smooths]

    def update(self, closes: Sequence[float]) -> float:
        """Feed the close history (oldest first) for the newest bar and return the output."""
        value = average(self.spec.kind, closes[-self.spec.period :])
        for window in self._smoothing:
            window.push(value)
            value = average(self.spec.kind, window.tail(len(window)))
        return value

