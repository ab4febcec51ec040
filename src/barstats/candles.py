"""Synthetic multi-bar candles folded from the history window, and their shape descriptors."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

import numpy as np

from barstats.buffer import RingBuffer
from barstats.calculators import rel
from barstats.schema import CANDLE_DESCRIPTORS, CANDLE_RELATIVE_DESCRIPTORS, padded


@dataclass(frozen=True)
class Candle:
    """OHLC of a group of consecutive bars."""

    open: float
    high: float
    low: float
    close: float
    bars: int

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def body(self) -> float:
        return abs(self.open - self.close)

    @property
    def body_factor(self) -> float:
        if self.range == 0:
            return 1.0
        return min(self.body, self.range) / self.range

    @property
    def body_pos(self) -> float:
        if self.range == 0:
            return 1.0
        center = (self.open + self.close) / 2
        return (center - self.low) / self.range

    @property
    def sign(self) -> float:
        return float(np.sign(self.close - self.open)) * self.body_factor

    @property
    def weighted_close(self) -> float:
        return (self.high + self.low + 2 * self.close) / 4


def candle_size(periods: Sequence[int], level: int) -> int:
    """Bars per candle at `level`: the previous period, or 1 for the first level."""
    return 1 if level == 0 else periods[level - 1]


def candle_count(periods: Sequence[int], level: int) -> int:
    """Candles tracked at `level`; shorter levels keep more of them."""
    return (periods[level] // candle_size(periods, level)) * (len(periods) - level)


def candle_columns(size: int, count: int, width: int) -> list[str]:
    """Feature names for one level, candle 0 being the newest."""
    columns: list[str] = []
    for index in range(count):
        prefix = f"candle_{padded(size, width)}_{padded(index, width)}_"
        columns.extend(prefix + name for name in CANDLE_DESCRIPTORS)
        if index < count - 1:
            columns.extend(prefix + name for name in CANDLE_RELATIVE_DESCRIPTORS)
    return columns


def fold_candle(bars: Sequence[Mapping[str, float]]) -> Candle:
    """Fold bars (oldest first) into one candle."""
    if not bars:
        raise ValueError("Cannot fold an empty group of bars.")
    return Candle(
        open=float(bars[0]["open"]),
        high=max(float(bar["high"]) for bar in bars),
        low=min(float(bar["low"]) for bar in bars),
        close=float(bars[-1]["close"]),
        bars=len(bars),
    )


def aggregate_candles(history: RingBuffer, size: int, count: int) -> list[Candle | None]:
    """Group the newest bars backward into `count` candles of `size` bars, newest candle first.

    The oldest group may be shorter than `size`; groups with no bars left are `None`.
    """
    if size <= 0 or count <= 0:
        raise ValueError(f"Candle size and count must be > 0, got size={size} count={count}.")
    total = len(history)
    candles: list[Candle | None] = []
    for index in range(count):
        end = total - size * index
        start = max(0, end - size)
        if end <= 0:
            candles.append(None)
            continue
        candles.append(fold_candle([history.first(offset) for offset in range(start, end)]))
    return candles


def describe_candles(candles: Sequence[Candle | None]) -> list[float]:
    """Descriptor values in the order produced by `candle_columns`."""
    values: list[float] = []
    last = len(candles) - 1
    for index, candle in enumerate(candles):
        if candle is None:
            values.extend([0.0] * len(CANDLE_DESCRIPTORS))
        else:
            values.extend([candle.range, candle.body_factor, candle.body_pos, candle.sign])
        if index == last:
            continue
        older = candles[index + 1]
        if candle is None or older is None:
            values.extend([0.0] * len(CANDLE_RELATIVE_DESCRIPTORS))
        else:
            values.extend(
                [
                    rel(candle.weighted_close, older.weighted_close),
                    rel(candle.range, older.range),
                    rel(candle.body, older.body),
                ]
            )
    return values
