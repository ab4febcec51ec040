"""Delta-history variants of raw feature rows."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from barstats.buffer import RingBuffer


class DeltaHistoryExpander:
    """Turns each delta-0 row into one extra row per lookback.

    Row `k` (1-based, following the lookback order) holds
    `current - value lookbacks[k-1] rows back`; when the history is shorter
    than the lookback, the older value is taken as 0.
    """

    def __init__(self, lookbacks: Sequence[int], features: Sequence[str]) -> None:
        self.lookbacks = tuple(lookbacks)
        self.features = list(features)
        for lookback in self.lookbacks:
            if lookback <= 0:
                raise ValueError(f"Lookbacks must be > 0, got {lookback}.")
        self._history: RingBuffer | None = RingBuffer(max(self.lookbacks) + 1) if self.lookbacks else None

    def push(self, row: Mapping[str, Any]) -> list[dict[str, Any]]:
        if self._history is None:
            return []
        self._history.push(row)

        rows: list[dict[str, Any]] = []
        for delta, lookback in enumerate(self.lookbacks, start=1):
            expanded: dict[str, Any] = {"time": row["time"], "delta": delta}
            if len(self._history) > lookback:
                older = self._history.last(lookback)
                expanded.update((name, row[name] - older[name]) for name in self.features)
            else:
                expanded.update((name, row[name]) for name in self.features)
            rows.append(expanded)
        return rows

