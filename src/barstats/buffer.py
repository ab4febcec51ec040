"""Fixed-capacity history window with random access by offset."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from typing import Generic, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Keeps the most recent `capacity` items; pushing into a full buffer evicts the oldest.

    `last(0)` is the newest item and `first(0)` the oldest one. Readers must not
    assume the buffer is full: `len()` is the number of items actually held.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError(f"RingBuffer capacity must be > 0, got {capacity}.")
        self._items: deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    def push(self, item: T) -> T | None:
        """Append `item`; return the evicted item when the buffer was full."""
        evicted = self._items[0] if self.is_full() else None
        self._items.append(item)
        return evicted

    def last(self, offset: int = 0) -> T:
        """Item `offset` steps back from the newest one."""
        if offset < 0 or offset >= len(self._items):
            raise IndexError(f"Offset from newest out of range: {offset} (size={len(self._items)})")
        return self._items[-1 - offset]

    def first(self, offset: int = 0) -> T:
        """Item `offset` steps forward from the oldest one."""
        if offset < 0 or offset >= len(self._items):
            raise IndexError(f"Offset from oldest out of range: {offset} (size={len(self._items)})")
        return self._items[offset]

    def tail(self, count: int) -> list[T]:
        """Up to `count` newest items, oldest first."""
        if count <= 0:
            return []
        start = max(0, len(self._items) - count)
        return [self._items[index] for index in range(start, len(self._items))]

    def is_full(self) -> bool:
        return len(self._items) == self.capacity

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)
