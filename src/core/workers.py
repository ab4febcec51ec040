"""Bounded worker pool for asynchronous table writes."""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any

from core.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class WriteFailure:
    """A write job that raised, with the tag it was submitted under."""

    tag: Any
    error: BaseException


class WritePool:
    """Thread pool with a bounded number of pending jobs and an explicit drain barrier.

    `submit` blocks while `max_pending` jobs are queued or running. Jobs are
    handed to the executor in submission order; they may complete in any
    order. `drain` waits for every job submitted since the previous drain and
    returns the failures instead of raising, so the caller decides how to
    unwind a stage.
    """

    def __init__(self, max_workers: int = 4, max_pending: int = 32, name: str = "writer") -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0.")
        if max_pending <= 0:
            raise ValueError("max_pending must be > 0.")
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._slots = threading.BoundedSemaphore(max_pending)
        self._futures: dict[Future, Any] = {}
        self._lock = threading.Lock()
        self._closed = False
        self.submitted = 0

    def submit(self, fn: Callable[..., Any], *args: Any, tag: Any = None) -> Future:
        """Queue `fn(*args)`; blocks while the pending queue is full."""
        if self._closed:
            raise RuntimeError("WritePool is closed.")
        self._slots.acquire()
        try:
            future = self._executor.submit(fn, *args)
        except BaseException:
            self._slots.release()
            raise
        future.add_done_callback(self._release_slot)
        with self._lock:
            self._futures[future] = tag
            self.submitted += 1
        return future

    def _release_slot(self, _future: Future) -> None:
        self._slots.release()

    @property
    def pending(self) -> int:
        with self._lock:
            return sum(1 for future in self._futures if not future.done())

    def drain(self) -> list[WriteFailure]:
        """Block until every submitted job finished; return the failed ones."""
        with self._lock:
            futures = dict(self._futures)
            self._futures.clear()

        failures: list[WriteFailure] = []
        for future in as_completed(futures):
            error = future.exception()
            if error is not None:
                tag = futures[future]
                LOGGER.error("Write failed | tag=%s error=%s", tag, error)
                failures.append(WriteFailure(tag=tag, error=error))
        return failures

    def close(self) -> None:
        """Wait for outstanding jobs and stop the worker threads."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)

    def __enter__(self) -> WritePool:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
