"""Tests for the bounded write pool."""

from __future__ import annotations

import threading
import time

import pytest

from core.workers import WritePool


def test_drain_waits_for_all_jobs() -> None:
    results: list[int] = []
    lock = threading.Lock()

    def job(value: int) -> None:
        time.sleep(0.001 * (value % 3))
        with lock:
            results.append(value)

    with WritePool(max_workers=3, max_pending=2) as pool:
        for value in range(20):
            pool.submit(job, value, tag=value)
        assert pool.drain() == []
        assert sorted(results) == list(range(20))
        assert pool.submitted == 20
        assert pool.pending == 0


def test_drain_collects_failures_with_tags() -> None:
    def job(value: int) -> None:
        if value in (3, 7):
            raise OSError(f"disk full at {value}")

    with WritePool(max_workers=2, max_pending=4) as pool:
        for value in range(10):
            pool.submit(job, value, tag=value)
        failures = pool.drain()

    assert sorted(item.tag for item in failures) == [3, 7]
    assert all(isinstance(item.error, OSError) for item in failures)


def test_submit_blocks_while_queue_is_full() -> None:
    release = threading.Event()
    started = threading.Event()

    with WritePool(max_workers=1, max_pending=1) as pool:
        pool.submit(release.wait, 5)

        def submit_second() -> None:
            started.set()
            pool.submit(lambda: None)

        thread = threading.Thread(target=submit_second)
        thread.start()
        started.wait(1)
        time.sleep(0.05)
        assert thread.is_alive()

        release.set()
        thread.join(2)
        assert not thread.is_alive()
        assert pool.drain() == []


def test_closed_pool_rejects_work() -> None:
    pool = WritePool(max_workers=1, max_pending=1)
    pool.close()
    with pytest.raises(RuntimeError, match="closed"):
        pool.submit(lambda: None)
    with pytest.raises(ValueError):
        WritePool(max_workers=0)
