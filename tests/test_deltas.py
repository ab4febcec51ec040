"""Tests for delta-history expansion."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import pandas as pd
import pytest

from barstats.deltas import DeltaHistoryExpander


def _rows(count: int) -> list[dict[str, float]]:
    return [{"time": index, "delta": 0, "x": float(index * index), "y": 10.0 - index} for index in range(count)]


def _expand_with_shift(raw: pd.DataFrame, lookbacks: Sequence[int], features: Sequence[str]) -> pd.DataFrame:
    """Reference expansion of a whole delta-0 frame using pandas shifts."""
    base = raw.sort_values("time").reset_index(drop=True)
    features = list(features)
    frames = [base.loc[:, ["time", "delta", *features]]]
    for delta, lookback in enumerate(lookbacks, start=1):
        frame = base[features] - base[features].shift(lookback, fill_value=0.0)
        frame.insert(0, "delta", delta)
        frame.insert(0, "time", base["time"].to_numpy())
        frames.append(frame)
    return pd.concat(frames, ignore_index=True).sort_values(["time", "delta"], kind="mergesort").reset_index(drop=True)


def test_push_emits_one_row_per_lookback() -> None:
    expander = DeltaHistoryExpander([1, 3], ["x", "y"])
    emitted = [expander.push(row) for row in _rows(5)]

    assert all(len(rows) == 2 for rows in emitted)
    assert [row["delta"] for row in emitted[4]] == [1, 2]
    # x = t^2: 16 - 9 and 16 - 1
    assert emitted[4][0]["x"] == pytest.approx(7.0)
    assert emitted[4][1]["x"] == pytest.approx(15.0)
    # fewer than 3 prior rows: compared against zeros
    assert emitted[2][1]["x"] == pytest.approx(4.0)
    assert emitted[2][1]["y"] == pytest.approx(8.0)


def test_row_volume_grows_by_one_plus_k() -> None:
    rng = np.random.default_rng(3)
    for lookbacks in ([1], [2, 5], [1, 4, 9, 16]):
        count = int(rng.integers(1, 40))
        expander = DeltaHistoryExpander(lookbacks, ["x", "y"])
        produced = [row for base in _rows(count) for row in [base, *expander.push(base)]]
        assert len(produced) == (1 + len(lookbacks)) * count
        assert sorted({row["delta"] for row in produced}) == list(range(len(lookbacks) + 1))


def test_incremental_matches_shifted_differences() -> None:
    rows = _rows(12)
    expander = DeltaHistoryExpander([2, 7], ["x", "y"])
    incremental = [row for base in rows for row in [base, *expander.push(base)]]

    expected = _expand_with_shift(pd.DataFrame(rows), [2, 7], ["x", "y"])
    actual = pd.DataFrame(incremental).sort_values(["time", "delta"], kind="mergesort").reset_index(drop=True)
    pd.testing.assert_frame_equal(actual[expected.columns], expected, check_dtype=False)


def test_no_lookbacks_emits_nothing() -> None:
    expander = DeltaHistoryExpander([], ["x"])
    assert expander.push(_rows(1)[0]) == []
    with pytest.raises(ValueError):
        DeltaHistoryExpander([0], ["x"])
