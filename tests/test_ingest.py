"""Tests for bar file ingestion and the bar source."""

from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from barstats.ingest import Bar, BarSource, read_bar_file


def test_read_bar_file_reads_comma_delimited_file(tmp_path: Path) -> None:
    src = tmp_path / "comma.csv"
    src.write_text(
        "\n".join(
            [
                "ts,open,high,low,close",
                "2024-01-01T00:00:00Z,1,2,0.5,1.5",
            ]
        ),
        encoding="utf-8",
    )

    frame = read_bar_file(src)
    assert list(frame.columns) == ["ts", "open", "high", "low", "close"]
    assert len(frame) == 1


def test_read_bar_file_reads_semicolon_delimited_file(tmp_path: Path) -> None:
    src = tmp_path / "semicolon.csv"
    src.write_text(
        "\n".join(
            [
                "ts;open;high;low;close",
                "2024-01-01T00:00:00Z;1;2;0.5;1.5",
            ]
        ),
        encoding="utf-8",
    )

    frame = read_bar_file(src)
    assert list(frame.columns) == ["ts", "open", "high", "low", "close"]
    assert len(frame) == 1


def test_read_bar_file_missing_path(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="Bar file does not exist"):
        read_bar_file(tmp_path / "missing.csv")


def test_bar_source_from_file_maps_aliases_and_orders_bars(tmp_path: Path) -> None:
    src = tmp_path / "bars.csv"
    src.write_text(
        "\n".join(
            [
                "Timestamp,O,H,L,C",
                "2024-01-01 00:02:00,3,4,2,3.5",
                "2024-01-01 00:00:00,1,2,0.5,1.5",
                "2024-01-01 00:01:00,2,3,1,2.5",
                "2024-01-01 00:01:00,2,3,1,2.75",
            ]
        ),
        encoding="utf-8",
    )

    source = BarSource.from_file(src)
    t0 = int(pd.Timestamp("2024-01-01", tz="UTC").value // 1_000_000)

    assert source.count() == 3
    assert source.read()["time"].tolist() == [t0, t0 + 60_000, t0 + 120_000]
    assert source.read()["close"].tolist() == [1.5, 2.75, 3.5]
    assert source.count(after=t0) == 2
    assert source.index_after(None) == 0
    assert source.index_after(t0 + 60_000) == 2
    assert source.index_after(t0 + 59_999) == 1
    assert list(source.iter_bars(2)) == [Bar(time=t0 + 120_000, open=3.0, high=4.0, low=2.0, close=3.5)]


def test_bar_source_reads_parquet(tmp_path: Path) -> None:
    frame = pd.DataFrame({"time": [2000, 1000], "open": [2.0, 1.0], "high": [2.0, 1.0], "low": [2.0, 1.0], "close": [2.0, 1.0]})
    src = tmp_path / "bars.parquet"
    frame.to_parquet(src, index=False)

    source = BarSource.from_file(src)
    assert source.read()["time"].tolist() == [1000, 2000]
    assert source.read(after=1000)["close"].tolist() == [2.0]
