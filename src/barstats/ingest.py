"""Bar ingestion: CSV/parquet readers and the ordered bar source."""

from __future__ import annotations

import csv
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from barstats.schema import enforce_bar_schema, map_bar_columns
from core.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class Bar:
    time: int
    open: float
    high: float
    low: float
    close: float


def _detect_delimiter(path: Path) -> str:
    """Detect delimiter from CSV sample. Fallback to comma."""
    with path.open("r", encoding="utf-8", errors="ignore", newline="") as handle:
        sample = handle.read(8192)

    if not sample.strip():
        return ","

    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",;\t|")
    except csv.Error:
        return ","
    return dialect.delimiter


def read_bar_file(path: Path) -> pd.DataFrame:
    """Read a CSV or parquet file of bars as-is."""
    if not path.exists():
        raise FileNotFoundError(f"Bar file does not exist: {path}")
    if not path.is_file():
        raise ValueError(f"Bar path is not a file: {path}")

    try:
        if path.suffix.lower() == ".parquet":
            return pd.read_parquet(path)
        delimiter = _detect_delimiter(path)
        frame = pd.read_csv(path, sep=delimiter)
        if len(frame.columns) == 1 and delimiter != ";" and ";" in str(frame.columns[0]):
            frame = pd.read_csv(path, sep=";")
        return frame
    except Exception as exc:
        raise RuntimeError(f"Failed to read bars: {path}") from exc


class BarSource:
    """Time-ordered, time-unique bars, readable fully or after a given time."""

    def __init__(self, frame: pd.DataFrame) -> None:
        bars, dropped = enforce_bar_schema(frame)
        if dropped:
            LOGGER.warning("Duplicate bar times dropped | rows=%d", dropped)
        self._frame = bars

    @classmethod
    def from_file(cls, path: Path) -> BarSource:
        source = cls(map_bar_columns(read_bar_file(path)))
        LOGGER.info("Bars loaded | path=%s rows=%d", path, source.count())
        return source

    def read(self, after: int | None = None) -> pd.DataFrame:
        if after is None:
            return self._frame.copy()
        return self._frame.loc[self._frame["time"] > after].reset_index(drop=True)

    def count(self, after: int | None = None) -> int:
        if after is None:
            return len(self._frame)
        return int((self._frame["time"] > after).sum())

    def index_after(self, after: int | None) -> int:
        """Position of the first bar newer than `after`."""
        if after is None:
            return 0
        return int(self._frame["time"].searchsorted(after, side="right"))

    def iter_bars(self, start: int = 0) -> Iterator[Bar]:
        """Bars from position `start` onward."""
        for row in self._frame.iloc[start:].itertuples(index=False):
            yield Bar(
                time=int(row.time),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
            )
