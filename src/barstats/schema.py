"""Table layout, feature naming and bar frame enforcement."""

from __future__ import annotations

import re
from typing import Sequence

import numpy as np
import pandas as pd

from barstats.parameters import StatisticsParameters

BAR_COLUMNS: tuple[str, ...] = ("time", "open", "high", "low", "close")
PRICE_COLUMNS: tuple[str, ...] = ("open", "high", "low", "close")

TABLE_SOURCE = "source"
TABLE_RAW = "raw"
TABLE_RANGES = "ranges"
TABLE_NORMALIZED = "normalized"
DERIVED_TABLES: tuple[str, ...] = (TABLE_SOURCE, TABLE_RAW, TABLE_RANGES, TABLE_NORMALIZED)

RANGE_COLUMNS: tuple[str, ...] = ("name", "delta", "minimum", "maximum", "average", "std_dev")

LABEL_UP = "1"
LABEL_DOWN = "-1"
LABEL_NEUTRAL = "0"
LABEL_UNSET = ""

PIVOT_COLUMNS: dict[str, tuple[str, str, str]] = {
    "calc": ("refv_calc", "pivot_calc", "label_calc"),
    "edit": ("refv_edit", "pivot_edit", "label_edit"),
}

CANDLE_DESCRIPTORS: tuple[str, ...] = ("range", "fbody", "pbody", "sign")
CANDLE_RELATIVE_DESCRIPTORS: tuple[str, ...] = ("frelpos", "frelrange", "frelbody")

_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "open": ("open", "o"),
    "high": ("high", "h"),
    "low": ("low", "l"),
    "close": ("close", "c", "price_close"),
}

TIME_ALIAS_PRIORITY: tuple[str, ...] = (
    "time",
    "timestamp",
    "ts",
    "datetime",
    "date",
    "open_time",
)


def _normalize_name(name: str) -> str:
    normalized = re.sub(r"[^a-z0-9]+", "_", str(name).strip().lower())
    normalized = re.sub(r"_+", "_", normalized).strip("_")
    return normalized


def normalize_column_names(columns: Sequence[str]) -> list[str]:
    """Normalize raw dataframe columns into snake_case names."""
    return [_normalize_name(col) for col in columns]


def detect_time_column(columns: Sequence[str]) -> str:
    """Pick the time column following a fixed alias priority."""
    normalized_cols = {_normalize_name(col): col for col in columns}
    for alias in TIME_ALIAS_PRIORITY:
        if alias in normalized_cols:
            return normalized_cols[alias]
    raise ValueError("No time column found. Expected one of: " + ", ".join(TIME_ALIAS_PRIORITY))


def padded(value: int, width: int) -> str:
    return str(value).zfill(width)


def average_column(period: int, width: int) -> str:
    return f"avg_{padded(period, width)}"


def source_columns(params: StatisticsParameters) -> list[str]:
    """Columns of the source table, in storage order."""
    width = params.pad_width
    averages = [average_column(period, width) for period in params.periods]
    pivots = [column for triple in PIVOT_COLUMNS.values() for column in triple]
    return list(BAR_COLUMNS) + averages + pivots


def _to_epoch_ms(values: pd.Series) -> pd.Series:
    if pd.api.types.is_datetime64_any_dtype(values):
        parsed = values if values.dt.tz is not None else values.dt.tz_localize("UTC")
    elif pd.api.types.is_numeric_dtype(values):
        numeric = pd.to_numeric(values, errors="coerce")
        if numeric.isna().any():
            raise ValueError(f"Unparseable times detected: {int(numeric.isna().sum())}")
        if not np.allclose(numeric, np.round(numeric)):
            raise ValueError("Numeric times must be whole epoch milliseconds.")
        return numeric.round().astype("int64")
    else:
        parsed = pd.to_datetime(values, utc=True, errors="coerce")
    if parsed.isna().any():
        raise ValueError(f"Unparseable times detected: {int(parsed.isna().sum())}")
    return ((parsed - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(milliseconds=1)).astype("int64")


def map_bar_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Rename whatever the file uses into `time/open/high/low/close`."""
    frame = df.copy()
    frame.columns = normalize_column_names(frame.columns)
    rename_map: dict[str, str] = {detect_time_column(frame.columns): "time"}

    columns = set(frame.columns)
    for canonical, candidates in _FIELD_ALIASES.items():
        picked = next((candidate for candidate in candidates if candidate in columns), None)
        if picked is None:
            raise ValueError(f"Could not map required field: {canonical}")
        rename_map[picked] = canonical

    return frame.rename(columns=rename_map).loc[:, list(BAR_COLUMNS)]


def enforce_bar_schema(df: pd.DataFrame) -> tuple[pd.DataFrame, int]:
    """Return bars sorted by unique int64 millisecond time with float64 prices.

    Duplicate times keep the last row. The second element is the number of
    duplicates dropped.
    """
    missing = [col for col in BAR_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    out = df.loc[:, list(BAR_COLUMNS)].copy()
    out["time"] = _to_epoch_ms(out["time"])

    for col in PRICE_COLUMNS:
        original = out[col]
        converted = pd.to_numeric(original, errors="coerce")
        invalid_numeric = int(converted.isna().sum())
        if invalid_numeric > 0:
            raise ValueError(f"Invalid numeric values in {col}: {invalid_numeric}")
        out[col] = converted.astype("float64")

    out = out.sort_values("time", kind="mergesort")
    before = len(out)
    out = out.drop_duplicates(subset=["time"], keep="last")
    dropped = before - len(out)

    if not out["time"].is_monotonic_increasing or out["time"].duplicated().any():
        raise ValueError("Bar times are not strictly increasing after enforcement.")
    return out.reset_index(drop=True), dropped
