"""Per-feature range statistics and the 2-sigma clipped normalizer."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd

from barstats.schema import RANGE_COLUMNS

SIGMA_BAND = 2.0
NORM_LOW = -1.0
NORM_HIGH = 1.0


def compute_ranges(raw: pd.DataFrame, features: Sequence[str]) -> pd.DataFrame:
    """Min, max, mean and population standard deviation per (feature, delta)."""
    features = list(features)
    if raw.empty or not features:
        return pd.DataFrame(columns=list(RANGE_COLUMNS))
    missing = [name for name in features if name not in raw.columns]
    if missing:
        raise ValueError(f"Raw rows are missing features: {missing[:5]}")

    grouped = raw.groupby("delta", sort=True)[features]
    minimum = grouped.min()
    maximum = grouped.max()
    average = grouped.mean()
    std_dev = grouped.std(ddof=0)

    records = []
    for delta in minimum.index:
        for name in features:
            records.append(
                {
                    "name": name,
                    "delta": int(delta),
                    "minimum": float(minimum.at[delta, name]),
                    "maximum": float(maximum.at[delta, name]),
                    "average": float(average.at[delta, name]),
                    "std_dev": float(std_dev.at[delta, name]),
                }
            )
    return pd.DataFrame.from_records(records, columns=list(RANGE_COLUMNS))


@dataclass(frozen=True)
class Normalizer:
    """Linear map from `[data_low, data_high]` onto `[-1, 1]`, saturating outside it."""

    data_low: float
    data_high: float

    @classmethod
    def from_stats(cls, average: float, std_dev: float) -> Normalizer:
        return cls(data_low=average - SIGMA_BAND * std_dev, data_high=average + SIGMA_BAND * std_dev)

    @property
    def degenerate(self) -> bool:
        return self.data_high == self.data_low

    def normalize(self, values: np.ndarray | float) -> np.ndarray:
        values = np.asarray(values, dtype="float64")
        if self.degenerate:
            return np.zeros_like(values)
        clipped = np.clip(values, self.data_low, self.data_high)
        scale = (clipped - self.data_low) / (self.data_high - self.data_low)
        return NORM_LOW + scale * (NORM_HIGH - NORM_LOW)


def build_normalizers(ranges: pd.DataFrame) -> dict[tuple[str, int], Normalizer]:
    return {
        (str(row.name), int(row.delta)): Normalizer.from_stats(float(row.average), float(row.std_dev))
        for row in ranges.itertuples(index=False)
    }


def normalize_frame(
    raw: pd.DataFrame,
    normalizers: dict[tuple[str, int], Normalizer],
    features: Sequence[str],
) -> pd.DataFrame:
    """Normalize raw rows of any delta; keys (`time`, `delta`) are kept as is."""
    deltas = raw["delta"].to_numpy()
    columns = {name: np.zeros(len(raw), dtype="float64") for name in features}
    for delta in np.unique(deltas):
        mask = deltas == delta
        for name in features:
            normalizer = normalizers.get((name, int(delta)))
            if normalizer is None:
                raise KeyError(f"No range statistics for feature={name} delta={delta}")
            columns[name][mask] = normalizer.normalize(raw[name].to_numpy()[mask])
    return pd.DataFrame({"time": raw["time"].to_numpy(), "delta": deltas, **columns})
