"""Relative-difference primitives and the tagged feature calculator type."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

CALC_AVERAGE = "average"
CALC_AVG_DELTA = "avg_delta"
CALC_AVG_SLOPE = "avg_slope"
CALC_AVG_SPREAD = "avg_spread"
CALC_VARIANCE = "variance"
CALC_VAR_SLOPE = "var_slope"
CALC_VAR_SPREAD = "var_spread"
CALC_CANDLE = "candle"

CALC_KINDS: tuple[str, ...] = (
    CALC_AVERAGE,
    CALC_AVG_DELTA,
    CALC_AVG_SLOPE,
    CALC_AVG_SPREAD,
    CALC_VARIANCE,
    CALC_VAR_SLOPE,
    CALC_VAR_SPREAD,
    CALC_CANDLE,
)


def rel(value: float, reference: float) -> float:
    """Relative difference `(value - reference) / reference`, 0 when `reference` is 0."""
    if reference == 0:
        return 0.0
    return (value - reference) / reference


def slope(current: float, previous: float | None) -> float:
    """Change versus the previous bar; 0 on the first bar."""
    if previous is None:
        return 0.0
    return rel(current, previous)


def spread(fast: float, slow: float) -> float:
    return rel(fast, slow)


def variance(rows: Sequence[Mapping[str, float]], fast: str, slow: str) -> float:
    """Mean relative gap `rel(fast, slow)` over `rows`; 0 where the series coincide.

    Not a statistical variance: it measures how far the faster series sits from
    the slower one, on average, over the trailing rows handed in.
    """
    if not rows:
        return 0.0
    total = 0.0
    for row in rows:
        total += rel(float(row[fast]), float(row[slow]))
    return total / len(rows)


@dataclass(frozen=True)
class FeatureCalc:
    """One feature calculator and the parameters it needs.

    `columns` are the output names; `inputs` are the columns read from the
    source history (averages, deltas, slopes of averages, spreads of averages)
    or from the raw row being built (slopes and spreads of variances).
    Candle calculators produce every descriptor of one candle level at once.
    """

    kind: str
    columns: tuple[str, ...]
    inputs: tuple[str, ...] = ()
    period: int = 0
    size: int = 0
    count: int = 0

    def __post_init__(self) -> None:
        if self.kind not in CALC_KINDS:
            raise ValueError(f"Unknown calculator kind: {self.kind!r}")
        if not self.columns:
            raise ValueError(f"Calculator {self.kind} has no output columns.")
