"""Per-bar raw feature rows: averages, derived scalars and candle descriptors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from barstats.averages import MovingAverage
from barstats.buffer import RingBuffer
from barstats.calculators import (
    CALC_AVERAGE,
    CALC_AVG_DELTA,
    CALC_AVG_SLOPE,
    CALC_AVG_SPREAD,
    CALC_CANDLE,
    CALC_VAR_SLOPE,
    CALC_VAR_SPREAD,
    CALC_VARIANCE,
    FeatureCalc,
    slope,
    spread,
    variance,
)
from barstats.candles import aggregate_candles, candle_columns, candle_count, candle_size, describe_candles
from barstats.ingest import Bar
from barstats.parameters import StatisticsParameters
from barstats.schema import LABEL_UNSET, average_column, padded


def build_calculators(params: StatisticsParameters) -> list[FeatureCalc]:
    """Calculators in evaluation order; averages come first since everything else reads them."""
    width = params.pad_width
    periods = params.periods
    pad = [padded(period, width) for period in periods]
    avg = [average_column(period, width) for period in periods]
    size = len(periods)

    calcs = [FeatureCalc(CALC_AVERAGE, (avg[i],), ("close",), period=periods[i]) for i in range(size)]
    calcs += [
        FeatureCalc(CALC_AVG_DELTA, (f"avg_delta_{pad[i]}",), ("close", avg[i]), period=periods[i]) for i in range(size)
    ]
    calcs += [FeatureCalc(CALC_AVG_SLOPE, (f"avg_slope_{pad[i]}",), (avg[i],)) for i in range(size)]
    calcs += [
        FeatureCalc(CALC_AVG_SPREAD, (f"avg_spread_{pad[i]}_{pad[j]}",), (avg[i], avg[j]))
        for i in range(size)
        for j in range(i + 1, size)
    ]

    variances = [
        FeatureCalc(CALC_VARIANCE, (f"var_{pad[i]}_{pad[j]}_{pad[k]}",), (avg[i], avg[j]), period=periods[k])
        for i in range(size)
        for j in range(i + 1, size)
        for k in range(j, size)
    ]
    calcs += variances
    var_names = [calc.columns[0] for calc in variances]
    calcs += [FeatureCalc(CALC_VAR_SLOPE, (f"var_slope_{name[4:]}",), (name,)) for name in var_names]
    calcs += [
        FeatureCalc(CALC_VAR_SPREAD, (f"var_spread_{fast[4:]}_{slow[4:]}",), (fast, slow))
        for fast, slow in zip(var_names, var_names[1:])
    ]

    for level in range(size):
        candle_bars = candle_size(periods, level)
        count = candle_count(periods, level)
        calcs.append(
            FeatureCalc(CALC_CANDLE, tuple(candle_columns(candle_bars, count, width)), size=candle_bars, count=count)
        )
    return calcs


def feature_columns(params: StatisticsParameters) -> list[str]:
    """Raw feature names in storage order."""
    return [
        column for calc in build_calculators(params) if calc.kind != CALC_AVERAGE for column in calc.columns
    ]


@dataclass
class CalcContext:
    """Everything a calculator may read for the newest bar."""

    history: RingBuffer
    closes: list[float]
    averages: dict[str, MovingAverage]
    current: dict[str, Any]
    previous: dict[str, Any] | None


def evaluate_calc(calc: FeatureCalc, ctx: CalcContext) -> list[float]:
    """Run one calculator against the context; values line up with `calc.columns`."""
    newest = ctx.history.last(0)
    if calc.kind == CALC_AVERAGE:
        return [ctx.averages[calc.columns[0]].update(ctx.closes)]
    if calc.kind in (CALC_AVG_DELTA, CALC_VARIANCE):
        fast, slow = calc.inputs
        return [variance(ctx.history.tail(calc.period), fast, slow)]
    if calc.kind == CALC_AVG_SLOPE:
        (column,) = calc.inputs
        previous = ctx.history.last(1)[column] if len(ctx.history) > 1 else None
        return [slope(newest[column], previous)]
    if calc.kind == CALC_AVG_SPREAD:
        fast, slow = calc.inputs
        return [spread(newest[fast], newest[slow])]
    if calc.kind == CALC_VAR_SLOPE:
        (column,) = calc.inputs
        previous = ctx.previous[column] if ctx.previous is not None else None
        return [slope(ctx.current[column], previous)]
    if calc.kind == CALC_VAR_SPREAD:
        fast, slow = calc.inputs
        return [spread(ctx.current[fast], ctx.current[slow])]
    if calc.kind == CALC_CANDLE:
        return describe_candles(aggregate_candles(ctx.history, calc.size, calc.count))
    raise ValueError(f"Unknown calculator kind: {calc.kind!r}")


class RawFeatureBuilder:
    """Consumes bars in time order and emits the source row and delta-0 raw row of each."""

    def __init__(self, params: StatisticsParameters) -> None:
        self.params = params
        self.calcs = build_calculators(params)
        self.feature_columns = [
            column for calc in self.calcs if calc.kind != CALC_AVERAGE for column in calc.columns
        ]
        self.history: RingBuffer = RingBuffer(params.max_period)
        self._averages = {
            average_column(spec.period, params.pad_width): MovingAverage(spec) for spec in params.averages
        }
        self._previous: dict[str, Any] | None = None

    def push(self, bar: Bar) -> tuple[dict[str, Any], dict[str, Any]]:
        """Consume the next bar; return its source row and delta-0 raw row."""
        row: dict[str, Any] = {
            "time": int(bar.time),
            "open": float(bar.open),
            "high": float(bar.high),
            "low": float(bar.low),
            "close": float(bar.close),
        }
        self.history.push(row)

        raw: dict[str, Any] = {"time": row["time"], "delta": 0}
        ctx = CalcContext(
            history=self.history,
            closes=[float(item["close"]) for item in self.history],
            averages=self._averages,
            current=raw,
            previous=self._previous,
        )
        for calc in self.calcs:
            target = row if calc.kind == CALC_AVERAGE else raw
            target.update(zip(calc.columns, evaluate_calc(calc, ctx)))
        self._previous = raw

        source = dict(row)
        source.update(
            refv_calc=float(row["close"]),
            pivot_calc=0,
            label_calc=LABEL_UNSET,
            refv_edit=float(row["close"]),
            pivot_edit=0,
            label_edit=LABEL_UNSET,
        )
        return source, raw
