"""Statistics parameters: averages, zig-zag horizon, label thresholds and delta lookbacks."""

from __future__ import annotations

import numbers
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from core.config import read_yaml_mapping

AVERAGE_KINDS = ("SMA", "WMA")
PERCENT_LOW = 0.0
PERCENT_HIGH = 50.0


def _check_integer(value: Any, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ValueError(f"{name} must be an integer, got {value!r}.")


@dataclass(frozen=True)
class AverageSpec:
    """One configured moving average, optionally smoothed by further averages of the same kind."""

    kind: str
    period: int
    smooths: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if self.kind not in AVERAGE_KINDS:
            raise ValueError(f"Unsupported average kind: {self.kind!r}. Expected one of {AVERAGE_KINDS}.")
        _check_integer(self.period, "Average period")
        if self.period <= 0:
            raise ValueError(f"Average period must be > 0, got {self.period}.")
        for smooth in self.smooths:
            _check_integer(smooth, "Smoothing period")
            if smooth <= 0:
                raise ValueError(f"Smoothing period must be > 0, got {smooth} for {self.kind}({self.period}).")

    @property
    def lookback(self) -> int:
        """Bars that influence one output value, smoothing chain included."""
        return self.period + sum(smooth - 1 for smooth in self.smooths)

    def __str__(self) -> str:
        label = f"{self.kind}({self.period})"
        if self.smooths:
            label += " (" + ", ".join(str(smooth) for smooth in self.smooths) + ")"
        return label


@dataclass(frozen=True)
class StatisticsParameters:
    """Immutable parameter set shared by every pipeline stage."""

    averages: tuple[AverageSpec, ...]
    bars_ahead: int
    percent_calc: float
    percent_edit: float
    deltas: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        validate_parameters(self)

    @property
    def periods(self) -> tuple[int, ...]:
        return tuple(spec.period for spec in self.averages)

    @property
    def max_period(self) -> int:
        return self.averages[-1].period

    @property
    def pad_width(self) -> int:
        """Digits used to zero-pad periods and candle indices in feature names."""
        return len(str(self.max_period))

    @property
    def warmup_bars(self) -> int:
        """Bars to replay before resuming so every stateful window is rebuilt exactly."""
        longest_average = max(spec.lookback for spec in self.averages)
        longest_delta = max(self.deltas, default=0)
        return self.max_period + longest_average + longest_delta + 1


def validate_parameters(params: StatisticsParameters) -> None:
    """Reject parameter sets the calculators cannot work with."""
    if not params.averages:
        raise ValueError("At least one average must be configured.")

    periods = [spec.period for spec in params.averages]
    for previous, current in zip(periods, periods[1:]):
        if current == previous:
            raise ValueError(f"Average periods must be unique, {current} is repeated.")
        if current < previous:
            raise ValueError(f"Average periods must be strictly increasing: {periods}.")

    _check_integer(params.bars_ahead, "bars_ahead")
    if params.bars_ahead <= 0:
        raise ValueError(f"bars_ahead must be > 0, got {params.bars_ahead}.")

    for name, value in (("percent_calc", params.percent_calc), ("percent_edit", params.percent_edit)):
        if not PERCENT_LOW < value < PERCENT_HIGH:
            raise ValueError(f"{name} must be in ({PERCENT_LOW:g}, {PERCENT_HIGH:g}), got {value}.")

    if len(set(params.deltas)) != len(params.deltas):
        raise ValueError(f"Delta lookbacks must be distinct: {list(params.deltas)}.")
    for delta in params.deltas:
        _check_integer(delta, "Delta lookback")
        if delta <= 0:
            raise ValueError(f"Delta lookbacks must be > 0, got {delta}.")


def _get_required(data: dict[str, Any], key: str) -> Any:
    if key not in data:
        raise KeyError(f"Missing required statistics key: {key}")
    return data[key]


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}.")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}.") from exc
    if number != value and not isinstance(value, str):
        raise ValueError(f"{name} must be an integer, got {value!r}.")
    return number


def _parse_average(item: Any, position: int) -> AverageSpec:
    if not isinstance(item, dict):
        raise ValueError(f"averages[{position}] must be a mapping.")
    smooths = item.get("smooths") or []
    if not isinstance(smooths, Sequence) or isinstance(smooths, str):
        raise ValueError(f"averages[{position}].smooths must be a list.")
    return AverageSpec(
        kind=str(_get_required(item, "type")).upper(),
        period=_as_int(_get_required(item, "period"), f"averages[{position}].period"),
        smooths=tuple(_as_int(value, f"averages[{position}].smooths") for value in smooths),
    )


def parse_parameters(raw: dict[str, Any]) -> StatisticsParameters:
    """Build validated parameters from the `statistics` mapping of a config file."""
    averages = _get_required(raw, "averages")
    if not isinstance(averages, list):
        raise ValueError("averages must be a list.")

    zig_zag = raw.get("zig_zag") or {}
    label_calc = raw.get("label_calc") or {}
    label_edit = raw.get("label_edit") or {}
    deltas = raw.get("deltas") or []
    if not isinstance(deltas, list):
        raise ValueError("deltas must be a list.")

    return StatisticsParameters(
        averages=tuple(_parse_average(item, position) for position, item in enumerate(averages)),
        bars_ahead=_as_int(_get_required(zig_zag, "bars_ahead"), "zig_zag.bars_ahead"),
        percent_calc=float(_get_required(label_calc, "percent")),
        percent_edit=float(label_edit.get("percent", label_calc.get("percent"))),
        deltas=tuple(_as_int(value, "deltas") for value in deltas),
    )


def load_parameters(path: Path) -> StatisticsParameters:
    """Load the `statistics` section of a YAML config file."""
    raw = read_yaml_mapping(path)
    section = _get_required(raw, "statistics")
    if not isinstance(section, dict):
        raise ValueError("statistics must be a mapping.")
    return parse_parameters(section)
