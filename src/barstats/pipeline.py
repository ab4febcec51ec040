"""Incremental, resumable and cancellable driver for the statistics stages."""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd
from tqdm import tqdm

from barstats.deltas import DeltaHistoryExpander
from barstats.errors import (
    PIVOT_CONSISTENCY,
    STAGE_WRITE_FAILED,
    PivotConsistencyError,
    RunCancelled,
    StageWriteError,
)
from barstats.ingest import BarSource
from barstats.labels import assign_labels
from barstats.parameters import StatisticsParameters
from barstats.pivots import detect_pivots, validate_alternation
from barstats.ranges import build_normalizers, compute_ranges, normalize_frame
from barstats.raw import RawFeatureBuilder, feature_columns
from barstats.schema import (
    DERIVED_TABLES,
    LABEL_UNSET,
    TABLE_NORMALIZED,
    TABLE_RANGES,
    TABLE_RAW,
    TABLE_SOURCE,
    source_columns,
)
from barstats.store import TableStore
from core.config import RUN_MODES
from core.health import (
    STATUS_FAILED,
    STATUS_SKIPPED,
    StageReport,
    add_error,
    finalize_report,
    summarize_reports,
)
from core.logging import get_logger, log_duration
from core.workers import WriteFailure, WritePool

LOGGER = get_logger(__name__)

STAGE_RAW = "raw"
STAGE_PIVOTS = "pivots"
STAGE_LABELS = "labels"
STAGE_RANGES = "ranges"
STAGE_NORMALIZE = "normalize"
STAGES: tuple[str, ...] = (STAGE_RAW, STAGE_PIVOTS, STAGE_LABELS, STAGE_RANGES, STAGE_NORMALIZE)

INCREMENTAL_TABLES: tuple[str, ...] = (TABLE_SOURCE, TABLE_RAW, TABLE_NORMALIZED)

ProgressCallback = Callable[[str, int, int], None]


@dataclass(frozen=True)
class RunOptions:
    """Run mode and write pool sizing."""

    mode: str = "continue"
    writer_threads: int = 4
    writer_queue_size: int = 32
    batch_rows: int = 500
    show_progress: bool = False

    def __post_init__(self) -> None:
        if self.mode not in RUN_MODES:
            raise ValueError(f"mode must be one of {RUN_MODES}, got {self.mode!r}.")
        if self.batch_rows <= 0:
            raise ValueError("batch_rows must be > 0.")


@dataclass
class RunReport:
    """Stage reports of one run plus the write error that stopped it, if any."""

    mode: str
    stages: list[StageReport]
    error: StageWriteError | None = None

    @property
    def status(self) -> str:
        return summarize_reports(self.stages)["status"]

    def stage(self, name: str) -> StageReport:
        for report in self.stages:
            if report.stage == name:
                return report
        raise KeyError(f"Unknown stage: {name}")

    def to_dict(self) -> dict[str, Any]:
        summary = summarize_reports(self.stages)
        summary["mode"] = self.mode
        return summary

    def raise_for_status(self) -> None:
        if self.error is not None:
            raise self.error


@dataclass
class _StageContext:
    source: BarSource
    store: TableStore
    params: StatisticsParameters
    options: RunOptions
    pool: WritePool
    cancel: threading.Event
    progress: ProgressCallback | None
    features: list[str] = field(default_factory=list)

    def cancelled(self) -> bool:
        return self.cancel.is_set()

    def report_progress(self, stage: str, done: int, total: int) -> None:
        if self.progress is not None:
            self.progress(stage, done, total)


def _drain(ctx: _StageContext, report: StageReport, tables: tuple[str, ...]) -> None:
    """Wait for the stage's writes; on failure roll `tables` back to the earliest failed batch."""
    failures = ctx.pool.drain()
    if not failures:
        return

    report.writes_failed = len(failures)
    rollback_from = _earliest_tag(failures)
    if rollback_from is not None:
        for table in tables:
            ctx.store.delete_where(table, lambda frame: frame["time"] >= rollback_from)
    first = failures[0]
    add_error(
        report,
        STAGE_WRITE_FAILED,
        f"{len(failures)} write(s) failed: {first.error}",
        rollback_from=rollback_from,
    )
    raise StageWriteError(report.stage, len(failures), f"Stage {report.stage} failed: {first.error}")


def _earliest_tag(failures: list[WriteFailure]) -> int | None:
    times = [int(item.tag) for item in failures if isinstance(item.tag, (int, np.integer))]
    return min(times) if times else None


def _committed_high_water_mark(store: TableStore) -> int | None:
    """Last time fully present in both the source and raw tables; newer orphans are removed."""
    source_hwm = store.max_time(TABLE_SOURCE)
    raw_hwm = store.max_time(TABLE_RAW, delta=0)
    if source_hwm is None or raw_hwm is None:
        for table in INCREMENTAL_TABLES:
            store.truncate(table)
        return None

    hwm = min(source_hwm, raw_hwm)
    for table in INCREMENTAL_TABLES:
        store.delete_where(table, lambda frame: frame["time"] > hwm)
    return hwm


def _write_batch(
    store: TableStore,
    source_rows: list[dict[str, Any]],
    raw_rows: list[dict[str, Any]],
    source_cols: list[str],
    raw_cols: list[str],
) -> None:
    store.append(TABLE_SOURCE, pd.DataFrame.from_records(source_rows, columns=source_cols))
    store.append(TABLE_RAW, pd.DataFrame.from_records(raw_rows, columns=raw_cols))


def run_raw_stage(ctx: _StageContext, report: StageReport) -> None:
    """Compute source and raw rows for every bar newer than the committed high-water-mark."""
    params = ctx.params
    if ctx.options.mode == "restart":
        for table in DERIVED_TABLES:
            ctx.store.truncate(table)

    hwm = _committed_high_water_mark(ctx.store)
    start = ctx.source.index_after(hwm)
    total = ctx.source.count()
    replay_from = max(0, start - params.warmup_bars)
    pending = total - start
    report.rows_in = pending
    LOGGER.info(
        "Raw stage | mode=%s hwm=%s new_bars=%d replay_bars=%d", ctx.options.mode, hwm, pending, start - replay_from
    )

    builder = RawFeatureBuilder(params)
    expander = DeltaHistoryExpander(params.deltas, builder.feature_columns)
    source_cols = source_columns(params)
    raw_cols = ["time", "delta", *builder.feature_columns]

    source_rows: list[dict[str, Any]] = []
    raw_rows: list[dict[str, Any]] = []
    batch_start: int | None = None
    cancelled = False

    def flush() -> None:
        nonlocal source_rows, raw_rows, batch_start
        if not source_rows:
            return
        ctx.pool.submit(_write_batch, ctx.store, source_rows, raw_rows, source_cols, raw_cols, tag=batch_start)
        report.rows_out += len(raw_rows)
        source_rows, raw_rows, batch_start = [], [], None

    with tqdm(total=pending, desc="raw", unit="bar", disable=not ctx.options.show_progress) as bar_progress:
        for position, bar in enumerate(ctx.source.iter_bars(replay_from), start=replay_from):
            if ctx.cancelled():
                cancelled = True
                break
            source_row, raw_row = builder.push(bar)
            delta_rows = expander.push(raw_row)
            if position < start:
                continue

            if batch_start is None:
                batch_start = source_row["time"]
            source_rows.append(source_row)
            raw_rows.append(raw_row)
            raw_rows.extend(delta_rows)
            if len(source_rows) >= ctx.options.batch_rows:
                flush()

            done = position - start + 1
            bar_progress.update(1)
            ctx.report_progress(STAGE_RAW, done, pending)
        flush()

    _drain(ctx, report, (TABLE_SOURCE, TABLE_RAW))
    report.high_water_mark = ctx.store.max_time(TABLE_SOURCE)
    if cancelled:
        raise RunCancelled(f"Raw stage cancelled; committed up to {report.high_water_mark}.")


def run_pivot_stage(ctx: _StageContext, report: StageReport) -> None:
    """Recompute calculated pivots over the whole source table."""
    frame = ctx.store.read(TABLE_SOURCE)
    report.rows_in = len(frame)
    if frame.empty:
        return

    values = frame["close"].to_numpy(dtype="float64")
    flags = detect_pivots(
        values,
        ctx.params.bars_ahead,
        cancel=ctx.cancel,
        progress=lambda done, total: ctx.report_progress(STAGE_PIVOTS, done, total),
    )
    update = pd.DataFrame({"time": frame["time"].to_numpy(), "refv_calc": values, "pivot_calc": flags.astype("int64")})
    ctx.pool.submit(ctx.store.update, TABLE_SOURCE, update, tag=STAGE_PIVOTS)
    report.rows_out = int(np.count_nonzero(flags))
    _drain(ctx, report, ())
    LOGGER.info("Pivots updated | rows=%d pivots=%d", len(frame), report.rows_out)


def run_label_stage(ctx: _StageContext, report: StageReport) -> None:
    """Recompute calculated and edited labels from a full reset."""
    if ctx.cancelled():
        raise RunCancelled("Label stage cancelled before start.")
    frame = ctx.store.read(TABLE_SOURCE)
    report.rows_in = len(frame)
    if frame.empty:
        return

    label_calc = assign_labels(frame["refv_calc"].to_numpy(), frame["pivot_calc"].to_numpy(), ctx.params.percent_calc)
    edit_flags = frame["pivot_edit"].to_numpy()
    if np.any(edit_flags != 0):
        label_edit = assign_labels(frame["refv_edit"].to_numpy(), edit_flags, ctx.params.percent_edit)
    else:
        label_edit = np.full(len(frame), LABEL_UNSET, dtype=object)

    update = pd.DataFrame({"time": frame["time"].to_numpy(), "label_calc": label_calc, "label_edit": label_edit})
    ctx.pool.submit(ctx.store.update, TABLE_SOURCE, update, tag=STAGE_LABELS)
    report.rows_out = int(np.count_nonzero(label_calc != LABEL_UNSET))
    ctx.report_progress(STAGE_LABELS, len(frame), len(frame))
    _drain(ctx, report, ())


def run_range_stage(ctx: _StageContext, report: StageReport) -> None:
    """Drop and rebuild the range statistics from every raw row."""
    if ctx.cancelled():
        raise RunCancelled("Range stage cancelled before start.")
    raw = ctx.store.read(TABLE_RAW)
    report.rows_in = len(raw)
    ranges = compute_ranges(raw, ctx.features)
    ctx.pool.submit(ctx.store.replace, TABLE_RANGES, ranges, tag=STAGE_RANGES)
    report.rows_out = len(ranges)
    ctx.report_progress(STAGE_RANGES, len(raw), len(raw))
    _drain(ctx, report, ())


def run_normalize_stage(ctx: _StageContext, report: StageReport) -> None:
    """Normalize raw rows newer than the normalized table's high-water-mark."""
    hwm = ctx.store.max_time(TABLE_NORMALIZED, delta=0)
    raw = ctx.store.read(TABLE_RAW, after=hwm)
    report.rows_in = len(raw)
    if raw.empty:
        report.high_water_mark = hwm
        return

    normalizers = build_normalizers(ctx.store.read(TABLE_RANGES))
    times = np.unique(raw["time"].to_numpy())
    raw_times = raw["time"].to_numpy()
    total = len(times)
    cancelled = False

    with tqdm(total=total, desc="normalize", unit="bar", disable=not ctx.options.show_progress) as bar_progress:
        for begin in range(0, total, ctx.options.batch_rows):
            end = min(begin + ctx.options.batch_rows, total)
            for position in range(begin, end):
                if ctx.cancelled():
                    cancelled = True
                    end = position
                    break
                bar_progress.update(1)
                ctx.report_progress(STAGE_NORMALIZE, position + 1, total)
            if end > begin:
                chunk = raw.loc[(raw_times >= times[begin]) & (raw_times <= times[end - 1])]
                normalized = normalize_frame(chunk, normalizers, ctx.features)
                ctx.pool.submit(ctx.store.append, TABLE_NORMALIZED, normalized, tag=int(times[begin]))
                report.rows_out += len(normalized)
            if cancelled:
                break

    _drain(ctx, report, (TABLE_NORMALIZED,))
    report.high_water_mark = ctx.store.max_time(TABLE_NORMALIZED, delta=0)
    if cancelled:
        raise RunCancelled(f"Normalize stage cancelled; committed up to {report.high_water_mark}.")


STAGE_RUNNERS: dict[str, Callable[[_StageContext, StageReport], None]] = {
    STAGE_RAW: run_raw_stage,
    STAGE_PIVOTS: run_pivot_stage,
    STAGE_LABELS: run_label_stage,
    STAGE_RANGES: run_range_stage,
    STAGE_NORMALIZE: run_normalize_stage,
}


def run_statistics(
    source: BarSource,
    store: TableStore,
    params: StatisticsParameters,
    options: RunOptions | None = None,
    *,
    cancel: threading.Event | None = None,
    progress: ProgressCallback | None = None,
) -> RunReport:
    """Drive every stage once, in order.

    Cancellation and write failures stop the run after the current stage has
    drained its writes; the remaining stages are reported as skipped. A pivot
    consistency error aborts the run and propagates.
    """
    options = options or RunOptions()
    reports = [StageReport(stage=name) for name in STAGES]
    run = RunReport(mode=options.mode, stages=reports)

    with WritePool(options.writer_threads, options.writer_queue_size, name="stats-writer") as pool:
        ctx = _StageContext(
            source=source,
            store=store,
            params=params,
            options=options,
            pool=pool,
            cancel=cancel or threading.Event(),
            progress=progress,
            features=feature_columns(params),
        )
        stopped = False
        for report in reports:
            if stopped:
                report.status = STATUS_SKIPPED
                continue
            submitted_before = pool.submitted
            try:
                with log_duration(LOGGER, "Stage finished", stage=report.stage):
                    STAGE_RUNNERS[report.stage](ctx, report)
            except RunCancelled as exc:
                LOGGER.warning("Run cancelled | stage=%s detail=%s", report.stage, exc)
                finalize_report(report, cancelled=True)
                stopped = True
            except StageWriteError as exc:
                finalize_report(report)
                run.error = exc
                stopped = True
            except PivotConsistencyError as exc:
                add_error(report, PIVOT_CONSISTENCY, str(exc))
                report.status = STATUS_FAILED
                pool.drain()
                raise
            else:
                finalize_report(report)
            finally:
                report.writes_submitted = pool.submitted - submitted_before

    LOGGER.info("Run finished | mode=%s status=%s", run.mode, run.status)
    return run


def edit_pivots(store: TableStore, edits: Mapping[int, int]) -> int:
    """Set human-edited pivots by bar time; 0 clears an edit.

    The edited sequence must alternate like calculated pivots. Returns the
    number of rows touched.
    """
    if not edits:
        return 0
    frame = store.read(TABLE_SOURCE)
    if frame.empty:
        raise KeyError("Cannot edit pivots of an empty source table.")

    flags = pd.Series(frame["pivot_edit"].to_numpy(dtype="int64"), index=frame["time"].to_numpy())
    unknown = [time for time in edits if time not in flags.index]
    if unknown:
        raise KeyError(f"Unknown bar times: {unknown[:5]}")
    for time, direction in edits.items():
        flags.loc[time] = int(direction)
    validate_alternation(flags.to_numpy())

    update = pd.DataFrame(
        {
            "time": frame["time"].to_numpy(),
            "refv_edit": frame["close"].to_numpy(dtype="float64"),
            "pivot_edit": flags.to_numpy(),
        }
    )
    store.update(TABLE_SOURCE, update)
    LOGGER.info("Pivots edited | edits=%d pivots=%d", len(edits), int(np.count_nonzero(flags.to_numpy())))
    return len(edits)
