"""CLI entrypoint for the bar statistics pipeline."""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from barstats.ingest import BarSource
from barstats.parameters import load_parameters
from barstats.pipeline import RunOptions, run_statistics
from barstats.store import ParquetTableStore
from core.config import RUN_MODES, load_config
from core.health import STATUS_CANCELLED, STATUS_SUCCESS
from core.io_atomic import atomic_write_json
from core.logging import get_logger, setup_logging
from core.paths import build_report_path

LOGGER = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Compute averages, pivots, labels and normalized features from price bars.")
    parser.add_argument("--config", type=Path, default=PROJECT_ROOT / "configs" / "statistics.yaml", help="YAML config path.")
    parser.add_argument("--mode", choices=RUN_MODES, default=None, help="Override run_mode from the config.")
    parser.add_argument("--run-id", type=str, default="", help="Custom run id. Default: current UTC timestamp.")
    parser.add_argument("--progress", action="store_true", help="Show progress bars.")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level.")
    return parser.parse_args(argv)


def _install_interrupt_handler(cancel: threading.Event) -> Any:
    """First Ctrl-C requests a clean stop; the pipeline finishes in-flight writes.

    Returns the previous SIGINT handler, or None when not on the main thread.
    """

    def _handler(signum: int, _frame: object) -> None:
        LOGGER.warning("Interrupt received | signal=%d; stopping after current bar", signum)
        cancel.set()

    if threading.current_thread() is not threading.main_thread():
        return None
    return signal.signal(signal.SIGINT, _handler)


def main(argv: list[str] | None = None) -> int:
    """Run pipeline and return process exit code."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    cfg = load_config(args.config)
    params = load_parameters(args.config)
    mode = args.mode or cfg.run_mode
    run_id = args.run_id.strip() or datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")

    LOGGER.info(
        "Run layout | run_id=%s bars=%s store_root=%s mode=%s averages=%s",
        run_id,
        cfg.bars_path,
        cfg.store_root,
        mode,
        ", ".join(str(spec) for spec in params.averages),
    )

    source = BarSource.from_file(cfg.bars_path)
    store = ParquetTableStore(cfg.store_root)
    options = RunOptions(
        mode=mode,
        writer_threads=cfg.writer_threads,
        writer_queue_size=cfg.writer_queue_size,
        batch_rows=cfg.batch_rows,
        show_progress=args.progress,
    )

    cancel = threading.Event()
    previous_handler = _install_interrupt_handler(cancel)
    try:
        report = run_statistics(source, store, params, options, cancel=cancel)
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)

    if report.error is not None:
        LOGGER.error("Run stopped | stage=%s failures=%d error=%s", report.error.stage, report.error.failures, report.error)

    summary = report.to_dict()
    summary["run_id"] = run_id
    summary["bars_path"] = str(cfg.bars_path)
    summary_path = build_report_path(cfg.store_root, run_id)
    atomic_write_json(summary, summary_path)
    LOGGER.info("Summary report written to %s | status=%s", summary_path, summary["status"])

    if summary["status"] == STATUS_SUCCESS:
        return EXIT_OK
    if summary["status"] == STATUS_CANCELLED:
        return EXIT_CANCELLED
    return EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
