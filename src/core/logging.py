"""Structured logging helpers shared by the pipeline and the CLI."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure the root logger and return it.

    Existing handlers are kept but re-formatted so that writer threads show up
    by name next to the main scan.
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    formatter = logging.Formatter(LOG_FORMAT)
    if root_logger.handlers:
        for handler in root_logger.handlers:
            handler.setFormatter(formatter)
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Return a named logger."""
    if not name.strip():
        raise ValueError("Logger name cannot be empty.")
    return logging.getLogger(name)


@contextmanager
def log_duration(logger: logging.Logger, event: str, **context: object) -> Iterator[None]:
    """Log `event` with its wall time once the wrapped block exits."""
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - started
        details = " ".join(f"{key}={value}" for key, value in context.items())
        suffix = f" {details}" if details else ""
        logger.info("%s | elapsed_s=%.3f%s", event, elapsed, suffix)
