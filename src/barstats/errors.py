"""Exceptions raised by pipeline stages."""

from __future__ import annotations

PIVOT_CONSISTENCY = "PIVOT_CONSISTENCY"
STAGE_WRITE_FAILED = "STAGE_WRITE_FAILED"


class PivotConsistencyError(RuntimeError):
    """A bar qualified as both top and bottom on both sides; input is malformed (NaN) or logic is broken."""


class StageWriteError(RuntimeError):
    """One or more writes of a stage failed; the stage was rolled back to its last complete batch."""

    def __init__(self, stage: str, failures: int, message: str) -> None:
        super().__init__(message)
        self.stage = stage
        self.failures = failures


class RunCancelled(Exception):
    """Raised inside a stage when the cancel event is observed between bars."""
