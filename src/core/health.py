"""Per-stage run reports and summaries."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

STATUS_PENDING = "pending"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"
STATUS_SKIPPED = "skipped"


@dataclass
class StructuredError:
    """Structured error payload attached to a stage report."""

    stage: str
    code: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class StageReport:
    """Outcome of one pipeline stage."""

    stage: str
    status: str = STATUS_PENDING
    rows_in: int = 0
    rows_out: int = 0
    writes_submitted: int = 0
    writes_failed: int = 0
    high_water_mark: int | None = None
    errors: list[StructuredError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize report as a JSON-ready dictionary."""
        return asdict(self)


def add_error(report: StageReport, code: str, message: str, **context: Any) -> None:
    """Append a structured error into report."""
    report.errors.append(StructuredError(stage=report.stage, code=code, message=message, context=context))


def finalize_report(report: StageReport, *, cancelled: bool = False) -> StageReport:
    """Settle the final status of a stage once its writes have drained."""
    if report.errors or report.writes_failed:
        report.status = STATUS_FAILED
    elif cancelled:
        report.status = STATUS_CANCELLED
    else:
        report.status = STATUS_SUCCESS
    return report


def summarize_reports(reports: list[StageReport]) -> dict[str, Any]:
    """Build a run summary across all stages."""
    statuses = [item.status for item in reports]
    if STATUS_FAILED in statuses:
        overall = STATUS_FAILED
    elif STATUS_CANCELLED in statuses:
        overall = STATUS_CANCELLED
    else:
        overall = STATUS_SUCCESS

    return {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "status": overall,
        "total_stages": len(reports),
        "succeeded_stages": sum(1 for item in reports if item.status == STATUS_SUCCESS),
        "failed_stages": [item.stage for item in reports if item.status == STATUS_FAILED],
        "skipped_stages": [item.stage for item in reports if item.status == STATUS_SKIPPED],
        "total_rows_out": sum(item.rows_out for item in reports),
        "total_writes_failed": sum(item.writes_failed for item in reports),
        "stages": [item.to_dict() for item in reports],
    }
