"""Tests for stage report status and run summaries."""

from __future__ import annotations

from core.health import StageReport, add_error, finalize_report, summarize_reports


def test_finalize_report_prefers_failure_over_cancel() -> None:
    assert finalize_report(StageReport(stage="raw")).status == "success"
    assert finalize_report(StageReport(stage="raw"), cancelled=True).status == "cancelled"

    failed = StageReport(stage="raw")
    add_error(failed, "STAGE_WRITE_FAILED", "disk full", rollback_from=10)
    assert finalize_report(failed, cancelled=True).status == "failed"
    assert failed.errors[0].context == {"rollback_from": 10}

    partial = StageReport(stage="normalize", writes_failed=1)
    assert finalize_report(partial).status == "failed"


def test_summarize_reports_counts_stages() -> None:
    reports = [
        StageReport(stage="raw", status="success", rows_out=30),
        StageReport(stage="pivots", status="cancelled"),
        StageReport(stage="labels", status="skipped"),
    ]
    summary = summarize_reports(reports)

    assert summary["status"] == "cancelled"
    assert summary["total_stages"] == 3
    assert summary["succeeded_stages"] == 1
    assert summary["skipped_stages"] == ["labels"]
    assert summary["total_rows_out"] == 30
    assert summary["stages"][0]["stage"] == "raw"

    reports[2].status = "failed"
    assert summarize_reports(reports)["status"] == "failed"
