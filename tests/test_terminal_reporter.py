"""Tests for coverage summary logging and terminal output (reporters/terminal.py)."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from io import StringIO

import pytest
from rich.console import Console

from covwatch.models.coverage import CoverageReport, CoverageSummary, FileCoverage
from covwatch.models.pipeline import RunOutcome, RunState, RunStatus
from covwatch.models.test_result import TestFailure
from covwatch.reporters.terminal import WatchReporter, coverage_grade, log_coverage_summary


def _file(path: str, covered: int, total: int) -> FileCoverage:
    return FileCoverage(
        path=path,
        line_coverage=covered * 100.0 / total if total else 0.0,
        branch_coverage=0.0,
        covered_lines=covered,
        total_lines=total,
        covered_branches=0,
        total_branches=0,
        uncovered_lines=tuple(range(covered + 1, total + 1)),
    )


def _report(*, total_branches: int = 0) -> CoverageReport:
    return CoverageReport(
        timestamp=datetime(2026, 1, 1, tzinfo=UTC),
        summary=CoverageSummary(
            line_coverage=62.5,
            branch_coverage=50.0 if total_branches else 0.0,
            covered_lines=10,
            total_lines=16,
            covered_branches=total_branches // 2,
            total_branches=total_branches,
        ),
        files=(
            _file("src/Low.cs", 3, 10),
            _file("src/Good.cs", 9, 10),
            _file("src/Mid.cs", 6, 10),
        ),
    )


def _recording_console() -> tuple[Console, StringIO]:
    buffer = StringIO()
    return Console(file=buffer, width=120, color_system=None), buffer


# ── Grades ───────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("pct", "grade"),
    [
        (100.0, "good"),
        (80.0, "good"),
        (79.9, "warn"),
        (50.0, "warn"),
        (49.9, "poor"),
        (0.0, "poor"),
    ],
)
def test_coverage_grade_default_thresholds(pct: float, grade: str) -> None:
    assert coverage_grade(pct) == grade


def test_coverage_grade_custom_thresholds() -> None:
    assert coverage_grade(85.0, good=90.0, warn=70.0) == "warn"


# ── Summary logging ──────────────────────────────────────────────


def test_summary_logged_with_per_file_breakdown(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="covwatch.reporters.terminal")

    log_coverage_summary(_report())

    messages = [r.getMessage() for r in caplog.records]
    assert messages[0] == "Coverage: 62.5% lines (10/16)"
    assert not any(m.startswith("Branch coverage") for m in messages)
    assert messages[1] == "Coverage by file:"
    assert messages[2:] == [
        "  [OK] Good.cs: 90.0% (9/10 lines)",
        "  [LOW] Mid.cs: 60.0% (6/10 lines)",
        "  [POOR] Low.cs: 30.0% (3/10 lines)",
    ]
    levels = {r.getMessage(): r.levelno for r in caplog.records}
    assert levels["  [OK] Good.cs: 90.0% (9/10 lines)"] == logging.INFO
    assert levels["  [POOR] Low.cs: 30.0% (3/10 lines)"] == logging.WARNING


def test_branch_line_logged_when_branches_exist(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="covwatch.reporters.terminal")

    log_coverage_summary(_report(total_branches=4))

    assert "Branch coverage: 50.0% (2/4)" in [r.getMessage() for r in caplog.records]


# ── Rich output ──────────────────────────────────────────────────


def test_successful_outcome_prints_table() -> None:
    out, buffer = _recording_console()
    reporter = WatchReporter(out=out)

    reporter.print_run_outcome(
        RunOutcome(status=RunStatus.SUCCEEDED, report=_report(), duration_seconds=1.25)
    )

    text = buffer.getvalue()
    assert "Run succeeded (1.2s)" in text or "Run succeeded (1.3s)" in text
    assert "Good.cs" in text
    assert "Overall" in text
    assert "62.5%" in text


def test_failed_outcome_lists_failing_tests() -> None:
    out, buffer = _recording_console()
    reporter = WatchReporter(out=out)

    reporter.print_run_outcome(
        RunOutcome(
            status=RunStatus.FAILED,
            reason="Tests failed with exit code 1",
            failed_step=RunState.TESTING,
            failures=[TestFailure(test_name="MyTests.Add_Test", failure_reason="Expected 4")],
        )
    )

    text = buffer.getvalue()
    assert "Run failed" in text
    assert "Tests failed with exit code 1" in text
    assert "MyTests.Add_Test: Expected 4" in text
