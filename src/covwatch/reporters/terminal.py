"""Coverage summary logging and rich terminal output."""

from __future__ import annotations

import logging
from pathlib import PurePath
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from covwatch.models.coverage import CoverageReport, FileCoverage
    from covwatch.models.pipeline import RunOutcome

logger = logging.getLogger(__name__)

console = Console()

_GOOD_THRESHOLD = 80.0
_WARN_THRESHOLD = 50.0


def coverage_grade(
    percentage: float,
    *,
    good: float = _GOOD_THRESHOLD,
    warn: float = _WARN_THRESHOLD,
) -> str:
    """Return ``"good"``, ``"warn"`` or ``"poor"`` for a line coverage percentage."""
    if percentage >= good:
        return "good"
    if percentage >= warn:
        return "warn"
    return "poor"


_GRADE_COLORS = {"good": "green", "warn": "yellow", "poor": "red"}
_GRADE_MARKS = {"good": "OK", "warn": "LOW", "poor": "POOR"}


def _files_by_coverage(report: CoverageReport) -> list[FileCoverage]:
    return sorted(
        (f for f in report.files if f.total_lines > 0),
        key=lambda f: f.line_coverage,
        reverse=True,
    )


def log_coverage_summary(
    report: CoverageReport,
    *,
    good: float = _GOOD_THRESHOLD,
    warn: float = _WARN_THRESHOLD,
) -> None:
    """Log the report totals followed by a per-file breakdown."""
    summary = report.summary
    logger.info(
        "Coverage: %.1f%% lines (%d/%d)",
        summary.line_coverage,
        summary.covered_lines,
        summary.total_lines,
    )
    if summary.total_branches > 0:
        logger.info(
            "Branch coverage: %.1f%% (%d/%d)",
            summary.branch_coverage,
            summary.covered_branches,
            summary.total_branches,
        )

    files = _files_by_coverage(report)
    if not files:
        return

    logger.info("Coverage by file:")
    for file in files:
        grade = coverage_grade(file.line_coverage, good=good, warn=warn)
        level = logging.INFO if grade == "good" else logging.WARNING
        logger.log(
            level,
            "  [%s] %s: %.1f%% (%d/%d lines)",
            _GRADE_MARKS[grade],
            PurePath(file.path).name,
            file.line_coverage,
            file.covered_lines,
            file.total_lines,
        )


class WatchReporter:
    """Rich terminal output for watch mode run results."""

    def __init__(
        self,
        *,
        good: float = _GOOD_THRESHOLD,
        warn: float = _WARN_THRESHOLD,
        out: Console | None = None,
    ) -> None:
        self.console = out or console
        self._good = good
        self._warn = warn

    def _color(self, percentage: float) -> str:
        return _GRADE_COLORS[coverage_grade(percentage, good=self._good, warn=self._warn)]

    def print_run_outcome(self, outcome: RunOutcome) -> None:
        """Print the terminal state of one run, with failing tests when known."""
        if outcome.succeeded:
            self.console.print(
                f"[green]✓[/green] Run succeeded ({outcome.duration_seconds:.1f}s)"
            )
            if outcome.report is not None:
                self.print_coverage_table(outcome.report)
            return

        self.console.print(
            f"[red]✗[/red] Run failed ({outcome.duration_seconds:.1f}s): {outcome.reason}"
        )
        for failure in outcome.failures:
            self.console.print(f"   • [bold]{failure.test_name}[/bold]: {failure.failure_reason}")

    def print_coverage_table(self, report: CoverageReport) -> None:
        """Print per-file coverage with an overall row."""
        table = Table(title="Coverage", title_style="bold cyan")
        table.add_column("File", style="bold")
        table.add_column("Lines", justify="right")
        table.add_column("Branches", justify="right")
        table.add_column("Uncovered", justify="right")

        for file in _files_by_coverage(report):
            line_color = self._color(file.line_coverage)
            branches = (
                f"{file.branch_coverage:.1f}% ({file.covered_branches}/{file.total_branches})"
                if file.total_branches
                else "-"
            )
            table.add_row(
                PurePath(file.path).name,
                f"[{line_color}]{file.line_coverage:.1f}%[/{line_color}] "
                f"({file.covered_lines}/{file.total_lines})",
                branches,
                str(len(file.uncovered_lines)),
            )

        summary = report.summary
        overall_color = self._color(summary.line_coverage)
        table.add_section()
        table.add_row(
            "[bold]Overall[/bold]",
            f"[bold {overall_color}]{summary.line_coverage:.1f}%[/bold {overall_color}] "
            f"({summary.covered_lines}/{summary.total_lines})",
            f"{summary.branch_coverage:.1f}% ({summary.covered_branches}/{summary.total_branches})",
            "",
        )
        self.console.print(table)
