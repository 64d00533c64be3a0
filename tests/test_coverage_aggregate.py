"""Tests for derived coverage statistics (adapters/coverage/aggregate.py)."""

from __future__ import annotations

import pytest

from covwatch.adapters.coverage.aggregate import (
    MethodLines,
    build_file_coverage,
    parse_condition_coverage,
    percentage,
)
from covwatch.models.coverage import BranchInfo, LineRecord

# ── percentage ───────────────────────────────────────────────────


def test_percentage_of_zero_total_is_zero() -> None:
    assert percentage(0, 0) == 0.0
    assert percentage(3, 0) == 0.0


def test_percentage_basic() -> None:
    assert percentage(1, 4) == 25.0
    assert percentage(17, 20) == pytest.approx(85.0)


# ── Condition coverage ───────────────────────────────────────────


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("50% (1/2)", BranchInfo(covered=1, total=2, percentage=50.0)),
        ("100% (4/4)", BranchInfo(covered=4, total=4, percentage=100.0)),
        ("0% (0/2)", BranchInfo(covered=0, total=2, percentage=0.0)),
        ("33.33% (1/3)", BranchInfo(covered=1, total=3, percentage=100.0 / 3)),
        ("0% (0/0)", BranchInfo(covered=0, total=0, percentage=0.0)),
    ],
)
def test_parse_condition_coverage_valid(value: str, expected: BranchInfo) -> None:
    assert parse_condition_coverage(value) == expected


@pytest.mark.parametrize(
    "value",
    ["bogus", "", "50%", "50% 1/2", "50% (1/2) extra", "half (1/2)", "50% (3/2)", "50% (a/b)"],
)
def test_parse_condition_coverage_malformed(value: str) -> None:
    assert parse_condition_coverage(value) is None


# ── File aggregation ─────────────────────────────────────────────


def test_build_file_coverage_counts() -> None:
    lines = [
        LineRecord(number=3, hits=0),
        LineRecord(number=1, hits=2),
        LineRecord(
            number=2,
            hits=1,
            is_branch=True,
            branch=BranchInfo(covered=1, total=2, percentage=50.0),
        ),
    ]

    file = build_file_coverage("src/A.cs", lines, [])

    assert [ln.number for ln in file.lines] == [1, 2, 3]
    assert file.covered_lines == 2
    assert file.total_lines == 3
    assert file.uncovered_lines == (3,)
    assert file.line_coverage == pytest.approx(200.0 / 3)
    assert file.covered_branches == 1
    assert file.total_branches == 2
    assert file.branch_coverage == 50.0


def test_duplicate_line_numbers_merge_hits() -> None:
    lines = [
        LineRecord(number=5, hits=0),
        LineRecord(number=5, hits=3),
        LineRecord(number=6, hits=0),
        LineRecord(number=6, hits=0),
    ]

    file = build_file_coverage("src/B.cs", lines, [])

    assert file.total_lines == 2
    assert file.lines[0].hits == 3
    assert file.uncovered_lines == (6,)
    assert file.covered_lines + len(file.uncovered_lines) == file.total_lines


def test_file_without_branches_reports_zero_branch_coverage() -> None:
    file = build_file_coverage("src/C.cs", [LineRecord(number=1, hits=1)], [])

    assert file.total_branches == 0
    assert file.branch_coverage == 0.0


# ── Methods ──────────────────────────────────────────────────────


def test_method_range_from_line_numbers() -> None:
    method = MethodLines(
        name="Run",
        signature="()",
        line_rate=0.75,
        complexity=4,
        line_numbers=[12, 9, 15],
    )

    record = method.to_record()

    assert record.start_line == 9
    assert record.end_line == 15
    assert record.line_coverage == 75.0
    assert record.complexity == 4


def test_method_without_lines_has_zero_range() -> None:
    record = MethodLines(name="Empty", signature="()", line_rate=0.0, complexity=0).to_record()

    assert record.start_line == 0
    assert record.end_line == 0
