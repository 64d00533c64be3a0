"""Derived coverage statistics.

Turns the raw per-line and per-method records pulled out of a coverage report
into ``FileCoverage`` values with consistent counters and percentages.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from covwatch.models.coverage import BranchInfo, FileCoverage, LineRecord, MethodRecord

# "<pct>% (<covered>/<total>)", e.g. "50% (1/2)"
_CONDITION_TOKENS = 2
_PERCENT_TOKEN = re.compile(r"^\d+(?:\.\d+)?%$")
_FRACTION_TOKEN = re.compile(r"^\((\d+)/(\d+)\)$")


def percentage(covered: int, total: int) -> float:
    """Return ``100 * covered / total``, or 0.0 when *total* is zero."""
    if total <= 0:
        return 0.0
    return covered * 100.0 / total


def parse_condition_coverage(value: str) -> BranchInfo | None:
    """Parse a compact branch condition string such as ``"50% (1/2)"``.

    Returns ``None`` for anything that deviates from that shape, including a
    covered count larger than the total.
    """
    tokens = value.split()
    if len(tokens) != _CONDITION_TOKENS:
        return None
    if not _PERCENT_TOKEN.match(tokens[0]):
        return None
    fraction = _FRACTION_TOKEN.match(tokens[1])
    if fraction is None:
        return None
    covered, total = int(fraction.group(1)), int(fraction.group(2))
    if covered > total:
        return None
    return BranchInfo(covered=covered, total=total, percentage=percentage(covered, total))


@dataclass
class MethodLines:
    """Raw method data collected while walking a ``<method>`` element."""

    name: str
    signature: str
    line_rate: float
    complexity: int
    line_numbers: list[int] = field(default_factory=list)

    def to_record(self) -> MethodRecord:
        start = min(self.line_numbers) if self.line_numbers else 0
        end = max(self.line_numbers) if self.line_numbers else 0
        return MethodRecord(
            name=self.name,
            signature=self.signature,
            line_coverage=self.line_rate * 100.0,
            start_line=start,
            end_line=end,
            complexity=self.complexity,
        )


def build_file_coverage(
    path: str,
    lines: list[LineRecord],
    methods: list[MethodLines],
) -> FileCoverage:
    """Aggregate line and method records into a ``FileCoverage``.

    Counters are derived from *lines* so that
    ``covered_lines + len(uncovered_lines) == total_lines == len(lines)``.
    A line number that appears more than once is counted once; its hits are
    summed and its branch data is taken from the first occurrence carrying any.
    """
    merged: dict[int, LineRecord] = {}
    for line in lines:
        previous = merged.get(line.number)
        if previous is None:
            merged[line.number] = line
            continue
        merged[line.number] = LineRecord(
            number=line.number,
            hits=previous.hits + line.hits,
            is_branch=previous.is_branch or line.is_branch,
            branch=previous.branch or line.branch,
        )

    ordered = [merged[number] for number in sorted(merged)]
    uncovered = tuple(line.number for line in ordered if not line.is_covered)
    covered_lines = len(ordered) - len(uncovered)
    covered_branches = sum(line.branch.covered for line in ordered if line.branch)
    total_branches = sum(line.branch.total for line in ordered if line.branch)

    return FileCoverage(
        path=path,
        line_coverage=percentage(covered_lines, len(ordered)),
        branch_coverage=percentage(covered_branches, total_branches),
        covered_lines=covered_lines,
        total_lines=len(ordered),
        covered_branches=covered_branches,
        total_branches=total_branches,
        uncovered_lines=uncovered,
        lines=tuple(ordered),
        methods=tuple(method.to_record() for method in methods),
    )
