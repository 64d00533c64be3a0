"""Coverage report models.

These are value objects: a ``CoverageReport`` is built once per successful
pipeline run and never mutated afterwards. ``to_dict`` renders the published
snapshot shape (lower-camel-case keys, absent optional fields omitted).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class BranchInfo:
    """Branch coverage parsed from a ``condition-coverage`` attribute."""

    covered: int
    """Number of branch outcomes taken."""

    total: int
    """Number of branch outcomes available."""

    percentage: float
    """``100 * covered / total``, or 0.0 when ``total`` is zero."""

    def to_dict(self) -> dict[str, Any]:
        return {"covered": self.covered, "total": self.total, "percentage": self.percentage}


@dataclass(frozen=True)
class LineRecord:
    """Coverage for a single source line."""

    number: int
    hits: int
    is_branch: bool = False
    """True when the line carried a non-empty condition-coverage attribute."""

    branch: BranchInfo | None = None
    """Parsed branch data; ``None`` for plain lines and malformed conditions."""

    @property
    def is_covered(self) -> bool:
        """Return True if this line was executed at least once."""
        return self.hits > 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "number": self.number,
            "hits": self.hits,
            "isBranch": self.is_branch,
        }
        if self.branch is not None:
            data["branchCoverage"] = self.branch.to_dict()
        return data


@dataclass(frozen=True)
class MethodRecord:
    """Coverage for a single method of a class."""

    name: str
    signature: str
    line_coverage: float
    """Method line coverage percentage (0.0-100.0)."""

    start_line: int = 0
    """Lowest line number in the method, 0 when it has no lines."""

    end_line: int = 0
    """Highest line number in the method, 0 when it has no lines."""

    complexity: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "signature": self.signature,
            "lineCoverage": self.line_coverage,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "complexity": self.complexity,
        }


@dataclass(frozen=True)
class FileCoverage:
    """Coverage data for a single source file.

    ``covered_lines + len(uncovered_lines) == total_lines == len(lines)``.
    """

    path: str
    line_coverage: float
    branch_coverage: float
    covered_lines: int
    total_lines: int
    covered_branches: int
    total_branches: int
    uncovered_lines: tuple[int, ...] = ()
    """Ascending, unique line numbers with zero hits."""

    lines: tuple[LineRecord, ...] = ()
    methods: tuple[MethodRecord, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "lineCoverage": self.line_coverage,
            "branchCoverage": self.branch_coverage,
            "coveredLines": self.covered_lines,
            "totalLines": self.total_lines,
            "coveredBranches": self.covered_branches,
            "totalBranches": self.total_branches,
            "uncoveredLines": list(self.uncovered_lines),
            "lines": [line.to_dict() for line in self.lines],
            "methods": [method.to_dict() for method in self.methods],
        }


@dataclass(frozen=True)
class CoverageSummary:
    """Report-wide totals taken from the root element of the coverage report."""

    line_coverage: float = 0.0
    branch_coverage: float = 0.0
    covered_lines: int = 0
    total_lines: int = 0
    covered_branches: int = 0
    total_branches: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "lineCoverage": self.line_coverage,
            "branchCoverage": self.branch_coverage,
            "coveredLines": self.covered_lines,
            "totalLines": self.total_lines,
            "coveredBranches": self.covered_branches,
            "totalBranches": self.total_branches,
        }


@dataclass(frozen=True)
class CoverageReport:
    """Complete coverage result for one test run."""

    timestamp: datetime
    """When the report was parsed."""

    run_id: str = ""
    """Test run identifier (UUID directory name), empty when unknown."""

    summary: CoverageSummary = field(default_factory=CoverageSummary)
    files: tuple[FileCoverage, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-compatible snapshot document."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "testRunId": self.run_id,
            "summary": self.summary.to_dict(),
            "files": [file.to_dict() for file in self.files],
        }
