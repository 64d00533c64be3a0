"""Coverage report location, parsing and aggregation."""

from covwatch.adapters.coverage.aggregate import (
    build_file_coverage,
    parse_condition_coverage,
    percentage,
)
from covwatch.adapters.coverage.cobertura import parse_cobertura_file, parse_cobertura_string
from covwatch.adapters.coverage.locator import (
    LocatedReport,
    extract_run_id,
    find_latest_report,
    find_results_dirs,
)

__all__ = [
    "LocatedReport",
    "build_file_coverage",
    "extract_run_id",
    "find_latest_report",
    "find_results_dirs",
    "parse_cobertura_file",
    "parse_cobertura_string",
    "parse_condition_coverage",
    "percentage",
]
