"""Locate the newest coverage report written by the test command."""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_RESULTS_DIR_NAME = "TestResults"
DEFAULT_REPORT_FILE_NAME = "coverage.cobertura.xml"
DEFAULT_EXCLUDED_SEGMENTS: frozenset[str] = frozenset({"bin", "obj"})


@dataclass(frozen=True)
class LocatedReport:
    """A coverage report found on disk."""

    path: Path
    run_id: str
    """Name of the containing directory when it is a UUID, else empty."""


def has_excluded_segment(path: Path, excluded: frozenset[str] | set[str]) -> bool:
    """Return True if any component of *path* is a build-output directory."""
    return any(part in excluded for part in path.parts)


def extract_run_id(report_path: Path) -> str:
    """Return the parent directory name if it is a well-formed UUID."""
    name = report_path.parent.name
    try:
        uuid.UUID(name)
    except ValueError:
        return ""
    return name


def find_results_dirs(
    root: Path,
    *,
    dir_name: str = DEFAULT_RESULTS_DIR_NAME,
    excluded: frozenset[str] = DEFAULT_EXCLUDED_SEGMENTS,
) -> list[Path]:
    """Find all directories literally named *dir_name* under *root*.

    Build-output trees are pruned during the walk. Results are sorted by path
    so "first" is stable (the shallowest, alphabetically earliest comes first).
    """
    found: list[Path] = []
    try:
        for dirpath, dirnames, _filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in excluded)
            current = Path(dirpath)
            if current.name == dir_name and not has_excluded_segment(
                current.relative_to(root), excluded
            ):
                found.append(current)
    except OSError as e:
        logger.warning("Failed to scan %s for %s directories: %s", root, dir_name, e)
    return sorted(found, key=lambda p: (len(p.relative_to(root).parts), str(p)))


def find_latest_report(
    root: Path,
    *,
    report_file_name: str = DEFAULT_REPORT_FILE_NAME,
    dir_name: str = DEFAULT_RESULTS_DIR_NAME,
    excluded: frozenset[str] = DEFAULT_EXCLUDED_SEGMENTS,
    newer_than: float | None = None,
) -> LocatedReport | None:
    """Find the most recently written coverage report under *root*.

    Candidates are all files named *report_file_name* anywhere below any
    results directory. The newest modification time wins; ties are broken by
    the lexicographically greatest full path. With *newer_than*, reports whose
    modification time (epoch seconds) is older are ignored, so a run never
    picks up the report of an earlier run.

    Returns:
        The located report, or None when there is no results directory or no
        report in any of them.
    """
    results_dirs = find_results_dirs(root, dir_name=dir_name, excluded=excluded)
    if not results_dirs:
        logger.warning("Coverage: no %s directories found under %s", dir_name, root)
        return None

    best: tuple[float, str] | None = None
    best_path: Path | None = None
    seen: set[Path] = set()
    for results_dir in results_dirs:
        for candidate in results_dir.rglob(report_file_name):
            if candidate in seen or not candidate.is_file():
                continue
            seen.add(candidate)
            try:
                key = (candidate.stat().st_mtime, str(candidate))
            except OSError:
                continue
            if newer_than is not None and key[0] < newer_than:
                continue
            if best is None or key > best:
                best, best_path = key, candidate

    if best_path is None:
        logger.warning("Coverage: no %s files found in %s directories", report_file_name, dir_name)
        logger.warning("Coverage: make sure the test project references coverlet.collector")
        return None

    logger.debug("Latest coverage report: %s", best_path)
    return LocatedReport(path=best_path, run_id=extract_run_id(best_path))
