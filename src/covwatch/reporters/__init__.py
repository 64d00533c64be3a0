"""Reporters: snapshot publishing and terminal output."""

from covwatch.reporters.snapshot import SnapshotPublisher, load_snapshot
from covwatch.reporters.terminal import WatchReporter, coverage_grade, log_coverage_summary

__all__ = [
    "SnapshotPublisher",
    "WatchReporter",
    "coverage_grade",
    "load_snapshot",
    "log_coverage_summary",
]
