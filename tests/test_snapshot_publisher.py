"""Tests for snapshot publishing and result pruning (reporters/snapshot.py)."""

from __future__ import annotations

import json
import os
import shutil
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from covwatch.models.coverage import (
    BranchInfo,
    CoverageReport,
    CoverageSummary,
    FileCoverage,
    LineRecord,
    MethodRecord,
)
from covwatch.reporters.snapshot import SnapshotPublisher, load_snapshot


def _report(run_id: str = "run-1", line_coverage: float = 50.0) -> CoverageReport:
    lines = (
        LineRecord(number=1, hits=1),
        LineRecord(
            number=2,
            hits=0,
            is_branch=True,
            branch=BranchInfo(covered=1, total=2, percentage=50.0),
        ),
    )
    file = FileCoverage(
        path="src/Calculator.cs",
        line_coverage=line_coverage,
        branch_coverage=50.0,
        covered_lines=1,
        total_lines=2,
        covered_branches=1,
        total_branches=2,
        uncovered_lines=(2,),
        lines=lines,
        methods=(
            MethodRecord(
                name="Add",
                signature="(System.Int32,System.Int32)",
                line_coverage=100.0,
                start_line=1,
                end_line=2,
                complexity=1,
            ),
        ),
    )
    return CoverageReport(
        timestamp=datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC),
        run_id=run_id,
        summary=CoverageSummary(
            line_coverage=line_coverage,
            branch_coverage=50.0,
            covered_lines=1,
            total_lines=2,
            covered_branches=1,
            total_branches=2,
        ),
        files=(file,),
    )


def _make_run_dirs(results: Path, count: int) -> list[Path]:
    """Create *count* run directories with increasing modification times."""
    dirs = []
    for i in range(count):
        d = results / f"run-{i:02d}"
        d.mkdir(parents=True)
        (d / "coverage.cobertura.xml").write_text("<coverage/>", encoding="utf-8")
        os.utime(d, (1_000 + i, 1_000 + i))
        dirs.append(d)
    return dirs


# ── Publishing ───────────────────────────────────────────────────


class TestPublish:
    def test_snapshot_written_into_results_dir(self, tmp_path: Path) -> None:
        (tmp_path / "TestResults").mkdir()
        publisher = SnapshotPublisher(tmp_path)

        path = publisher.publish(_report())

        assert path == tmp_path / "TestResults" / "latest-coverage.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["timestamp"] == "2026-01-02T03:04:05+00:00"
        assert data["testRunId"] == "run-1"
        assert data["summary"] == {
            "lineCoverage": 50.0,
            "branchCoverage": 50.0,
            "coveredLines": 1,
            "totalLines": 2,
            "coveredBranches": 1,
            "totalBranches": 2,
        }

    def test_snapshot_uses_camel_case_and_omits_absent_branch(self, tmp_path: Path) -> None:
        (tmp_path / "TestResults").mkdir()

        path = SnapshotPublisher(tmp_path).publish(_report())

        assert path is not None
        file = json.loads(path.read_text(encoding="utf-8"))["files"][0]
        assert file["path"] == "src/Calculator.cs"
        assert file["uncoveredLines"] == [2]
        assert file["lines"][0] == {"number": 1, "hits": 1, "isBranch": False}
        assert file["lines"][1]["branchCoverage"] == {
            "covered": 1,
            "total": 2,
            "percentage": 50.0,
        }
        assert file["methods"][0] == {
            "name": "Add",
            "signature": "(System.Int32,System.Int32)",
            "lineCoverage": 100.0,
            "startLine": 1,
            "endLine": 2,
            "complexity": 1,
        }

    def test_publish_replaces_previous_snapshot(self, tmp_path: Path) -> None:
        (tmp_path / "TestResults").mkdir()
        publisher = SnapshotPublisher(tmp_path)

        publisher.publish(_report(run_id="first", line_coverage=10.0))
        path = publisher.publish(_report(run_id="second", line_coverage=90.0))

        assert path is not None
        data = load_snapshot(path)
        assert data is not None
        assert data["testRunId"] == "second"
        assert data["summary"]["lineCoverage"] == 90.0
        leftovers = [p.name for p in path.parent.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_no_results_dir_is_a_no_op(self, tmp_path: Path) -> None:
        publisher = SnapshotPublisher(tmp_path)

        assert publisher.snapshot_path() is None
        assert publisher.publish(_report()) is None
        assert list(tmp_path.iterdir()) == []

    def test_first_results_dir_is_used(self, tmp_path: Path) -> None:
        (tmp_path / "Tests" / "TestResults").mkdir(parents=True)
        (tmp_path / "TestResults").mkdir()

        path = SnapshotPublisher(tmp_path).publish(_report())

        assert path == tmp_path / "TestResults" / "latest-coverage.json"

    def test_write_failure_propagates_and_keeps_old_snapshot(self, tmp_path: Path) -> None:
        (tmp_path / "TestResults").mkdir()
        publisher = SnapshotPublisher(tmp_path)
        path = publisher.publish(_report(run_id="old"))
        assert path is not None

        with (
            patch("covwatch.reporters.snapshot.os.replace", side_effect=OSError("disk full")),
            pytest.raises(OSError, match="disk full"),
        ):
            publisher.publish(_report(run_id="new"))

        data = load_snapshot(path)
        assert data is not None
        assert data["testRunId"] == "old"
        assert [p.name for p in path.parent.iterdir()] == ["latest-coverage.json"]


# ── Read-back ────────────────────────────────────────────────────


class TestLoadSnapshot:
    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_snapshot(tmp_path / "latest-coverage.json") is None

    def test_corrupt_file(self, tmp_path: Path) -> None:
        path = tmp_path / "latest-coverage.json"
        path.write_text("{not json", encoding="utf-8")

        assert load_snapshot(path) is None

    def test_non_object_document(self, tmp_path: Path) -> None:
        path = tmp_path / "latest-coverage.json"
        path.write_text("[1, 2]", encoding="utf-8")

        assert load_snapshot(path) is None


# ── Pruning ──────────────────────────────────────────────────────


class TestPrune:
    def test_keeps_newest_directories(self, tmp_path: Path) -> None:
        dirs = _make_run_dirs(tmp_path / "TestResults", 7)

        removed = SnapshotPublisher(tmp_path).prune(5)

        assert sorted(removed) == sorted(dirs[:2])
        remaining = sorted(p for p in (tmp_path / "TestResults").iterdir() if p.is_dir())
        assert remaining == sorted(dirs[2:])

    def test_fewer_than_retain_count_keeps_all(self, tmp_path: Path) -> None:
        dirs = _make_run_dirs(tmp_path / "TestResults", 3)

        assert SnapshotPublisher(tmp_path).prune(5) == []
        assert all(d.is_dir() for d in dirs)

    def test_snapshot_file_is_not_pruned(self, tmp_path: Path) -> None:
        _make_run_dirs(tmp_path / "TestResults", 3)
        publisher = SnapshotPublisher(tmp_path)
        path = publisher.publish(_report())

        publisher.prune(1)

        assert path is not None
        assert path.is_file()

    def test_every_results_dir_is_pruned(self, tmp_path: Path) -> None:
        _make_run_dirs(tmp_path / "A" / "TestResults", 3)
        _make_run_dirs(tmp_path / "B" / "TestResults", 2)

        removed = SnapshotPublisher(tmp_path).prune(1)

        assert len(removed) == 3
        assert len(list((tmp_path / "A" / "TestResults").iterdir())) == 1
        assert len(list((tmp_path / "B" / "TestResults").iterdir())) == 1

    def test_deletion_failure_is_skipped(self, tmp_path: Path) -> None:
        dirs = _make_run_dirs(tmp_path / "TestResults", 4)
        real_rmtree = shutil.rmtree

        def _flaky_rmtree(path: Path) -> None:
            if path == dirs[0]:
                raise PermissionError("locked")
            real_rmtree(path)

        with patch("covwatch.reporters.snapshot.shutil.rmtree", side_effect=_flaky_rmtree):
            removed = SnapshotPublisher(tmp_path).prune(2)

        assert removed == [dirs[1]]
        assert dirs[0].is_dir()
        assert not dirs[1].exists()
