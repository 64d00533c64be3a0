"""Coverage snapshot publisher.

Writes the latest ``CoverageReport`` as ``TestResults/latest-coverage.json``
for editor integrations, and prunes old per-run result directories.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any

from covwatch.adapters.coverage.locator import (
    DEFAULT_EXCLUDED_SEGMENTS,
    DEFAULT_RESULTS_DIR_NAME,
    find_results_dirs,
)

if TYPE_CHECKING:
    from covwatch.models.coverage import CoverageReport

logger = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_NAME = "latest-coverage.json"


def _write_atomic(path: Path, content: str) -> None:
    """Write *content* to *path* via a sibling temp file and ``os.replace``."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise


def load_snapshot(path: Path) -> dict[str, Any] | None:
    """Read a published snapshot back, or return None if absent or unreadable."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Cannot read coverage snapshot %s: %s", path, e)
        return None
    return data if isinstance(data, dict) else None


class SnapshotPublisher:
    """Publish coverage snapshots and prune old results under a project root."""

    def __init__(
        self,
        root: Path,
        *,
        results_dir_name: str = DEFAULT_RESULTS_DIR_NAME,
        snapshot_name: str = DEFAULT_SNAPSHOT_NAME,
        excluded: frozenset[str] = DEFAULT_EXCLUDED_SEGMENTS,
    ) -> None:
        self._root = root
        self._results_dir_name = results_dir_name
        self._snapshot_name = snapshot_name
        self._excluded = excluded

    def _results_dirs(self) -> list[Path]:
        return find_results_dirs(
            self._root, dir_name=self._results_dir_name, excluded=self._excluded
        )

    def snapshot_path(self) -> Path | None:
        """Return where the snapshot goes: inside the first results directory."""
        dirs = self._results_dirs()
        return dirs[0] / self._snapshot_name if dirs else None

    def publish(self, report: CoverageReport) -> Path | None:
        """Write *report* as JSON, replacing any previous snapshot wholesale.

        Returns:
            The snapshot path, or None when there is no results directory yet.

        Raises:
            OSError: If the snapshot cannot be written.
        """
        target = self.snapshot_path()
        if target is None:
            logger.warning(
                "Cannot write coverage snapshot: no %s directory under %s",
                self._results_dir_name,
                self._root,
            )
            return None

        content = json.dumps(report.to_dict(), indent=2, ensure_ascii=False)
        _write_atomic(target, content)
        logger.debug("Coverage snapshot written to %s", target)
        return target

    def prune(self, retain_count: int) -> list[Path]:
        """Delete all but the *retain_count* newest subdirectories of each results dir.

        Deletion failures are logged and skipped.

        Returns:
            The directories that were removed.
        """
        removed: list[Path] = []
        for results_dir in self._results_dirs():
            removed.extend(self._prune_dir(results_dir, retain_count))
        return removed

    def _prune_dir(self, results_dir: Path, retain_count: int) -> list[Path]:
        entries: list[tuple[float, str, Path]] = []
        try:
            for child in results_dir.iterdir():
                if child.is_dir() and not child.is_symlink():
                    entries.append((child.stat().st_mtime, str(child), child))
        except OSError as e:
            logger.debug("Cannot list %s for pruning: %s", results_dir, e)
            return []

        entries.sort(reverse=True)
        removed: list[Path] = []
        for _mtime, _name, stale in entries[max(retain_count, 0) :]:
            try:
                shutil.rmtree(stale)
            except OSError as e:
                logger.debug("Error cleaning up test results %s: %s", stale, e)
                continue
            logger.debug("Cleaned up old test results: %s", stale.name)
            removed.append(stale)
        return removed
