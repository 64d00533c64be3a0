"""Watch service: wires the file monitor to the pipeline orchestrator."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from covwatch.adapters.coverage.locator import has_excluded_segment
from covwatch.models.pipeline import RunOutcome, Trigger
from covwatch.orchestrator import PipelineOrchestrator
from covwatch.reporters.terminal import WatchReporter
from covwatch.watchers.file_watcher import FileChangeMonitor

if TYPE_CHECKING:
    from pathlib import Path

    from covwatch.config import CovwatchConfig

logger = logging.getLogger(__name__)


def find_project_files(
    root: Path,
    patterns: list[str],
    excluded: frozenset[str],
) -> list[Path]:
    """Return files under *root* matching any of *patterns*, outside build output."""
    found: set[Path] = set()
    for pattern in patterns:
        for candidate in root.glob(pattern):
            if candidate.is_file() and not has_excluded_segment(
                candidate.relative_to(root), excluded
            ):
                found.add(candidate)
    return sorted(found)


class WatchService:
    """Run the pipeline once at startup, then once per settled burst of changes.

    Each trigger is handed to the orchestrator in its own task so the trigger
    stream keeps draining while a run is in flight; the orchestrator folds
    overlapping triggers into a single follow-up run.
    """

    def __init__(
        self,
        config: CovwatchConfig,
        *,
        monitor: FileChangeMonitor | None = None,
        orchestrator: PipelineOrchestrator | None = None,
        reporter: WatchReporter | None = None,
        initial_run: bool = True,
    ) -> None:
        self._config = config
        self._monitor = monitor or FileChangeMonitor.from_config(config)
        self._orchestrator = orchestrator or PipelineOrchestrator(config)
        self._reporter = reporter or WatchReporter(
            good=config.coverage.good_threshold,
            warn=config.coverage.warn_threshold,
        )
        self._initial_run = initial_run
        self._tasks: set[asyncio.Task[None]] = set()
        self._last_reported: RunOutcome | None = None

    @property
    def orchestrator(self) -> PipelineOrchestrator:
        return self._orchestrator

    @property
    def monitor(self) -> FileChangeMonitor:
        return self._monitor

    def detect_project(self) -> list[Path]:
        """Find solution or project files that the build command can act on."""
        return find_project_files(
            self._config.root,
            self._config.watch.project_patterns,
            self._config.excluded_segments,
        )

    async def run(self) -> bool:
        """Serve until the monitor stops or the task is cancelled.

        Returns:
            False if no project was found and monitoring never started.

        Raises:
            WatchError: If the watch cannot be established or fails permanently.
        """
        projects = self.detect_project()
        if not projects:
            logger.error(
                "No project found in %s (looked for: %s)",
                self._config.root,
                ", ".join(self._config.watch.project_patterns),
            )
            return False
        logger.info("Found %d project file(s) in %s", len(projects), self._config.root)
        for project in projects:
            logger.debug("  %s", project)

        await self._monitor.start()
        try:
            if self._initial_run:
                logger.info("Running initial build and tests")
                await self._handle(Trigger(reason="startup"))

            async for trigger in self._monitor.triggers():
                self._spawn(trigger)
        finally:
            await self.shutdown()
        return True

    def _spawn(self, trigger: Trigger) -> None:
        task = asyncio.create_task(self._handle(trigger))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle(self, trigger: Trigger) -> None:
        outcome = await self._orchestrator.run_once(trigger)
        # Callers that joined the same follow-up run receive the same outcome.
        if outcome is self._last_reported:
            return
        self._last_reported = outcome
        self._reporter.print_run_outcome(outcome)

    async def shutdown(self) -> None:
        """Stop monitoring and cancel in-flight runs, killing their child processes."""
        await self._monitor.stop()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        await self._orchestrator.aclose()
