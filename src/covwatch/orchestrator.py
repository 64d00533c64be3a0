"""Single-flight build -> test -> coverage pipeline."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING

from covwatch.adapters.coverage.cobertura import parse_cobertura_file
from covwatch.adapters.coverage.locator import find_latest_report
from covwatch.adapters.unit.dotnet import (
    extract_failing_tests,
    make_build_command,
    make_test_command,
)
from covwatch.models.pipeline import (
    PipelineRun,
    RunOutcome,
    RunState,
    RunStatus,
    Trigger,
)
from covwatch.reporters.snapshot import SnapshotPublisher
from covwatch.reporters.terminal import log_coverage_summary
from covwatch.utils.subprocess_runner import SubprocessResult, SubprocessRunner

if TYPE_CHECKING:
    from covwatch.config import CovwatchConfig
    from covwatch.models.coverage import CoverageReport
    from covwatch.models.test_result import TestFailure

logger = logging.getLogger(__name__)

# Coarse filesystem clocks can stamp a fresh report slightly before the
# wall-clock reading taken at run start.
_MTIME_TOLERANCE = 0.1


def _describe_failure(step: str, result: SubprocessResult) -> str:
    if result.not_found:
        return f"{step} command could not be started: {result.stderr.strip()}"
    if result.timed_out:
        return f"{step} command timed out"
    return f"{step} failed with exit code {result.returncode}"


class _StepFailed(Exception):
    """Internal: aborts the remaining steps of a run."""

    def __init__(self, reason: str, failures: list[TestFailure] | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.failures = failures or []


class PipelineOrchestrator:
    """Runs build, test, locate, parse, publish and prune as one logical run.

    Only one run executes at a time. ``run_once`` called while a run is in
    flight does not start a second run; it records a single follow-up run
    (the latest trigger wins) and waits for that run's outcome. Any number
    of such callers share the same follow-up run.

    ``run_once`` never raises for pipeline failures: every step failure and
    every unexpected exception becomes a ``FAILED`` outcome with a reason.
    """

    def __init__(
        self,
        config: CovwatchConfig,
        *,
        runner: SubprocessRunner | None = None,
        publisher: SnapshotPublisher | None = None,
    ) -> None:
        self._config = config
        self._root = config.root
        self._runner = runner or SubprocessRunner()
        self._publisher = publisher or SnapshotPublisher(
            config.root,
            results_dir_name=config.coverage.results_dir_name,
            snapshot_name=config.coverage.snapshot_name,
            excluded=config.excluded_segments,
        )
        self._lock = asyncio.Lock()
        self._current: PipelineRun | None = None
        self._rerun: asyncio.Future[RunOutcome] | None = None
        self._rerun_trigger: Trigger | None = None
        self._drainer: asyncio.Task[None] | None = None
        self._run_count = 0

    @property
    def busy(self) -> bool:
        """Whether a run is in flight."""
        return self._lock.locked()

    @property
    def state(self) -> RunState:
        """State of the in-flight run, or ``IDLE``."""
        if self._current is None or self._current.finished:
            return RunState.IDLE
        return self._current.state

    @property
    def run_count(self) -> int:
        """Number of runs executed so far."""
        return self._run_count

    async def run_once(self, trigger: Trigger) -> RunOutcome:
        """Execute one pipeline run for *trigger*, or join the pending follow-up run.

        The caller that started the run gets its outcome as soon as that run
        ends; follow-up runs drain in a background task that holds the lock.
        """
        if self._lock.locked():
            return await self._coalesce(trigger)

        await self._lock.acquire()
        try:
            outcome = await self._execute(trigger)
        except BaseException:
            self._release()
            raise
        if self._rerun is None:
            self._release()
        else:
            self._drainer = asyncio.create_task(self._drain_reruns())
        return outcome

    async def aclose(self) -> None:
        """Cancel any follow-up run still draining and wait for it to stop."""
        drainer = self._drainer
        if drainer is None:
            return
        drainer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await drainer
        # Cancelled before its first step: the drain never reached its cleanup.
        if self._drainer is drainer:
            self._release()

    def _release(self) -> None:
        if self._rerun is not None and not self._rerun.done():
            self._rerun.cancel()
        self._rerun = None
        self._rerun_trigger = None
        self._drainer = None
        self._current = None
        self._lock.release()

    async def _coalesce(self, trigger: Trigger) -> RunOutcome:
        if self._rerun is None:
            self._rerun = asyncio.get_running_loop().create_future()
            logger.info("Run in progress; one follow-up run scheduled (%s)", trigger.reason)
        else:
            logger.debug("Run in progress; trigger merged into pending follow-up run")
        self._rerun_trigger = trigger
        return await asyncio.shield(self._rerun)

    async def _drain_reruns(self) -> None:
        try:
            while self._rerun is not None and self._rerun_trigger is not None:
                future, trigger = self._rerun, self._rerun_trigger
                self._rerun, self._rerun_trigger = None, None
                try:
                    outcome = await self._execute(trigger)
                except BaseException:
                    future.cancel()
                    raise
                if not future.done():
                    future.set_result(outcome)
        finally:
            self._release()

    async def _execute(self, trigger: Trigger) -> RunOutcome:
        run = PipelineRun(trigger=trigger)
        self._current = run
        self._run_count += 1
        started = time.perf_counter()
        logger.info("Run %d started (%s)", self._run_count, trigger.reason)

        try:
            report = await self._run_steps(run)
            run.advance(RunState.SUCCEEDED)
            outcome = RunOutcome(status=RunStatus.SUCCEEDED, report=report)
        except _StepFailed as failed:
            outcome = self._fail(run, failed.reason, failed.failures)
        except Exception as exc:
            logger.exception("Unexpected error during %s step", run.state.value)
            outcome = self._fail(run, f"Unexpected error during {run.state.value}: {exc}")

        outcome.duration_seconds = time.perf_counter() - started
        if outcome.succeeded:
            logger.info("Run %d succeeded (%.1fs)", self._run_count, outcome.duration_seconds)
        else:
            logger.warning(
                "Run %d failed (%.1fs): %s",
                self._run_count,
                outcome.duration_seconds,
                outcome.reason,
            )
        return outcome

    @staticmethod
    def _fail(
        run: PipelineRun,
        reason: str,
        failures: list[TestFailure] | None = None,
    ) -> RunOutcome:
        failed_step = run.state
        if not run.finished:
            run.advance(RunState.FAILED)
        return RunOutcome(
            status=RunStatus.FAILED,
            reason=reason,
            failed_step=failed_step,
            failures=failures or [],
        )

    async def _run_steps(self, run: PipelineRun) -> CoverageReport | None:
        run_started_wall = time.time()

        run.advance(RunState.BUILDING)
        await self._build()

        run.advance(RunState.TESTING)
        await self._test()

        if not self._config.coverage.enabled:
            # Coverage off: nothing to locate, parse or publish.
            for state in (RunState.LOCATING_REPORT, RunState.PARSING, RunState.PUBLISHING):
                run.advance(state)
            return None

        run.advance(RunState.LOCATING_REPORT)
        located = find_latest_report(
            self._root,
            report_file_name=self._config.coverage.report_file_name,
            dir_name=self._config.coverage.results_dir_name,
            excluded=self._config.excluded_segments,
            newer_than=run_started_wall - _MTIME_TOLERANCE,
        )
        if located is None:
            logger.info("No coverage available for this run")
            raise _StepFailed("No coverage report produced by the test run")

        run.advance(RunState.PARSING)
        logger.debug("Parsing coverage from %s", located.path)
        report = parse_cobertura_file(located.path, run_id=located.run_id)
        if report is None:
            raise _StepFailed(f"Coverage report could not be parsed: {located.path}")

        run.advance(RunState.PUBLISHING)
        self._publish(report)
        log_coverage_summary(
            report,
            good=self._config.coverage.good_threshold,
            warn=self._config.coverage.warn_threshold,
        )
        return report

    async def _build(self) -> None:
        logger.info("Building...")
        result = await self._runner.run(
            make_build_command(self._config.commands),
            cwd=self._root,
            timeout=self._config.commands.build_timeout,
        )
        if result.success:
            logger.debug("Build succeeded")
            return

        reason = _describe_failure("Build", result)
        logger.warning("%s", reason)
        output = result.stderr.strip() or result.stdout.strip()
        if output:
            logger.warning("Build output:\n%s", output)
        raise _StepFailed(reason)

    async def _test(self) -> None:
        if self._config.test_filter:
            logger.info("Running tests with filter: %s", self._config.test_filter)
        else:
            logger.info("Running tests")
        result = await self._runner.run(
            make_test_command(
                self._config.commands,
                collect_coverage=self._config.coverage.enabled,
                test_filter=self._config.test_filter,
            ),
            cwd=self._root,
            timeout=self._config.commands.test_timeout,
        )
        if result.success:
            logger.info("Tests passed")
            logger.debug("Test output: %s", result.stdout)
            return

        if result.returncode > 0:
            reason = f"Tests failed with exit code {result.returncode}"
        else:
            reason = _describe_failure("Test", result)
        failures = extract_failing_tests(result.stdout)
        if failures:
            logger.warning("Failing tests:")
            for failure in failures:
                logger.warning("   • %s: %s", failure.test_name, failure.failure_reason)
        logger.debug("Full test output: %s", result.stdout)
        if result.stderr.strip():
            logger.debug("Test error output: %s", result.stderr)
        raise _StepFailed(reason, failures)

    def _publish(self, report: CoverageReport) -> None:
        try:
            self._publisher.publish(report)
        except OSError as e:
            logger.warning("Failed to write coverage snapshot: %s", e)
            raise _StepFailed(f"Cannot write coverage snapshot: {e}") from e

        self._publisher.prune(self._config.coverage.retain_count)
