"""Pipeline run and file-change event models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from covwatch.models.coverage import CoverageReport
    from covwatch.models.test_result import TestFailure


class ChangeKind(Enum):
    """Kind of filesystem change that can trigger a run."""

    CREATED = "created"
    MODIFIED = "modified"
    RENAMED = "renamed"


@dataclass(frozen=True)
class ChangeEvent:
    """A qualifying source-file change observed by the monitor."""

    path: str
    kind: ChangeKind
    observed_at: float
    """Monotonic clock reading when the event was observed."""


@dataclass(frozen=True)
class Trigger:
    """Request for one pipeline run."""

    reason: str
    """Human-readable origin, e.g. ``"startup"`` or ``"file change"``."""

    event: ChangeEvent | None = None
    """Most recent change event of the coalesced burst, if any."""


class RunState(Enum):
    """States of a pipeline run, in execution order."""

    IDLE = "idle"
    BUILDING = "building"
    TESTING = "testing"
    LOCATING_REPORT = "locating_report"
    PARSING = "parsing"
    PUBLISHING = "publishing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_TERMINAL_STATES = frozenset({RunState.SUCCEEDED, RunState.FAILED})

# Forward-only transitions; terminal states may only go back to IDLE.
_ALLOWED_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.BUILDING}),
    RunState.BUILDING: frozenset({RunState.TESTING, RunState.FAILED}),
    RunState.TESTING: frozenset({RunState.LOCATING_REPORT, RunState.FAILED}),
    RunState.LOCATING_REPORT: frozenset({RunState.PARSING, RunState.FAILED}),
    RunState.PARSING: frozenset({RunState.PUBLISHING, RunState.FAILED}),
    RunState.PUBLISHING: frozenset({RunState.SUCCEEDED, RunState.FAILED}),
    RunState.SUCCEEDED: frozenset({RunState.IDLE}),
    RunState.FAILED: frozenset({RunState.IDLE}),
}


@dataclass
class PipelineRun:
    """The single in-flight run owned by the orchestrator."""

    trigger: Trigger
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    state: RunState = RunState.IDLE

    @property
    def finished(self) -> bool:
        """Whether the run reached a terminal state."""
        return self.state in _TERMINAL_STATES

    def advance(self, new_state: RunState) -> None:
        """Move to *new_state*.

        Raises:
            ValueError: If the transition would move the run backwards.
        """
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise ValueError(
                f"Invalid run transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state


class RunStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RunOutcome:
    """Terminal result of ``PipelineOrchestrator.run_once``."""

    status: RunStatus
    report: CoverageReport | None = None
    """Present only on success."""

    reason: str = ""
    """Why the run failed; empty on success."""

    failed_step: RunState | None = None
    """State the run was in when it failed."""

    failures: list[TestFailure] = field(default_factory=list)
    """Failing tests extracted from the test command output."""

    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.SUCCEEDED
