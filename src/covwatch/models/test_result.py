"""Test result models."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TestFailure:
    """A failing test extracted from test command output."""

    __test__ = False

    test_name: str
    """Fully qualified test name as printed by the test runner."""

    failure_reason: str
    """Assertion message, or ``"Test failed"`` when none was printed."""
