"""dotnet build/test command contract and test output diagnostics.

The command lines themselves come from configuration; this module only
assembles them. ``extract_failing_tests`` scrapes the console output of the
test command for failing test names and messages. It is a best-effort
heuristic over free-form text: output it does not recognise simply yields
fewer (or no) failures.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from covwatch.models.test_result import TestFailure

if TYPE_CHECKING:
    from covwatch.config import CommandsConfig

DEFAULT_FAILURE_REASON = "Test failed"

_FAILED_LINE = re.compile(r"^\s*Failed\s+(.+?)\s*\[")
_XUNIT_FAIL_LINE = re.compile(r"^\s*(.+?)\s*\[FAIL\]")

_ERROR_MESSAGE_MARKER = "Error Message:"
_STACK_TRACE_MARKER = "Stack Trace:"
_DETAIL_SEARCH_LINES = 20
_MESSAGE_MAX_LINES = 10


def make_build_command(commands: CommandsConfig) -> list[str]:
    """Return the build command line."""
    return list(commands.build)


def make_test_command(
    commands: CommandsConfig,
    *,
    collect_coverage: bool = True,
    test_filter: str | None = None,
) -> list[str]:
    """Return the test command line.

    Args:
        commands: Configured command templates.
        collect_coverage: Append the coverage collector arguments.
        test_filter: Optional test filter expression.
    """
    cmd = list(commands.test)
    if collect_coverage:
        cmd.extend(commands.coverage_args)
    if test_filter:
        cmd.extend([commands.filter_flag, test_filter])
    return cmd


def _is_result_boundary(line: str) -> bool:
    return (
        line.startswith(("Failed ", "Passed "))
        or "Test run" in line
        or "Total tests" in line
    )


def _collect_message(lines: list[str], marker_index: int) -> list[str]:
    """Collect message lines after an ``Error Message:`` marker."""
    details: list[str] = []
    end = min(marker_index + 1 + _MESSAGE_MAX_LINES, len(lines))
    for raw in lines[marker_index + 1 : end]:
        text = raw.strip()
        if not text or text == _STACK_TRACE_MARKER:
            break
        if not text.startswith("at "):
            details.append(text)
    return details


def _failure_reason(lines: list[str], failed_index: int) -> str:
    end = min(failed_index + 1 + _DETAIL_SEARCH_LINES, len(lines))
    for j in range(failed_index + 1, end):
        text = lines[j].strip()
        if text == _ERROR_MESSAGE_MARKER:
            details = _collect_message(lines, j)
            return " ".join(details) if details else DEFAULT_FAILURE_REASON
        if _is_result_boundary(text):
            break
    return DEFAULT_FAILURE_REASON


def extract_failing_tests(output: str) -> list[TestFailure]:
    """Extract failing tests from captured test command stdout.

    Recognises the VSTest console form::

        Failed MyTests.Add_Test [12 ms]
        Error Message:
         Assert.Equal() Failure ...
        Stack Trace:
           at MyTests.Add_Test() in ...

    and the xUnit runner form ``MyTests.Add_Test [FAIL]``.

    Args:
        output: Captured standard output of the test command.

    Returns:
        Failures in output order, one per distinct test name.
    """
    failures: list[TestFailure] = []
    if not output:
        return failures

    lines = output.splitlines()
    seen: set[str] = set()
    for i, raw in enumerate(lines):
        failed = _FAILED_LINE.match(raw)
        if failed:
            name = failed.group(1).strip()
            if name not in seen:
                seen.add(name)
                reason = _failure_reason(lines, i)
                failures.append(TestFailure(test_name=name, failure_reason=reason))
            continue

        xunit = _XUNIT_FAIL_LINE.match(raw)
        if xunit and "xUnit.net" not in raw:
            name = xunit.group(1).strip()
            if name not in seen:
                seen.add(name)
                failures.append(TestFailure(test_name=name, failure_reason=DEFAULT_FAILURE_REASON))

    return failures
