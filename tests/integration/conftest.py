"""Shared fixtures for integration tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from covwatch.config import CommandsConfig, CovwatchConfig, WatchConfig

# ── Marker registration ──────────────────────────────────────────


def pytest_configure(config: pytest.Config) -> None:
    """Register the ``integration`` marker."""
    config.addinivalue_line("markers", "integration: integration tests")


# ── File creation helpers ────────────────────────────────────────


def write_file(root: Path, rel: str, content: str) -> Path:
    """Write *content* to a file under *root*."""
    f = root / rel
    f.parent.mkdir(parents=True, exist_ok=True)
    f.write_text(content, encoding="utf-8")
    return f


COBERTURA_XML = """\
<?xml version="1.0" encoding="utf-8"?>
<coverage line-rate="0.5" branch-rate="0" lines-covered="1" lines-valid="2">
  <packages>
    <package name="Demo">
      <classes>
        <class name="Demo.Calculator" filename="src/Calculator.cs">
          <lines>
            <line number="3" hits="1"/>
            <line number="4" hits="0"/>
          </lines>
        </class>
      </classes>
    </package>
  </packages>
</coverage>
"""

# Stands in for ``dotnet test``: writes a fresh report into a new run directory.
_FAKE_TEST_SCRIPT = f"""\
import pathlib
import uuid

run_dir = pathlib.Path("TestResults") / str(uuid.uuid4())
run_dir.mkdir(parents=True)
(run_dir / "coverage.cobertura.xml").write_text({COBERTURA_XML!r}, encoding="utf-8")
print("Passed!  - Failed: 0, Passed: 1, Skipped: 0, Total: 1")
"""


# ── Project scaffolding fixtures ─────────────────────────────────


@pytest.fixture()
def dotnet_project(tmp_path: Path) -> Path:
    """Create a minimal C# project directory."""
    write_file(
        tmp_path,
        "Demo.csproj",
        '<Project Sdk="Microsoft.NET.Sdk">\n'
        "  <PropertyGroup><TargetFramework>net8.0</TargetFramework></PropertyGroup>\n"
        "</Project>\n",
    )
    write_file(
        tmp_path,
        "src/Calculator.cs",
        "namespace Demo;\n\npublic class Calculator\n{\n"
        "    public int Add(int a, int b) => a + b;\n}\n",
    )
    write_file(tmp_path, "tools/fake_test.py", _FAKE_TEST_SCRIPT)
    return tmp_path


@pytest.fixture()
def python_commands_config(dotnet_project: Path) -> CovwatchConfig:
    """Configuration whose build and test commands run the Python interpreter."""
    return CovwatchConfig(
        root=dotnet_project.resolve(),
        watch=WatchConfig(debounce_window=0.2, settle_delay=0.1),
        commands=CommandsConfig(
            build=[sys.executable, "-c", "print('Build succeeded.')"],
            test=[sys.executable, "tools/fake_test.py"],
            coverage_args=[],
            build_timeout=60.0,
            test_timeout=60.0,
        ),
    )
