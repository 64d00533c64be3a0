"""Configuration parsing from ``.covwatch.yml``."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".covwatch.yml"

_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")
_MAX_PERCENTAGE = 100.0


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or converted."""


def _resolve_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with environment variable values."""

    def _replace(match: re.Match[str]) -> str:
        var = match.group(1)
        resolved = os.environ.get(var)
        if resolved is None:
            logger.warning("Environment variable %s is not set (referenced in config)", var)
            return ""
        return resolved

    return _ENV_VAR_RE.sub(_replace, value)


def _resolve_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively resolve environment variables in a dictionary."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            result[key] = _resolve_env_vars(value)
        elif isinstance(value, dict):
            result[key] = _resolve_dict(value)
        elif isinstance(value, list):
            result[key] = [
                _resolve_env_vars(item) if isinstance(item, str) else item for item in value
            ]
        else:
            result[key] = value
    return result


@dataclass
class WatchConfig:
    """File monitoring configuration."""

    extensions: list[str] = field(default_factory=lambda: [".cs"])
    """Source file suffixes that trigger a run."""

    exclude_segments: list[str] = field(default_factory=lambda: ["bin", "obj"])
    """Path components marking build output; matching paths are ignored."""

    debounce_window: float = 0.5
    """Seconds after an accepted event during which further events are coalesced."""

    settle_delay: float = 0.5
    """Seconds to wait after an accepted event before the trigger fires."""

    project_patterns: list[str] = field(default_factory=lambda: ["*.sln", "**/*.csproj"])
    """Globs (relative to the root) identifying a buildable project."""


@dataclass
class CommandsConfig:
    """External build and test commands."""

    build: list[str] = field(
        default_factory=lambda: ["dotnet", "build", "--verbosity", "quiet"]
    )
    test: list[str] = field(default_factory=lambda: ["dotnet", "test", "--no-build"])
    coverage_args: list[str] = field(
        default_factory=lambda: ["--collect", "XPlat Code Coverage"]
    )
    """Arguments appended to ``test`` when coverage collection is enabled."""

    filter_flag: str = "--filter"
    build_timeout: float = 600.0
    test_timeout: float = 1800.0


@dataclass
class CoverageConfig:
    """Coverage report discovery, publishing and display settings."""

    enabled: bool = True
    report_file_name: str = "coverage.cobertura.xml"
    results_dir_name: str = "TestResults"
    snapshot_name: str = "latest-coverage.json"
    retain_count: int = 5
    """Number of most recent test result directories kept by pruning."""

    good_threshold: float = 80.0
    """Files at or above this line coverage are reported as good."""

    warn_threshold: float = 50.0
    """Files at or above this (but below good) are reported as warnings."""


@dataclass
class CovwatchConfig:
    """Top-level configuration for one watched project."""

    root: Path
    watch: WatchConfig = field(default_factory=WatchConfig)
    commands: CommandsConfig = field(default_factory=CommandsConfig)
    coverage: CoverageConfig = field(default_factory=CoverageConfig)
    test_filter: str | None = None

    @property
    def excluded_segments(self) -> frozenset[str]:
        return frozenset(self.watch.exclude_segments)


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


def _str_list(value: Any, default: list[str]) -> list[str]:
    if isinstance(value, list):
        return [str(item) for item in value]
    if isinstance(value, str):
        return value.split()
    return list(default)


def _bool(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"{key} must be true or false (got: {value!r})")
    return value


def _parse_watch_config(raw: dict[str, Any]) -> WatchConfig:
    """Parse the ``watch`` section from raw YAML."""
    watch_raw = _section(raw, "watch")
    defaults = WatchConfig()
    extensions = _str_list(watch_raw.get("extensions"), defaults.extensions)
    return WatchConfig(
        extensions=[ext if ext.startswith(".") else f".{ext}" for ext in extensions],
        exclude_segments=_str_list(watch_raw.get("exclude_segments"), defaults.exclude_segments),
        debounce_window=float(watch_raw.get("debounce_window", defaults.debounce_window)),
        settle_delay=float(watch_raw.get("settle_delay", defaults.settle_delay)),
        project_patterns=_str_list(watch_raw.get("project_patterns"), defaults.project_patterns),
    )


def _parse_commands_config(raw: dict[str, Any]) -> CommandsConfig:
    """Parse the ``commands`` section from raw YAML."""
    commands_raw = _section(raw, "commands")
    defaults = CommandsConfig()
    return CommandsConfig(
        build=_str_list(commands_raw.get("build"), defaults.build),
        test=_str_list(commands_raw.get("test"), defaults.test),
        coverage_args=_str_list(commands_raw.get("coverage_args"), defaults.coverage_args),
        filter_flag=str(commands_raw.get("filter_flag", defaults.filter_flag)),
        build_timeout=float(commands_raw.get("build_timeout", defaults.build_timeout)),
        test_timeout=float(commands_raw.get("test_timeout", defaults.test_timeout)),
    )


def _parse_coverage_config(raw: dict[str, Any]) -> CoverageConfig:
    """Parse the ``coverage`` section from raw YAML."""
    coverage_raw = _section(raw, "coverage")
    defaults = CoverageConfig()
    return CoverageConfig(
        enabled=_bool(coverage_raw.get("enabled", defaults.enabled), "coverage.enabled"),
        report_file_name=str(coverage_raw.get("report_file_name", defaults.report_file_name)),
        results_dir_name=str(coverage_raw.get("results_dir_name", defaults.results_dir_name)),
        snapshot_name=str(coverage_raw.get("snapshot_name", defaults.snapshot_name)),
        retain_count=int(coverage_raw.get("retain_count", defaults.retain_count)),
        good_threshold=float(coverage_raw.get("good_threshold", defaults.good_threshold)),
        warn_threshold=float(coverage_raw.get("warn_threshold", defaults.warn_threshold)),
    )


def load_config(root: str | Path, config_path: str | Path | None = None) -> CovwatchConfig:
    """Load ``.covwatch.yml`` for the project at *root*.

    Falls back to defaults when the file is missing or a section is absent.

    Args:
        root: Directory being watched.
        config_path: Explicit configuration file; defaults to
            ``<root>/.covwatch.yml``.

    Raises:
        ConfigError: If the file exists but is not valid YAML or holds
            values of the wrong type.
    """
    root_path = Path(root).resolve()
    yml = Path(config_path) if config_path else root_path / CONFIG_FILE_NAME

    raw: dict[str, Any] = {}
    if yml.is_file():
        try:
            parsed = yaml.safe_load(yml.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read {yml}: {e}") from e
        if isinstance(parsed, dict):
            raw = _resolve_dict(parsed)
        elif parsed is not None:
            logger.warning("Ignoring %s: top level is not a mapping", yml)
    elif config_path is not None:
        raise ConfigError(f"Config file not found: {yml}")

    try:
        test_filter = raw.get("test_filter")
        return CovwatchConfig(
            root=root_path,
            watch=_parse_watch_config(raw),
            commands=_parse_commands_config(raw),
            coverage=_parse_coverage_config(raw),
            test_filter=str(test_filter) if test_filter else None,
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value in {yml}: {e}") from e


def _validate_watch_config(watch: WatchConfig) -> list[str]:
    errors: list[str] = []
    if not watch.extensions:
        errors.append("watch.extensions must list at least one suffix")
    if watch.debounce_window <= 0:
        errors.append(f"watch.debounce_window must be positive (got: {watch.debounce_window})")
    if watch.settle_delay < 0:
        errors.append(f"watch.settle_delay must not be negative (got: {watch.settle_delay})")
    return errors


def _validate_commands_config(commands: CommandsConfig) -> list[str]:
    errors: list[str] = []
    if not commands.build:
        errors.append("commands.build must not be empty")
    if not commands.test:
        errors.append("commands.test must not be empty")
    if commands.build_timeout <= 0:
        errors.append(f"commands.build_timeout must be positive (got: {commands.build_timeout})")
    if commands.test_timeout <= 0:
        errors.append(f"commands.test_timeout must be positive (got: {commands.test_timeout})")
    return errors


def _validate_coverage_config(coverage: CoverageConfig) -> list[str]:
    """Validate retention and threshold settings."""
    errors: list[str] = []

    if coverage.retain_count < 0:
        errors.append(f"coverage.retain_count must not be negative (got: {coverage.retain_count})")

    for name in ("good_threshold", "warn_threshold"):
        value = getattr(coverage, name)
        if not 0.0 <= value <= _MAX_PERCENTAGE:
            errors.append(f"coverage.{name} must be between 0 and 100 (got: {value})")

    if coverage.warn_threshold > coverage.good_threshold:
        errors.append(
            f"coverage.warn_threshold ({coverage.warn_threshold}) must not exceed "
            f"coverage.good_threshold ({coverage.good_threshold})"
        )

    return errors


def validate_config(config: CovwatchConfig) -> list[str]:
    """Validate the configuration and return a list of error messages.

    Returns an empty list if the configuration is valid.
    """
    errors: list[str] = []
    errors.extend(_validate_watch_config(config.watch))
    errors.extend(_validate_commands_config(config.commands))
    errors.extend(_validate_coverage_config(config.coverage))
    return errors
