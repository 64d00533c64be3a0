"""covwatch command-line entry point."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler

from covwatch import __version__
from covwatch.config import ConfigError, load_config, validate_config
from covwatch.service import WatchService
from covwatch.watchers.file_watcher import WatchError

logger = logging.getLogger(__name__)

console = Console()

_USAGE = """Usage: covwatch <directory>

Watches a .NET project for source changes, rebuilds, reruns the tests with
coverage collection and publishes the latest coverage snapshot into the
TestResults directory.

Examples:
    covwatch ./MyProject
    covwatch . --filter "Category=Unit"
"""


def _setup_logging(*, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


@click.command()
@click.argument("target", required=False)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (default: <target>/.covwatch.yml).",
)
@click.option("--filter", "test_filter", default=None, help="Test filter expression.")
@click.option(
    "--no-initial-run",
    is_flag=True,
    help="Start watching without the initial build and test run.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.version_option(version=__version__, prog_name="covwatch")
def main(
    target: str | None,
    config_path: Path | None,
    test_filter: str | None,
    *,
    no_initial_run: bool,
    verbose: bool,
) -> None:
    """Watch a .NET project and keep a coverage snapshot up to date.

    Examples:
        covwatch ./MyProject                    # Watch with defaults
        covwatch . --filter "Category=Unit"     # Run a subset of tests
        covwatch . --no-initial-run -v          # Skip the startup run, debug logs
    """
    if not target:
        console.print(_USAGE)
        return

    root = Path(target).resolve()
    if not root.is_dir():
        console.print(f"[red]Error:[/red] Directory '{target}' does not exist.")
        return

    _setup_logging(verbose=verbose)

    try:
        config = load_config(root, config_path)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1) from e

    if test_filter:
        config.test_filter = test_filter

    errors = validate_config(config)
    if errors:
        console.print("[red]Invalid configuration:[/red]")
        for error in errors:
            console.print(f"  • {error}")
        raise SystemExit(1)

    service = WatchService(config, initial_run=not no_initial_run)

    console.print("[bold cyan]Starting watch mode[/bold cyan]")
    console.print(f"  Directory: {root}")
    console.print(f"  Build: {' '.join(config.commands.build)}")
    console.print(f"  Test: {' '.join(config.commands.test)}")
    if config.test_filter:
        console.print(f"  Filter: {config.test_filter}")
    console.print("\nPress Ctrl+C to stop\n")

    try:
        started = asyncio.run(service.run())
    except WatchError as e:
        logger.error("File watching failed: %s", e)
        raise SystemExit(1) from e
    except KeyboardInterrupt:
        console.print("\n[yellow]Watch mode stopped[/yellow]")
        return

    if started:
        console.print("[yellow]Watch mode stopped[/yellow]")


if __name__ == "__main__":
    main()
