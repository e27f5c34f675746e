"""Launchpad CLI.

Built with Typer. Global options (version, logging, config file) are handled
by the app callback before any command runs; commands live in the
``commands`` package and are registered here.

Package structure:
    cli/
    ├── __init__.py           # app assembly
    ├── helpers.py            # global option state, manager construction, job following
    ├── output.py             # Rich formatting
    └── commands/
        ├── info.py           # auth, recipes
        ├── jobs.py           # scaffold, uplink, remote
        └── serve.py          # serve
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from launchpad import __version__

from . import helpers as helpers
from .commands import auth, recipes, remote, scaffold, serve, uplink
from .helpers import (
    configure_global_logging,
    set_config_file,
    set_log_file,
    set_log_format,
    set_log_level,
)
from .output import console

# =============================================================================
# Typer app definition
# =============================================================================

app = typer.Typer(
    name="launchpad",
    help="Provision a workspace, hand it to an AI agent, follow it to a pull request",
    add_completion=False,
)


# =============================================================================
# Global option callbacks
# =============================================================================


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Launchpad v{__version__}")
        raise typer.Exit()


def log_level_callback(value: str | None) -> str | None:
    if value:
        if value.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise typer.BadParameter("must be one of DEBUG, INFO, WARNING, ERROR")
        set_log_level(value)
    return value


def log_file_callback(value: Path | None) -> Path | None:
    if value:
        set_log_file(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        if value not in ("json", "console", "both"):
            raise typer.BadParameter("must be one of json, console, both")
        set_log_format(value)
    return value


def config_callback(value: Path | None) -> Path | None:
    set_config_file(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            callback=config_callback,
            help="YAML configuration file",
            envvar="LAUNCHPAD_CONFIG",
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="LAUNCHPAD_LOG_LEVEL",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            callback=log_file_callback,
            help="Path for log file output",
            envvar="LAUNCHPAD_LOG_FILE",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: json, console, or both",
            envvar="LAUNCHPAD_LOG_FORMAT",
        ),
    ] = None,
) -> None:
    """Launchpad - drive AI agent sessions to a reviewable pull request."""
    configure_global_logging(console)


# =============================================================================
# Command registration
# =============================================================================

# Job commands
app.command()(scaffold)
app.command()(uplink)
app.command()(remote)

# Information
app.command()(auth)
app.command()(recipes)

# Server
app.command()(serve)


__all__ = ["app", "console", "helpers", "main"]
