"""Shared state and utilities for launchpad CLI commands.

Holds the global option state set by the app callback (logging overrides and
the config file), builds a JobManager for a command, and follows one job to
its end while rendering its events.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import typer
from pydantic import ValidationError
from rich.console import Console

from launchpad.core.config import LaunchpadConfig, load_config
from launchpad.core.logging import configure_logging, get_logger
from launchpad.core.models import JobState, JobStatus, JobUpdateEvent
from launchpad.credentials.store import StaticCredentialStore
from launchpad.engine.manager import JobManager
from launchpad.testing import FakeRemoteExecutor, FakeSourceControl, ScriptedAgentSession

from .output import console, output_error, render_event

_logger = get_logger("cli")


# =============================================================================
# Logging configuration
# =============================================================================


@dataclass
class CliLoggingConfig:
    """Logging overrides from global CLI options.

    Unset fields fall back to the ``logging`` section of the config file,
    or to WARNING on the console when no config file was given.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
    file: Path | None = None
    format: Literal["json", "console", "both"] | None = None
    configured: bool = False


_log_config = CliLoggingConfig()


def set_log_level(level: str) -> None:
    _log_config.level = level.upper()  # type: ignore[assignment]


def set_log_file(path: Path | None) -> None:
    _log_config.file = path


def set_log_format(fmt: str) -> None:
    _log_config.format = fmt  # type: ignore[assignment]


def configure_global_logging(console: Console) -> None:
    """Configure logging from global options and the config file, once.

    Raises:
        typer.Exit: If the logging configuration is invalid.
    """
    if _log_config.configured:
        return

    # Loading the config file can log; keep that off stdout.
    try:
        configure_logging(level=_log_config.level or "WARNING", format="console")
    except ValueError as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None
    config = get_config()
    from_file = config.logging if _state.config_file is not None else None
    level = _log_config.level or (from_file.level if from_file else "WARNING")
    fmt = _log_config.format or (from_file.format if from_file else "console")
    file_path = _log_config.file or (from_file.file if from_file else None)
    try:
        configure_logging(level=level, format=fmt, file_path=file_path)
        _log_config.configured = True
    except ValueError as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None


def reset_logging_state() -> None:
    """Reset logging and config state (used by tests)."""
    global _log_config, _state
    _log_config = CliLoggingConfig()
    _state = CliState()


# =============================================================================
# Config file
# =============================================================================


@dataclass
class CliState:
    config_file: Path | None = None
    config: LaunchpadConfig | None = None


_state = CliState()


def set_config_file(path: Path | None) -> None:
    _state.config_file = path
    _state.config = None


def get_config() -> LaunchpadConfig:
    """Load the configuration named by ``--config`` (defaults when unset).

    Raises:
        typer.Exit: If the file is missing or invalid.
    """
    if _state.config is not None:
        return _state.config
    try:
        _state.config = load_config(_state.config_file)
    except FileNotFoundError:
        output_error(f"Config file not found: {_state.config_file}")
        raise typer.Exit(1) from None
    except ValidationError as e:
        output_error(f"Invalid config file {_state.config_file}:\n{e}")
        raise typer.Exit(1) from None
    return _state.config


# =============================================================================
# Manager construction
# =============================================================================


def simulated_config(config: LaunchpadConfig) -> LaunchpadConfig:
    """Copy of ``config`` with every wait shortened for in-memory runs."""
    return config.model_copy(
        update={
            "polling": config.polling.model_copy(update={"interval_seconds": 0.05}),
            "provisioning": config.provisioning.model_copy(
                update={"ready_poll_interval_seconds": 0.0},
            ),
        },
    )


def build_manager(config: LaunchpadConfig, *, simulate: bool = False) -> JobManager:
    """JobManager for a command; ``simulate`` swaps every service for a double."""
    if not simulate:
        return JobManager(config)

    source_control = FakeSourceControl()
    return JobManager(
        simulated_config(config),
        credentials=StaticCredentialStore(github="simulated", agent="simulated"),
        source_control_factory=lambda _token: source_control,
        agent_factory=lambda _token: ScriptedAgentSession(),
        executor_factory=FakeRemoteExecutor,
        cancel_grace_seconds=1.0,
    )


# =============================================================================
# Following a job
# =============================================================================

Submit = Callable[[JobManager], Awaitable[str]]


async def _review_plan(manager: JobManager, job_id: str) -> None:
    approved = await asyncio.to_thread(typer.confirm, "Approve this plan?", default=True)
    if approved:
        await manager.approve_plan(job_id)
        console.print("[magenta]Plan approved.[/magenta]")
        return
    feedback = await asyncio.to_thread(typer.prompt, "Feedback for the agent")
    await manager.refine_plan(job_id, feedback)
    console.print("[magenta]Feedback sent.[/magenta]")


async def follow_job(
    manager: JobManager,
    job_id: str,
    events: asyncio.Queue[JobUpdateEvent],
    *,
    review_plans: bool = True,
) -> JobState:
    """Render ``job_id``'s events until its worker task ends.

    A proposed plan is offered for approval once per distinct plan text.
    """
    finished = asyncio.create_task(manager.wait_for_job(job_id))
    reviewed: set[str] = set()
    while True:
        getter = asyncio.create_task(events.get())
        done, _ = await asyncio.wait({getter, finished}, return_when=asyncio.FIRST_COMPLETED)
        if getter not in done:
            getter.cancel()
            break
        event = getter.result()
        render_event(event)
        if (
            review_plans
            and event.status is JobStatus.WAITING_APPROVAL
            and event.plan
            and event.plan not in reviewed
        ):
            reviewed.add(event.plan)
            await _review_plan(manager, job_id)

    while not events.empty():
        render_event(events.get_nowait())
    return finished.result()


async def run_job(
    manager: JobManager,
    submit: Submit,
    *,
    merge: bool = False,
    review_plans: bool = True,
) -> JobState:
    """Start ``manager``, submit one job, follow it, then shut down.

    With ``merge`` a job that ends with a ready pull request has it merged.
    """
    events: asyncio.Queue[JobUpdateEvent] = asyncio.Queue()
    await manager.start()
    try:
        manager.subscribe(events.put_nowait)
        job_id = await submit(manager)
        console.print(f"[dim]Job {job_id} accepted[/dim]")
        state = await follow_job(manager, job_id, events, review_plans=review_plans)

        if merge and state.status is JobStatus.PR_READY:
            sha = await manager.merge_pr(job_id)
            state = await manager.wait_for_job(job_id)
            while not events.empty():
                render_event(events.get_nowait())
            console.print(f"[dim]Merge commit {sha}[/dim]")
        return state
    finally:
        await manager.shutdown()


__all__ = [
    "CliLoggingConfig",
    "CliState",
    "build_manager",
    "configure_global_logging",
    "follow_job",
    "get_config",
    "reset_logging_state",
    "run_job",
    "set_config_file",
    "set_log_file",
    "set_log_format",
    "set_log_level",
    "simulated_config",
]
