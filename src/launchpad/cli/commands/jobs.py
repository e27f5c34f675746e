"""Job commands: scaffold, uplink and remote.

Each command runs one job in-process, renders its events as they arrive and
exits non-zero when the job fails. ``--simulate`` runs the same pipeline
against in-memory services, which is handy for trying out a config file.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, TypeVar

import typer
from pydantic import ValidationError

from launchpad.core.errors import LaunchpadError, MissingCredentialError
from launchpad.core.models import (
    AgentMode,
    JobRequest,
    JobState,
    JobStatus,
    RemoteRequest,
    ScaffoldRequest,
    UplinkRequest,
)
from launchpad.engine.manager import JobManager

from ..helpers import Submit, build_manager, get_config, run_job
from ..output import console, create_job_summary_table, output_error

RequestT = TypeVar("RequestT", bound=JobRequest)

# =============================================================================
# Shared options
# =============================================================================

ContextOption = typer.Option(
    "", "--context", "-c", help="Context text written to AGENTS.md for the agent",
)
ContextFileOption = typer.Option(
    None,
    "--context-file",
    exists=True,
    dir_okay=False,
    readable=True,
    help="Read the agent context from a file instead",
)
InteractiveOption = typer.Option(
    False, "--interactive", "-i", help="Ask for approval of the agent's plan",
)
MergeOption = typer.Option(False, "--merge", help="Merge the pull request once it is ready")
SimulateOption = typer.Option(
    False, "--simulate", help="Use in-memory services instead of the real ones",
)


def _context(text: str, path: Path | None) -> str:
    if path is not None:
        return path.read_text(encoding="utf-8")
    return text


def _mode(interactive: bool) -> AgentMode:
    return AgentMode.INTERACTIVE if interactive else AgentMode.AUTO


def _build_request(model: type[RequestT], **fields: Any) -> RequestT:
    try:
        return model(**fields)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        output_error(f"Invalid {model.__name__}: {errors}")
        raise typer.Exit(1) from None


def _execute(submit: Submit, *, simulate: bool, merge: bool, interactive: bool) -> None:
    manager: JobManager = build_manager(get_config(), simulate=simulate)
    try:
        state: JobState = asyncio.run(
            run_job(manager, submit, merge=merge, review_plans=interactive)
        )
    except MissingCredentialError as e:
        output_error(
            str(e),
            hints=[
                "Set LAUNCHPAD_GITHUB_TOKEN and LAUNCHPAD_AGENT_TOKEN",
                "Run 'launchpad auth' to check credential status",
            ],
        )
        raise typer.Exit(1) from None
    except LaunchpadError as e:
        output_error(str(e))
        raise typer.Exit(1) from None

    console.print()
    console.print(create_job_summary_table(state))
    if state.status is JobStatus.FAILED:
        raise typer.Exit(1)


# =============================================================================
# Commands
# =============================================================================


def scaffold(
    name: str = typer.Argument(..., help="Name of the repository to create"),
    recipe: str = typer.Option(..., "--recipe", "-r", help="Recipe id (see 'launchpad recipes')"),
    context: str = ContextOption,
    context_file: Path | None = ContextFileOption,
    interactive: bool = InteractiveOption,
    merge: bool = MergeOption,
    simulate: bool = SimulateOption,
) -> None:
    """Create a repository from a recipe and hand it to the agent.

    Examples:
        launchpad scaffold demo --recipe nextjs-app -c "Add a login page"
    """
    request = _build_request(
        ScaffoldRequest,
        name=name,
        recipe_id=recipe,
        context=_context(context, context_file),
        mode=_mode(interactive),
    )
    _execute(
        lambda manager: manager.submit_scaffold(request),
        simulate=simulate, merge=merge, interactive=interactive,
    )


def uplink(
    repo_url: str = typer.Argument(..., help="Repository URL or owner/name"),
    context: str = ContextOption,
    context_file: Path | None = ContextFileOption,
    interactive: bool = InteractiveOption,
    merge: bool = MergeOption,
    simulate: bool = SimulateOption,
) -> None:
    """Sync AGENTS.md into an existing repository and hand it to the agent.

    Examples:
        launchpad uplink https://github.com/acme/shop --context-file notes.md
    """
    request = _build_request(
        UplinkRequest,
        repo_url=repo_url,
        context=_context(context, context_file),
        mode=_mode(interactive),
    )
    _execute(
        lambda manager: manager.submit_uplink(request),
        simulate=simulate, merge=merge, interactive=interactive,
    )


def remote(
    host: str = typer.Argument(..., help="Host to connect to"),
    username: str = typer.Option(..., "--user", "-u", help="SSH username"),
    private_key_file: Path = typer.Option(
        ...,
        "--private-key-file",
        "-k",
        exists=True,
        dir_okay=False,
        readable=True,
        help="OpenSSH or PEM private key for the host",
    ),
    port: int = typer.Option(22, "--port", "-p", help="SSH port"),
    repo_url: str | None = typer.Option(
        None, "--repo-url", help="Source reference for the agent (default user@host:port)",
    ),
    context: str = ContextOption,
    context_file: Path | None = ContextFileOption,
    interactive: bool = InteractiveOption,
    merge: bool = MergeOption,
    simulate: bool = SimulateOption,
) -> None:
    """Upload AGENTS.md to a host over SSH and hand it to the agent.

    Examples:
        launchpad remote build.example.com -u deploy -k ~/.ssh/id_ed25519
    """
    request = _build_request(
        RemoteRequest,
        host=host,
        port=port,
        username=username,
        private_key=private_key_file.read_text(encoding="utf-8"),
        repo_url=repo_url,
        context=_context(context, context_file),
        mode=_mode(interactive),
    )
    _execute(
        lambda manager: manager.submit_remote(request),
        simulate=simulate, merge=merge, interactive=interactive,
    )
