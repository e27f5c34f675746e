"""Rich output formatting for the launchpad CLI.

Status colors, the job event line renderer and the small tables used by the
informational commands all live here so every command prints jobs the same
way.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from launchpad.core.models import AuthState, JobState, JobStatus, JobUpdateEvent

# =============================================================================
# Shared console instance
# =============================================================================

console = Console()


# =============================================================================
# Color schemes
# =============================================================================


class StatusColors:
    """Color mapping for job statuses."""

    JOB_STATUS: dict[JobStatus, str] = {
        JobStatus.BOOTING: "cyan",
        JobStatus.GENERATING: "cyan",
        JobStatus.UPLOADING_CONTEXT: "cyan",
        JobStatus.PLANNING: "blue",
        JobStatus.WAITING_APPROVAL: "magenta",
        JobStatus.WORKING: "blue",
        JobStatus.PR_READY: "green",
        JobStatus.MERGED: "bold green",
        JobStatus.FAILED: "red",
    }

    @classmethod
    def get_job_color(cls, status: JobStatus) -> str:
        return cls.JOB_STATUS.get(status, "white")


def format_status(status: JobStatus) -> str:
    color = StatusColors.get_job_color(status)
    return f"[{color}]{status.value}[/{color}]"


def format_timestamp(ts: float | None) -> str:
    """Format an epoch timestamp as local wall-clock time, '-' if unset."""
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%H:%M:%S")


# =============================================================================
# Event rendering
# =============================================================================


def render_event(event: JobUpdateEvent, console_instance: Console | None = None) -> None:
    """Print one job update event as status-tagged log lines."""
    out = console_instance or console
    stamp = f"[dim]{format_timestamp(event.timestamp)}[/dim]"
    tag = "FAILED" if event.failure else event.status.value
    color = "red" if event.failure else StatusColors.get_job_color(event.status)
    lines = event.logs or ("",)
    for line in lines:
        out.print(f"{stamp} [{color}]{tag:<18}[/{color}] {escape(line)}")
    if event.plan:
        out.print(Panel(escape(event.plan), title="Proposed plan", border_style="magenta"))
    if event.pr_details is not None and event.status is JobStatus.PR_READY:
        pr = event.pr_details
        out.print(f"           [green]Pull request #{pr.number}:[/green] {pr.url}")


# =============================================================================
# Tables and panels
# =============================================================================


def create_auth_table(auth: AuthState) -> Table:
    table = Table(title="Service credentials", show_header=True, header_style="bold")
    table.add_column("Service")
    table.add_column("Authenticated")
    for service, ok in (
        ("source control", auth.github_authenticated),
        ("agent", auth.agent_authenticated),
    ):
        table.add_row(service, "[green]yes[/green]" if ok else "[red]no[/red]")
    return table


def create_recipes_table(recipes: Mapping[str, str]) -> Table:
    table = Table(title="Recipes", show_header=True, header_style="bold")
    table.add_column("Id", style="cyan")
    table.add_column("Setup script")
    for recipe_id in sorted(recipes):
        table.add_row(recipe_id, escape(recipes[recipe_id]))
    return table


def create_job_summary_table(state: JobState) -> Table:
    """Key-value summary of a job's registry entry."""
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Job", state.id)
    table.add_row("Variant", state.variant.value)
    table.add_row("Status", format_status(state.status))
    if state.repo_identifier:
        table.add_row("Source", state.repo_identifier)
    if state.pr is not None:
        table.add_row("Pull request", state.pr.url)
    if state.failure_reason:
        table.add_row("Failure", f"[red]{escape(state.failure_reason)}[/red]")
    return table


def create_server_panel(title: str, server_name: str, info_lines: Sequence[str]) -> Panel:
    lines = [f"[bold]{server_name}[/bold]", ""]
    lines.extend(info_lines)
    lines.extend(["", "[dim]Press Ctrl+C to stop[/dim]"])
    return Panel("\n".join(lines), title=title)


# =============================================================================
# Error formatting
# =============================================================================


def output_error(
    message: str,
    *,
    hints: list[str] | None = None,
    console_instance: Console | None = None,
) -> None:
    """Print a red error line followed by optional dim hints."""
    out = console_instance or console
    out.print(f"[red]Error:[/red] {escape(message)}")
    if hints:
        out.print()
        out.print("[dim]Hints:[/dim]")
        for hint in hints:
            out.print(f"  - {hint}")


__all__ = [
    "StatusColors",
    "console",
    "create_auth_table",
    "create_job_summary_table",
    "create_recipes_table",
    "create_server_panel",
    "format_status",
    "format_timestamp",
    "output_error",
    "render_event",
]
