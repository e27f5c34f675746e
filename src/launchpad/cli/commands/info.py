"""Informational commands: credential status and the recipe catalog."""

from __future__ import annotations

import json

import typer

from launchpad.credentials.store import CredentialStore

from ..helpers import get_config
from ..output import console, create_auth_table, create_recipes_table


def auth(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show whether each external service has a usable credential.

    Exits with status 1 when either service is unauthenticated.
    """
    config = get_config()
    state = CredentialStore(config.auth).auth_state()
    if json_output:
        console.print(json.dumps(state.model_dump(), indent=2))
    else:
        console.print(create_auth_table(state))
    if not (state.github_authenticated and state.agent_authenticated):
        raise typer.Exit(1)


def recipes(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """List the recipe ids accepted by the scaffold command."""
    catalog = get_config().recipes
    if json_output:
        console.print(json.dumps(catalog, indent=2, sort_keys=True))
        return
    if not catalog:
        console.print("[yellow]No recipes configured.[/yellow]")
        return
    console.print(create_recipes_table(catalog))
