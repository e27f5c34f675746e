"""``serve`` command: run the HTTP API with uvicorn."""

from __future__ import annotations

import typer

from launchpad import __version__

from ..helpers import build_manager, get_config
from ..output import console, create_server_panel


def serve(
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on"),
    host: str = typer.Option("127.0.0.1", "--host", help="Host to bind to"),
    cors_origin: list[str] | None = typer.Option(
        None,
        "--cors-origin",
        help="Allowed CORS origin (repeatable)",
    ),
    simulate: bool = typer.Option(
        False,
        "--simulate",
        help="Use in-memory services instead of GitHub, the agent service and SSH",
    ),
) -> None:
    """Start the launchpad API server.

    Examples:
        launchpad serve                     # localhost:8000
        launchpad serve --host 0.0.0.0      # allow external connections
        launchpad serve --simulate          # no external services
    """
    import uvicorn

    from launchpad.api import create_app

    manager = build_manager(get_config(), simulate=simulate)
    fastapi_app = create_app(manager, cors_origins=cors_origin or None)

    mode = "[yellow]simulated services[/yellow]" if simulate else "live services"
    console.print(
        create_server_panel(
            "Starting Server",
            f"Launchpad v{__version__}",
            [
                f"API: http://{host}:{port}",
                f"Events: http://{host}:{port}/api/events",
                f"Docs: http://{host}:{port}/docs",
                f"Mode: {mode}",
            ],
        )
    )

    try:
        uvicorn.run(fastapi_app, host=host, port=port, log_level="info")
    except KeyboardInterrupt:
        console.print("\n[yellow]Server stopped.[/yellow]")
