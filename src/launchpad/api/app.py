"""FastAPI application factory for the launchpad service."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from launchpad import __version__
from launchpad.core.errors import (
    ConfigurationError,
    ConnectivityError,
    JobControlError,
    JobNotFoundError,
    LaunchpadError,
    MissingCredentialError,
    RemoteApiError,
)
from launchpad.core.logging import get_logger
from launchpad.engine.manager import JobManager

_logger = get_logger("api.app")

# Module-level manager reference for dependency injection
_manager: JobManager | None = None

# Most specific first
_STATUS_BY_ERROR: tuple[tuple[type[LaunchpadError], int], ...] = (
    (MissingCredentialError, 401),
    (JobNotFoundError, 404),
    (JobControlError, 409),
    (ConfigurationError, 422),
    (RemoteApiError, 502),
    (ConnectivityError, 502),
)


def get_manager() -> JobManager:
    """Get the configured job manager.

    Raises:
        RuntimeError: If the app was not created with create_app().
    """
    if _manager is None:
        raise RuntimeError("Job manager not configured. Use create_app().")
    return _manager


def status_for_error(exc: LaunchpadError) -> int:
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return 500


async def _launchpad_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, LaunchpadError)
    status_code = status_for_error(exc)
    if status_code >= 500:
        _logger.error("api.request_failed", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "kind": exc.kind.value, "error_type": type(exc).__name__},
    )


def create_app(
    manager: JobManager | None = None,
    *,
    title: str = "Launchpad",
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The manager is started and shut down with the application lifespan.

    Args:
        manager: Job manager to serve; a default one is built if omitted.
        title: API title for OpenAPI docs.
        cors_origins: Allowed CORS origins (defaults to all for development).
    """
    global _manager
    _manager = manager or JobManager()
    served = _manager

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        await served.start()
        try:
            yield
        finally:
            await served.shutdown()

    app = FastAPI(
        title=title,
        version=__version__,
        description="Provision environments and drive AI agent sessions to a pull request",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(LaunchpadError, _launchpad_error_handler)

    from launchpad.api.routes import router
    app.include_router(router)

    @app.get("/health", tags=["System"])
    async def health_check() -> dict[str, Any]:
        return {
            "status": "healthy",
            "version": __version__,
            "service": "launchpad",
            "running_jobs": served.running_count,
        }

    return app


__all__ = ["create_app", "get_manager", "status_for_error"]
