"""asyncio.Task helpers shared by the job manager and the notifiers."""

from __future__ import annotations

import asyncio
from typing import Any


def log_task_exception(
    task: asyncio.Task[Any],
    logger: Any,
    event: str,
    *,
    level: str = "error",
) -> BaseException | None:
    """Log the exception of a finished task, if it has one.

    Intended for ``add_done_callback`` handlers; asyncio otherwise drops
    exceptions of tasks nobody awaits.

    Returns:
        The exception, or None if the task succeeded or was cancelled.
    """
    if task.cancelled():
        return None
    exc = task.exception()
    if exc is not None:
        log_fn = getattr(logger, level, logger.error)
        log_fn(
            event,
            error=str(exc),
            error_type=type(exc).__name__,
            task_name=task.get_name(),
        )
    return exc


__all__ = ["log_task_exception"]
