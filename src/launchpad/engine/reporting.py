"""Per-job event emission.

A JobReporter is the single path by which a running job changes its registry
entry and tells observers about it, so the two never disagree. Emission
failures are logged and never abort the job.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from launchpad.core.errors import ErrorKind
from launchpad.core.logging import get_logger
from launchpad.core.models import FailureDetails, JobStatus, JobUpdateEvent, PrDetails
from launchpad.engine.registry import JobRegistry

_logger = get_logger("engine.reporting")

EventSink = Callable[[JobUpdateEvent], Awaitable[None]]

FAILED_LOG_LINE = "Job Failed."


class JobReporter:
    """Emits the JobUpdateEvents of one job and mirrors them into the registry."""

    def __init__(
        self,
        job_id: str,
        registry: JobRegistry,
        sink: EventSink,
        *,
        status: JobStatus,
    ) -> None:
        self.job_id = job_id
        self._registry = registry
        self._sink = sink
        self._status = status
        self._failed = False

    @property
    def status(self) -> JobStatus:
        """Last status reported (the pre-failure status once a job failed)."""
        return self._status

    @property
    def failed(self) -> bool:
        return self._failed

    async def emit(
        self,
        status: JobStatus,
        *logs: str,
        pr: PrDetails | None = None,
        plan: str | None = None,
        **changes: Any,
    ) -> JobUpdateEvent:
        """Record a status change and broadcast it.

        Extra keyword arguments are applied to the registry entry as well
        (``session_id``, ``last_poll_timestamp``, ...).
        """
        self._status = status
        if pr is not None:
            changes["pr"] = pr
        self._registry.update(self.job_id, status=status, **changes)
        event = JobUpdateEvent(
            id=self.job_id,
            status=status,
            logs=logs,
            pr_details=pr,
            plan=plan,
        )
        await self._publish(event)
        return event

    def record(self, **changes: Any) -> None:
        """Update the registry entry without emitting an event."""
        self._registry.update(self.job_id, **changes)

    async def fail(self, kind: ErrorKind, reason: str) -> JobUpdateEvent:
        """Mark the job FAILED and broadcast its final event.

        The event keeps the last reached status; the failure itself travels
        in ``failure`` and in the log lines.
        """
        self._failed = True
        self._registry.mark_failed(self.job_id, reason)
        event = JobUpdateEvent(
            id=self.job_id,
            status=self._status,
            logs=(reason, FAILED_LOG_LINE),
            failure=FailureDetails(kind=kind, reason=reason),
        )
        await self._publish(event)
        return event

    async def _publish(self, event: JobUpdateEvent) -> None:
        try:
            await self._sink(event)
        except Exception:
            _logger.warning(
                "job.event_emit_failed",
                job_id=self.job_id,
                status=event.status.value,
                exc_info=True,
            )


__all__ = ["FAILED_LOG_LINE", "EventSink", "JobReporter"]
