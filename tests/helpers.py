"""Shared helpers for launchpad tests."""

from __future__ import annotations

from launchpad.core.models import JobStatus, JobUpdateEvent, JobVariant
from launchpad.engine.registry import JobRegistry
from launchpad.engine.reporting import JobReporter


class EventLog:
    """Async event sink that records every event it receives."""

    def __init__(self) -> None:
        self.events: list[JobUpdateEvent] = []

    async def __call__(self, event: JobUpdateEvent) -> None:
        self.events.append(event)

    @property
    def statuses(self) -> list[JobStatus]:
        return [e.status for e in self.events]

    @property
    def logs(self) -> list[str]:
        return [line for e in self.events for line in e.logs]

    @property
    def last(self) -> JobUpdateEvent:
        return self.events[-1]


def make_reporter(
    registry: JobRegistry,
    sink: EventLog,
    *,
    job_id: str = "job-1",
    variant: JobVariant = JobVariant.SCAFFOLD,
    status: JobStatus = JobStatus.BOOTING,
) -> JobReporter:
    """Register ``job_id`` and return a reporter emitting into ``sink``."""
    registry.register(job_id, variant, status)
    return JobReporter(job_id, registry, sink, status=status)
