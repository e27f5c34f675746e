"""Server-Sent Events formatting and the job update stream."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass

from launchpad.core.logging import get_logger
from launchpad.core.models import JobStatus, JobUpdateEvent
from launchpad.engine.manager import JobManager

_logger = get_logger("api.sse")

# A stream scoped to one job closes once that job can change no further
STREAM_END_STATUSES = frozenset({JobStatus.MERGED, JobStatus.FAILED})


@dataclass
class SSEEvent:
    """An SSE event to be sent to clients."""

    event: str
    data: str
    id: str | None = None
    retry: int | None = None

    def format(self) -> str:
        """Format as SSE wire format."""
        lines = []
        if self.id:
            lines.append(f"id: {self.id}")
        if self.retry:
            lines.append(f"retry: {self.retry}")
        lines.append(f"event: {self.event}")
        for line in self.data.split("\n"):
            lines.append(f"data: {line}")
        lines.append("")
        return "\n".join(lines) + "\n"


def job_update_sse(event: JobUpdateEvent, seq: int) -> SSEEvent:
    return SSEEvent(
        event="job_update",
        data=event.model_dump_json(),
        id=f"{event.id}-{seq}",
    )


async def job_event_stream(
    manager: JobManager,
    job_id: str | None = None,
    *,
    heartbeat_seconds: float = 15.0,
    max_queue: int = 100,
) -> AsyncIterator[str]:
    """Yield job update events as SSE frames.

    With ``job_id`` the stream starts with a ``job_state`` snapshot and ends
    after the job's MERGED or failure event. Without it the stream follows
    every job until the client disconnects. A full client queue drops the
    newest event rather than stalling the event bus.
    """
    queue: asyncio.Queue[JobUpdateEvent] = asyncio.Queue(maxsize=max_queue)

    def _enqueue(event: JobUpdateEvent) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            _logger.warning("sse.client_queue_full", job_id=event.id)

    sub_id = manager.subscribe(_enqueue, job_id=job_id)
    seq = 0
    try:
        if job_id is not None:
            state = manager.get_job(job_id)
            yield SSEEvent(
                event="job_state",
                data=json.dumps(state.to_dict()),
                id=f"{job_id}-state",
            ).format()
            if state.status in STREAM_END_STATUSES:
                return

        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
            except TimeoutError:
                yield ": keepalive\n\n"
                continue
            seq += 1
            yield job_update_sse(event, seq).format()
            ended = event.failure is not None or event.status in STREAM_END_STATUSES
            if job_id is not None and ended:
                return
    finally:
        manager.unsubscribe(sub_id)


__all__ = ["SSEEvent", "STREAM_END_STATUSES", "job_event_stream", "job_update_sse"]
