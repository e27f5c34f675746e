"""Server-Sent Events stream of job update events."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from launchpad.api.app import get_manager
from launchpad.api.sse import job_event_stream
from launchpad.engine.manager import JobManager

router = APIRouter(prefix="/api", tags=["Streaming"])


@router.get("/events")
async def stream_events(
    job_id: str | None = None,
    heartbeat: float = 15.0,
    manager: JobManager = Depends(get_manager),
) -> StreamingResponse:
    """Stream JobUpdateEvents as SSE, for every job or only ``job_id``.

    Raises:
        JobNotFoundError: 404 if ``job_id`` is given and unknown.
    """
    if job_id is not None:
        manager.get_job(job_id)
    return StreamingResponse(
        job_event_stream(manager, job_id, heartbeat_seconds=max(heartbeat, 1.0)),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
