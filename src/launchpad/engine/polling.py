"""Agent-session polling loop shared by every pipeline variant."""

from __future__ import annotations

import asyncio
import time

from launchpad.clients.agent import AgentSession, SessionSnapshot
from launchpad.core.config import PollingConfig
from launchpad.core.errors import ConnectivityError, RemoteApiError
from launchpad.core.logging import get_logger
from launchpad.core.models import JobStatus
from launchpad.engine.reporting import JobReporter

_logger = get_logger("engine.polling")

POLL_LOG_LINES: dict[JobStatus, str] = {
    JobStatus.PLANNING: "Agent is thinking...",
    JobStatus.WORKING: "Agent is working on code...",
    JobStatus.WAITING_APPROVAL: "Plan ready for review.",
    JobStatus.PR_READY: "Pull Request created.",
}


async def poll_agent_session(
    session_id: str,
    agent: AgentSession,
    reporter: JobReporter,
    config: PollingConfig | None = None,
) -> SessionSnapshot:
    """Poll an agent session until it reports PR_READY or MERGED.

    Every iteration sleeps ``interval_seconds``, polls once and emits exactly
    one event with the mapped status. A failed poll emits nothing and is
    retried; ``max_consecutive_failures`` failed polls in a row end the job
    (0 retries forever). Cancellation is the owning task's cancellation.

    Returns:
        The snapshot that ended the loop.

    Raises:
        ConnectivityError: When the consecutive-failure bound is reached.
    """
    config = config or PollingConfig()
    log = _logger.bind(job_id=reporter.job_id, session_id=session_id)
    failures = 0

    while True:
        await asyncio.sleep(config.interval_seconds)
        try:
            snapshot = await agent.poll_session(session_id)
        except (RemoteApiError, ConnectivityError) as exc:
            failures += 1
            log.warning(
                "polling.poll_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                consecutive_failures=failures,
            )
            limit = config.max_consecutive_failures
            if limit and failures >= limit:
                raise ConnectivityError(
                    f"agent session unreachable after {failures} consecutive failed polls"
                ) from exc
            continue

        failures = 0
        line = POLL_LOG_LINES.get(snapshot.status)
        await reporter.emit(
            snapshot.status,
            *((line,) if line else ()),
            pr=snapshot.pr,
            plan=snapshot.plan,
            last_poll_timestamp=time.time(),
        )
        if snapshot.status.ends_polling:
            log.info("polling.finished", status=snapshot.status.value)
            return snapshot


__all__ = ["POLL_LOG_LINES", "poll_agent_session"]
