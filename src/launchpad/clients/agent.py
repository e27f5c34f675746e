"""AI agent session service client.

Starts agent sessions against a source reference, polls their state and
forwards plan approvals and refinement feedback. Remote session states are
mapped onto the local JobStatus vocabulary by ``map_session_state``, which is
total: any state it does not recognise maps to PLANNING.
"""

from __future__ import annotations

import re
from typing import Any, NamedTuple, Protocol

import httpx

from launchpad.clients.base import HttpServiceClient
from launchpad.core.config import AgentConfig
from launchpad.core.errors import SessionControlError, SessionStartError
from launchpad.core.logging import get_logger
from launchpad.core.models import JobStatus, PrDetails

_logger = get_logger("clients.agent")

_WAITING_STATES = frozenset({
    "WAITING_FOR_USER",
    "AWAITING_PLAN_APPROVAL",
    "AWAITING_USER_FEEDBACK",
})
_COMPLETED_STATES = frozenset({"SUCCEEDED", "COMPLETED"})
_RUNNING_STATES = frozenset({"RUNNING", "IN_PROGRESS"})

_PR_NUMBER = re.compile(r"/(?:pulls?|pr)/(\d+)(?:[/?#]|$)")


class SessionSnapshot(NamedTuple):
    """One poll result, already mapped to local vocabulary."""

    status: JobStatus
    pr: PrDetails | None = None
    plan: str | None = None


class AgentSession(Protocol):
    """Operations the pipelines and job control need from the agent service."""

    async def start_session(self, source: str, prompt: str, require_approval: bool) -> str: ...

    async def poll_session(self, session_id: str) -> SessionSnapshot: ...

    async def resume_session(self, session_id: str) -> None: ...

    async def send_feedback(self, session_id: str, feedback: str) -> None: ...

    async def aclose(self) -> None: ...


def pr_number_from_url(url: str) -> int:
    """Pull request number from a ``.../pull/<n>`` or ``.../pr/<n>`` URL, 0 if absent."""
    match = _PR_NUMBER.search(url)
    return int(match.group(1)) if match else 0


def _extract_pr(outputs: Any) -> PrDetails | None:
    if not isinstance(outputs, list):
        return None
    for output in outputs:
        if not isinstance(output, dict):
            continue
        pr = output.get("pullRequest")
        if not isinstance(pr, dict):
            continue
        url = str(pr.get("url") or "")
        number = pr.get("number")
        if not isinstance(number, int) or number < 0:
            number = pr_number_from_url(url)
        return PrDetails(number=number, url=url, title=str(pr.get("title") or ""))
    return None


def map_session_state(body: dict[str, Any]) -> SessionSnapshot:
    """Map a remote session document to a SessionSnapshot.

    ===================================  ================  ======================
    remote state                         local status      extra
    ===================================  ================  ======================
    awaiting user input                  WAITING_APPROVAL  plan summary, if any
    completed with a pull request         PR_READY          PrDetails
    completed without a pull request     MERGED
    running                              WORKING
    anything else                        PLANNING
    ===================================  ================  ======================
    """
    state = str(body.get("state") or "").upper()

    if state in _WAITING_STATES:
        inputs = body.get("inputs")
        plan = inputs.get("plan_summary") if isinstance(inputs, dict) else None
        if not isinstance(plan, str):
            plan = None
        return SessionSnapshot(JobStatus.WAITING_APPROVAL, plan=plan)

    if state in _COMPLETED_STATES:
        pr = _extract_pr(body.get("outputs"))
        if pr is not None:
            return SessionSnapshot(JobStatus.PR_READY, pr=pr)
        return SessionSnapshot(JobStatus.MERGED)

    if state in _RUNNING_STATES:
        return SessionSnapshot(JobStatus.WORKING)

    return SessionSnapshot(JobStatus.PLANNING)


class AgentSessionClient(HttpServiceClient):
    """AgentSession implementation for the agent service REST API.

    Session ids are resource names as returned by the service
    (``sessions/<id>``) and are used directly as request paths.
    """

    def __init__(
        self,
        token: str,
        config: AgentConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or AgentConfig()
        super().__init__(
            self._config.api_url,
            token,
            timeout=self._config.timeout_seconds,
            transport=transport,
        )

    async def start_session(self, source: str, prompt: str, require_approval: bool) -> str:
        op = "start_session"
        response = await self._request(
            op, "POST", "/sessions",
            json={"source": source, "prompt": prompt, "requirePlanApproval": require_approval},
        )
        self._raise_for_status(op, response, SessionStartError)
        name = self._json(op, response).get("name")
        if not isinstance(name, str) or not name:
            raise SessionStartError(op, response.status_code, "response missing session name")
        _logger.info("agent.session_started", session_id=name, require_approval=require_approval)
        return name

    async def poll_session(self, session_id: str) -> SessionSnapshot:
        op = "poll_session"
        response = await self._request(op, "GET", f"/{session_id.lstrip('/')}")
        self._raise_for_status(op, response)
        return map_session_state(self._json(op, response))

    async def resume_session(self, session_id: str) -> None:
        """Approve the pending plan of a session."""
        op = "resume_session"
        response = await self._request(op, "POST", f"/{session_id.lstrip('/')}:approvePlan", json={})
        self._raise_for_status(op, response, SessionControlError)
        _logger.info("agent.plan_approved", session_id=session_id)

    async def send_feedback(self, session_id: str, feedback: str) -> None:
        op = "send_feedback"
        response = await self._request(
            op, "POST", f"/{session_id.lstrip('/')}:sendMessage",
            json={"prompt": feedback},
        )
        self._raise_for_status(op, response, SessionControlError)
        _logger.info("agent.feedback_sent", session_id=session_id)


__all__ = [
    "AgentSession",
    "AgentSessionClient",
    "SessionSnapshot",
    "map_session_state",
    "pr_number_from_url",
]
