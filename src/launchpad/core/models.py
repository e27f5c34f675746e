"""Shared data types for launchpad.

Defines the job status vocabulary, the registry record for a job, the event
broadcast after every pipeline stage, and the request models accepted by the
three job variants. Wire-facing models are Pydantic v2 so they serialize
directly over the HTTP API and webhook payloads; the registry record is a
plain dataclass mutated only under the registry lock.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from launchpad.core.errors import ErrorKind


class JobStatus(str, Enum):
    """Pipeline progress of a job.

    Ordered roughly by progress. BOOTING and GENERATING only occur in the
    scaffold variant. FAILED is recorded on the registry entry when a job
    run ends in an error; failure events keep the pre-failure status.
    """

    BOOTING = "booting"
    GENERATING = "generating"
    UPLOADING_CONTEXT = "uploading_context"
    PLANNING = "planning"
    WAITING_APPROVAL = "waiting_approval"
    WORKING = "working"
    PR_READY = "pr_ready"
    MERGED = "merged"
    FAILED = "failed"

    @property
    def ends_polling(self) -> bool:
        """Whether an agent session reporting this status is finished."""
        return self in (JobStatus.PR_READY, JobStatus.MERGED)


# Statuses after which a registry entry may be evicted.
FINISHED_STATUSES = frozenset({JobStatus.PR_READY, JobStatus.MERGED, JobStatus.FAILED})


class AgentMode(str, Enum):
    """Whether the agent session waits for human plan approval."""

    AUTO = "auto"
    INTERACTIVE = "interactive"

    @property
    def requires_approval(self) -> bool:
        return self is AgentMode.INTERACTIVE


class JobVariant(str, Enum):
    """The three pipeline variants."""

    SCAFFOLD = "scaffold"
    UPLINK = "uplink"
    REMOTE = "remote"


class PrDetails(BaseModel):
    """A pull request produced by an agent session."""

    model_config = ConfigDict(frozen=True)

    number: int = Field(ge=0, description="Pull request number (0 when unknown)")
    url: str = Field(description="Web URL of the pull request")
    title: str = Field(default="", description="Pull request title")


class FailureDetails(BaseModel):
    """Why a job run ended, attached to the final event of a failed job."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    reason: str


class JobUpdateEvent(BaseModel):
    """Immutable snapshot broadcast after each pipeline stage."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Job identifier")
    status: JobStatus
    logs: tuple[str, ...] = Field(
        default=(),
        description="Human-readable log lines produced by the stage, in order",
    )
    pr_details: PrDetails | None = None
    plan: str | None = Field(
        default=None,
        description="Agent-proposed plan, present only while awaiting approval",
    )
    failure: FailureDetails | None = Field(
        default=None,
        description="Set only on the final event of a failed job run",
    )
    timestamp: float = Field(default_factory=time.time)


@dataclass
class JobState:
    """The registry's record for one job."""

    id: str
    variant: JobVariant
    status: JobStatus
    repo_identifier: str | None = None
    session_id: str | None = None
    last_poll_timestamp: float | None = None
    pr: PrDetails | None = None
    failure_reason: str | None = None
    created_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    def to_dict(self) -> dict[str, object]:
        """Serialize for API responses."""
        return {
            "id": self.id,
            "variant": self.variant.value,
            "status": self.status.value,
            "repo_identifier": self.repo_identifier,
            "session_id": self.session_id,
            "last_poll_timestamp": self.last_poll_timestamp,
            "pr": self.pr.model_dump() if self.pr else None,
            "failure_reason": self.failure_reason,
            "created_at": self.created_at,
            "finished_at": self.finished_at,
        }


class AuthState(BaseModel):
    """Whether each external service currently has a usable credential."""

    github_authenticated: bool
    agent_authenticated: bool


# ─── Job requests ─────────────────────────────────────────────────────


class JobRequest(BaseModel):
    """Fields common to every job submission."""

    context: str = Field(
        default="",
        description="Free-text context written to AGENTS.md for the agent to read",
    )
    mode: AgentMode = Field(default=AgentMode.AUTO)


class ScaffoldRequest(JobRequest):
    """Create a new repository from a recipe and hand it to the agent."""

    name: str = Field(min_length=1, max_length=100, description="Repository name")
    recipe_id: str = Field(min_length=1)

    @field_validator("name")
    @classmethod
    def _no_path_separators(cls, v: str) -> str:
        if "/" in v or v.strip() != v:
            raise ValueError("name must be a bare repository name")
        return v


class UplinkRequest(JobRequest):
    """Attach the agent to an existing repository."""

    repo_url: str = Field(min_length=1)


class RemoteRequest(JobRequest):
    """Attach the agent to a user-specified host reachable over SSH."""

    host: str = Field(min_length=1)
    port: int = Field(default=22, ge=1, le=65535)
    username: str = Field(min_length=1)
    private_key: str = Field(min_length=1, repr=False)
    repo_url: str | None = Field(
        default=None,
        description="Source reference handed to the agent; defaults to user@host:port",
    )

    @property
    def source_ref(self) -> str:
        return self.repo_url or f"{self.username}@{self.host}:{self.port}"


__all__ = [
    "FINISHED_STATUSES",
    "AgentMode",
    "AuthState",
    "FailureDetails",
    "JobRequest",
    "JobState",
    "JobStatus",
    "JobUpdateEvent",
    "JobVariant",
    "PrDetails",
    "RemoteRequest",
    "ScaffoldRequest",
    "UplinkRequest",
]
