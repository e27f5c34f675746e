"""Job submission, inspection and control endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from launchpad.api.app import get_manager
from launchpad.core.models import (
    JobState,
    JobStatus,
    JobVariant,
    PrDetails,
    RemoteRequest,
    ScaffoldRequest,
    UplinkRequest,
)
from launchpad.engine.manager import JobManager

router = APIRouter(prefix="/api/jobs", tags=["Jobs"])


# ============================================================================
# Request / response models
# ============================================================================


class JobAccepted(BaseModel):
    job_id: str


class JobResponse(BaseModel):
    """Registry view of one job."""

    id: str
    variant: JobVariant
    status: JobStatus
    repo_identifier: str | None = None
    session_id: str | None = None
    last_poll_timestamp: float | None = None
    pr: PrDetails | None = None
    failure_reason: str | None = None
    created_at: float
    finished_at: float | None = None

    @classmethod
    def from_state(cls, state: JobState) -> JobResponse:
        return cls(
            id=state.id,
            variant=state.variant,
            status=state.status,
            repo_identifier=state.repo_identifier,
            session_id=state.session_id,
            last_poll_timestamp=state.last_poll_timestamp,
            pr=state.pr,
            failure_reason=state.failure_reason,
            created_at=state.created_at,
            finished_at=state.finished_at,
        )


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    total: int


class RefineRequest(BaseModel):
    feedback: str = Field(min_length=1, description="Instruction for revising the plan")


class ActionResponse(BaseModel):
    job_id: str
    message: str


class MergeResponse(BaseModel):
    job_id: str
    sha: str


# ============================================================================
# Submission
# ============================================================================


@router.post("/scaffold", response_model=JobAccepted, status_code=202)
async def submit_scaffold(
    request: ScaffoldRequest,
    manager: JobManager = Depends(get_manager),
) -> JobAccepted:
    """Create a repository from a recipe and hand it to the agent."""
    return JobAccepted(job_id=await manager.submit_scaffold(request))


@router.post("/uplink", response_model=JobAccepted, status_code=202)
async def submit_uplink(
    request: UplinkRequest,
    manager: JobManager = Depends(get_manager),
) -> JobAccepted:
    """Attach the agent to an existing repository."""
    return JobAccepted(job_id=await manager.submit_uplink(request))


@router.post("/remote", response_model=JobAccepted, status_code=202)
async def submit_remote(
    request: RemoteRequest,
    manager: JobManager = Depends(get_manager),
) -> JobAccepted:
    """Attach the agent to a host reachable over SSH."""
    return JobAccepted(job_id=await manager.submit_remote(request))


# ============================================================================
# Inspection
# ============================================================================


@router.get("", response_model=JobListResponse)
async def list_jobs(
    status: JobStatus | None = None,
    limit: int = 50,
    manager: JobManager = Depends(get_manager),
) -> JobListResponse:
    """List tracked jobs, oldest first, with an optional status filter."""
    jobs = manager.list_jobs()
    if status is not None:
        jobs = [j for j in jobs if j.status == status]
    return JobListResponse(
        jobs=[JobResponse.from_state(j) for j in jobs[:limit]],
        total=len(jobs),
    )


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, manager: JobManager = Depends(get_manager)) -> JobResponse:
    return JobResponse.from_state(manager.get_job(job_id))


# ============================================================================
# Control
# ============================================================================


@router.post("/{job_id}/approve", response_model=ActionResponse)
async def approve_plan(job_id: str, manager: JobManager = Depends(get_manager)) -> ActionResponse:
    await manager.approve_plan(job_id)
    return ActionResponse(job_id=job_id, message="Plan approved")


@router.post("/{job_id}/refine", response_model=ActionResponse)
async def refine_plan(
    job_id: str,
    request: RefineRequest,
    manager: JobManager = Depends(get_manager),
) -> ActionResponse:
    await manager.refine_plan(job_id, request.feedback)
    return ActionResponse(job_id=job_id, message="Feedback sent")


@router.post("/{job_id}/merge", response_model=MergeResponse)
async def merge_pr(job_id: str, manager: JobManager = Depends(get_manager)) -> MergeResponse:
    return MergeResponse(job_id=job_id, sha=await manager.merge_pr(job_id))


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: str, manager: JobManager = Depends(get_manager)) -> JobResponse:
    return JobResponse.from_state(await manager.cancel_job(job_id))
