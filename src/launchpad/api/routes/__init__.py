"""API routes, all under the /api prefix."""

from fastapi import APIRouter

from launchpad.api.routes.jobs import router as jobs_router
from launchpad.api.routes.stream import router as stream_router
from launchpad.api.routes.system import router as system_router

router = APIRouter()
router.include_router(system_router)
router.include_router(jobs_router)
router.include_router(stream_router)

__all__ = ["router"]
