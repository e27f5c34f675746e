"""Authentication state and recipe listing."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from launchpad.api.app import get_manager
from launchpad.core.models import AuthState
from launchpad.engine.manager import JobManager

router = APIRouter(prefix="/api", tags=["System"])


class RecipeInfo(BaseModel):
    id: str
    script_url: str


class RecipeListResponse(BaseModel):
    recipes: list[RecipeInfo]


@router.get("/auth", response_model=AuthState)
async def auth_state(manager: JobManager = Depends(get_manager)) -> AuthState:
    """Whether each external service has a credential. Never returns the credential."""
    return manager.auth_status()


@router.get("/recipes", response_model=RecipeListResponse)
async def list_recipes(manager: JobManager = Depends(get_manager)) -> RecipeListResponse:
    return RecipeListResponse(
        recipes=[
            RecipeInfo(id=recipe_id, script_url=url)
            for recipe_id, url in sorted(manager.recipes().items())
        ]
    )
