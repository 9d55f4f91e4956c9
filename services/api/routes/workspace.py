"""Preferences and saved prompt endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from services.workspace.preferences import PreferencesService
from services.workspace.prompts import PromptLibrary

from ..deps import get_preferences_service, get_prompt_library, get_user_id

router = APIRouter(prefix="/api", tags=["workspace"])


class PreferencesUpdate(BaseModel):
    timezone: Optional[str] = None
    default_platforms: Optional[list[str]] = None
    notifications_enabled: Optional[bool] = None
    auto_research_default: Optional[bool] = None
    auto_approve_default: Optional[bool] = None


class PromptBody(BaseModel):
    name: Optional[str] = None
    topic: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    why_important: Optional[str] = None
    useful_tips: Optional[str] = None


@router.get("/preferences")
async def get_preferences(
    user_id: str = Depends(get_user_id),
    preferences: PreferencesService = Depends(get_preferences_service),
):
    return {"preferences": await preferences.get_preferences(user_id)}


@router.put("/preferences")
async def update_preferences(
    request: PreferencesUpdate,
    user_id: str = Depends(get_user_id),
    preferences: PreferencesService = Depends(get_preferences_service),
):
    saved = await preferences.update_preferences(user_id, request.model_dump(exclude_unset=True))
    return {"preferences": saved}


@router.get("/prompts")
async def list_prompts(user_id: str = Depends(get_user_id), library: PromptLibrary = Depends(get_prompt_library)):
    return {"prompts": await library.list_prompts(user_id)}


@router.post("/prompts", status_code=201)
async def create_prompt(
    request: PromptBody,
    user_id: str = Depends(get_user_id),
    library: PromptLibrary = Depends(get_prompt_library),
):
    return {"prompt": await library.create_prompt(user_id, request.model_dump())}


@router.get("/prompts/{prompt_id}")
async def get_prompt(prompt_id: str, user_id: str = Depends(get_user_id), library: PromptLibrary = Depends(get_prompt_library)):
    return {"prompt": await library.get_prompt(prompt_id, user_id)}


@router.put("/prompts/{prompt_id}")
async def update_prompt(
    prompt_id: str,
    request: PromptBody,
    user_id: str = Depends(get_user_id),
    library: PromptLibrary = Depends(get_prompt_library),
):
    return {"prompt": await library.update_prompt(prompt_id, user_id, request.model_dump())}


@router.delete("/prompts/{prompt_id}")
async def delete_prompt(
    prompt_id: str,
    user_id: str = Depends(get_user_id),
    library: PromptLibrary = Depends(get_prompt_library),
):
    await library.delete_prompt(prompt_id, user_id)
    return {"message": "Prompt deleted successfully"}
