"""Plan and plan item endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from core.errors import ValidationError
from services.automation.service import AutomationService
from services.plans.scheduling import local_now, parse_date
from services.plans.service import PlanService

from ..deps import get_automation_service, get_plan_service, get_user_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plans", tags=["plans"])


class PlanCreate(BaseModel):
    """Create a plan; required fields are checked by the service so they map to 400."""
    name: Optional[str] = None
    videos_per_day: Optional[int] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    enabled: Optional[bool] = None
    auto_research: Optional[bool] = None
    auto_create: Optional[bool] = None
    auto_approve: Optional[bool] = None
    auto_schedule_trigger: Optional[str] = None
    trigger_time: Optional[str] = None
    default_platforms: Optional[list[str]] = None
    timezone: Optional[str] = None
    video_times: Optional[list[Optional[str]]] = None
    video_topics: Optional[list[Optional[str]]] = None
    video_categories: Optional[list[Optional[str]]] = None


class PlanUpdate(BaseModel):
    name: Optional[str] = None
    videos_per_day: Optional[int] = None
    end_date: Optional[str] = None
    enabled: Optional[bool] = None
    auto_research: Optional[bool] = None
    auto_create: Optional[bool] = None
    auto_approve: Optional[bool] = None
    auto_schedule_trigger: Optional[str] = None
    trigger_time: Optional[str] = None
    default_platforms: Optional[list[str]] = None
    timezone: Optional[str] = None


class ItemUpdate(BaseModel):
    topic: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    why_important: Optional[str] = None
    useful_tips: Optional[str] = None
    script: Optional[str] = None
    script_status: Optional[str] = None
    platforms: Optional[list[str]] = None
    caption: Optional[str] = None
    status: Optional[str] = None
    scheduled_time: Optional[str] = None
    error_message: Optional[str] = None


class GenerateScriptsRequest(BaseModel):
    date: Optional[str] = None  # YYYY-MM-DD, defaults to today in the plan timezone


@router.post("", status_code=201)
async def create_plan(
    request: PlanCreate,
    user_id: str = Depends(get_user_id),
    plans: PlanService = Depends(get_plan_service),
):
    data = request.model_dump(exclude={"video_times", "video_topics", "video_categories"})
    return await plans.create_plan(
        user_id,
        data,
        video_times=request.video_times,
        video_topics=request.video_topics,
        video_categories=request.video_categories,
    )


@router.get("")
async def list_plans(user_id: str = Depends(get_user_id), plans: PlanService = Depends(get_plan_service)):
    return {"plans": await plans.get_user_plans(user_id)}


@router.patch("/items/{item_id}")
async def update_item(
    item_id: str,
    request: ItemUpdate,
    user_id: str = Depends(get_user_id),
    plans: PlanService = Depends(get_plan_service),
):
    item = await plans.update_plan_item(item_id, user_id, request.model_dump(exclude_unset=True))
    return {"item": item}


@router.post("/items/{item_id}/generate-topic")
async def generate_topic(
    item_id: str,
    user_id: str = Depends(get_user_id),
    plans: PlanService = Depends(get_plan_service),
):
    return {"item": await plans.generate_topic_for_item(item_id, user_id)}


@router.post("/items/{item_id}/generate-script")
async def generate_script(
    item_id: str,
    user_id: str = Depends(get_user_id),
    automation: AutomationService = Depends(get_automation_service),
):
    return {"item": await automation.generate_script_for_item(item_id, user_id)}


@router.post("/items/{item_id}/approve-script")
async def approve_script(
    item_id: str,
    user_id: str = Depends(get_user_id),
    automation: AutomationService = Depends(get_automation_service),
):
    return {"item": await automation.approve_script(item_id, user_id)}


@router.post("/items/{item_id}/reject-script")
async def reject_script(
    item_id: str,
    user_id: str = Depends(get_user_id),
    automation: AutomationService = Depends(get_automation_service),
):
    return {"item": await automation.reject_script(item_id, user_id)}


@router.post("/items/{item_id}/create-video")
async def create_video(
    item_id: str,
    user_id: str = Depends(get_user_id),
    automation: AutomationService = Depends(get_automation_service),
):
    item = await automation.generate_video_for_item(item_id, user_id)
    if item is None:
        return {"item": None, "message": "Video generation already in progress"}
    return {"item": item}


@router.post("/items/{item_id}/schedule-distribution")
async def schedule_distribution(
    item_id: str,
    user_id: str = Depends(get_user_id),
    automation: AutomationService = Depends(get_automation_service),
):
    posts = await automation.distribution.schedule_distribution(item_id, user_id)
    return {"posts": posts}


@router.get("/{plan_id}")
async def get_plan(plan_id: str, user_id: str = Depends(get_user_id), plans: PlanService = Depends(get_plan_service)):
    """Plan with its items and the polling interval the client should use."""
    return await plans.get_plan_overview(plan_id, user_id)


@router.patch("/{plan_id}")
async def update_plan(
    plan_id: str,
    request: PlanUpdate,
    user_id: str = Depends(get_user_id),
    plans: PlanService = Depends(get_plan_service),
):
    return {"plan": await plans.update_plan(plan_id, user_id, request.model_dump(exclude_unset=True))}


@router.delete("/{plan_id}")
async def delete_plan(plan_id: str, user_id: str = Depends(get_user_id), plans: PlanService = Depends(get_plan_service)):
    await plans.delete_plan(plan_id, user_id)
    return {"message": "Plan deleted successfully"}


@router.post("/{plan_id}/generate-scripts")
async def generate_scripts(
    plan_id: str,
    request: Optional[GenerateScriptsRequest] = None,
    user_id: str = Depends(get_user_id),
    automation: AutomationService = Depends(get_automation_service),
):
    """Topics, then scripts, for one day of the plan."""
    plan = await automation.plans.get_plan(plan_id, user_id)
    try:
        day = parse_date(request.date if request else None) or local_now(plan.get("timezone")).date()
    except ValueError:
        raise ValidationError("date must be YYYY-MM-DD")

    topics = await automation.generate_topics_for_date(plan_id, day, user_id)
    scripts = await automation.generate_scripts_for_date(plan_id, day, user_id)
    logger.info(f"[API] generate-scripts for plan {plan_id} on {day}: {topics} topics, {scripts} scripts")
    return {"date": day.isoformat(), "topics": topics, "scripts": scripts}


@router.post("/{plan_id}/process")
async def process_plan(
    plan_id: str,
    user_id: str = Depends(get_user_id),
    automation: AutomationService = Depends(get_automation_service),
):
    return await automation.process_plan(plan_id, user_id)
