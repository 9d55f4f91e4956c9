"""Scheduled post endpoints."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from services.publisher.distribution import DistributionService

from ..deps import get_distribution_service, get_user_id

router = APIRouter(prefix="/api/posts", tags=["posts"])


class SchedulePostRequest(BaseModel):
    video_id: Optional[str] = None
    platforms: list[str] = []
    scheduled_time: Optional[datetime] = None
    caption: Optional[str] = None


@router.post("/schedule")
async def schedule_post(
    request: SchedulePostRequest,
    user_id: str = Depends(get_user_id),
    distribution: DistributionService = Depends(get_distribution_service),
):
    posts = await distribution.schedule_post(
        user_id,
        request.video_id,
        request.platforms,
        scheduled_time=request.scheduled_time,
        caption=request.caption,
    )
    return {"posts": posts}


@router.get("")
async def list_posts(
    status: Optional[str] = None,
    video_id: Optional[str] = None,
    user_id: str = Depends(get_user_id),
    distribution: DistributionService = Depends(get_distribution_service),
):
    return {"posts": await distribution.list_posts(user_id, status=status, video_id=video_id)}


@router.get("/{post_id}/status")
async def post_status(
    post_id: str,
    user_id: str = Depends(get_user_id),
    distribution: DistributionService = Depends(get_distribution_service),
):
    return {"post": await distribution.refresh_post_status(post_id, user_id)}


@router.delete("/{post_id}")
async def cancel_post(
    post_id: str,
    user_id: str = Depends(get_user_id),
    distribution: DistributionService = Depends(get_distribution_service),
):
    await distribution.cancel_post(post_id, user_id)
    return {"message": "Post cancelled successfully"}
