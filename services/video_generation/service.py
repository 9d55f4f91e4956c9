"""
Video service: ties Poyo tasks to rows in ``videos``.

request_video() only submits; the 30-second refresh job picks up every
generating video and writes the outcome back, so no request ever blocks on a
multi-minute render.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import asyncpg

from core.database import get_pool
from core.errors import NotFoundError
from services.plans.state import VideoStatus

from .job_tracker import VideoJobTracker
from .poyo_client import PoyoClient, SoraRequest, TaskStatus, VideoGenerationError, get_poyo_client

logger = logging.getLogger(__name__)

WORDS_PER_SECOND = 2.2
CHARS_PER_SECOND = 14
MAX_PROMPT_LENGTH = 1000
# A task Poyo still does not know about after this long is treated as lost
UNREGISTERED_TASK_TIMEOUT = timedelta(hours=1)


def max_words_for_duration(seconds: int) -> int:
    if not seconds or seconds <= 0:
        return 0
    return max(10, int(seconds * WORDS_PER_SECOND))


def max_characters_for_duration(seconds: int) -> int:
    if not seconds or seconds <= 0:
        return 0
    return max(60, int(seconds * CHARS_PER_SECOND))


def build_video_prompt(
    topic: Optional[str],
    script: Optional[str] = None,
    style: str = "educational",
    duration_seconds: int = 15,
) -> str:
    """Sora prompt from topic and script, capped at 1000 characters."""
    max_words = max_words_for_duration(duration_seconds)
    max_chars = max_characters_for_duration(duration_seconds)

    parts = [f"Style: {style}.", f"Topic: {topic or 'General'}."]
    if script:
        parts.append(f"Script: {script}.")
    parts.append(
        "VoiceOver must be no more than 15 seconds. "
        f"Keep the voiceover under {max_words} words and {max_chars} characters. "
        "Match the video pacing to the voiceover timing and avoid fast cuts."
    )
    prompt = " ".join(parts)

    if len(prompt) > MAX_PROMPT_LENGTH:
        prompt = prompt[:MAX_PROMPT_LENGTH] + "..."
    return prompt


class VideoService:
    """
    Usage:
        service = VideoService()
        video = await service.request_video(user_id, topic, script, plan_item_id=item_id)
        counts = await service.refresh_generating_videos()
    """

    def __init__(
        self,
        client: Optional[PoyoClient] = None,
        tracker: Optional[VideoJobTracker] = None,
        pool: Optional[asyncpg.Pool] = None,
    ):
        self.client = client or get_poyo_client()
        self._tracker = tracker
        self._pool = pool

    async def get_tracker(self) -> VideoJobTracker:
        if self._tracker is None:
            self._tracker = VideoJobTracker(self._pool or await get_pool())
        return self._tracker

    async def request_video(
        self,
        user_id: str,
        topic: Optional[str],
        script: Optional[str],
        plan_item_id: Optional[str] = None,
        aspect_ratio: str = "9:16",
        duration_seconds: int = 15,
        style: str = "educational",
    ) -> dict:
        """
        Create a ``videos`` row and submit it to Poyo.

        Returns:
            The video row, with status ``generating`` and its provider task id

        Raises:
            VideoGenerationError: Submission failed; the row is marked failed
        """
        tracker = await self.get_tracker()
        video = await tracker.create_video(
            user_id,
            topic,
            script,
            aspect_ratio=aspect_ratio,
            duration_seconds=duration_seconds,
            plan_item_id=plan_item_id,
        )

        request = SoraRequest(
            prompt=build_video_prompt(topic, script, style, duration_seconds),
            duration_seconds=duration_seconds,
            aspect_ratio=aspect_ratio,
        )

        try:
            task_id, model = await self.client.submit(request)
        except Exception as e:
            await tracker.fail_video(video["id"], str(e))
            raise

        await tracker.mark_submitted(video["id"], task_id, model)
        video.update(
            provider_task_id=task_id,
            model=model,
            status=VideoStatus.GENERATING.value,
        )
        logger.info(f"[Video] Submitted video {video['id']} as Poyo task {task_id}")
        return video

    async def refresh_video(self, video: dict, now: Optional[datetime] = None) -> str:
        """
        Poll Poyo once for a generating video and persist the outcome.

        Returns:
            The video's status after the refresh
        """
        tracker = await self.get_tracker()
        task_id = video["provider_task_id"]

        try:
            result = await self.client.get_task_status(task_id)
        except VideoGenerationError as e:
            if e.status_code != 404:
                raise
            created_at = video.get("created_at")
            now = now or datetime.now(timezone.utc)
            if created_at is None or now - created_at < UNREGISTERED_TASK_TIMEOUT:
                logger.info(f"[Video] Task {task_id} not registered yet")
                return VideoStatus.GENERATING.value
            message = "Video task was never registered with the provider"
            logger.warning(f"[Video] Task {task_id} for video {video['id']} still unknown after {now - created_at}, giving up")
            await tracker.fail_video(video["id"], message)
            await tracker.sync_plan_item(video["id"], VideoStatus.FAILED, message)
            return VideoStatus.FAILED.value

        if result.status == TaskStatus.FINISHED:
            if not result.video_url:
                message = "Sora task completed but no video URL was provided"
                await tracker.fail_video(video["id"], message)
                await tracker.sync_plan_item(video["id"], VideoStatus.FAILED, message)
                return VideoStatus.FAILED.value
            await tracker.complete_video(video["id"], result.video_url)
            await tracker.sync_plan_item(video["id"], VideoStatus.COMPLETED)
            return VideoStatus.COMPLETED.value

        if result.status == TaskStatus.FAILED:
            message = result.error_message or "Video generation failed"
            await tracker.fail_video(video["id"], message)
            await tracker.sync_plan_item(video["id"], VideoStatus.FAILED, message)
            return VideoStatus.FAILED.value

        if result.status == TaskStatus.IN_PROGRESS:
            await tracker.update_progress(video["id"], min(95, (video.get("progress") or 0) + 5))
        return VideoStatus.GENERATING.value

    async def wait_for_video(self, video_id) -> dict:
        """
        Block until a generating video's task finishes, then persist it.

        Only for the command line; the worker uses refresh_generating_videos().
        A poll timeout leaves the video generating for the worker to pick up.
        """
        tracker = await self.get_tracker()
        video = await tracker.get_video(video_id)
        if video is None:
            raise NotFoundError("Video not found")
        if video["status"] != VideoStatus.GENERATING.value or not video.get("provider_task_id"):
            return video

        try:
            result = await self.client.wait_for_completion(video["provider_task_id"])
        except VideoGenerationError as e:
            if e.error_code != "JOB_FAILED":
                raise
            await tracker.fail_video(video_id, str(e))
            await tracker.sync_plan_item(video_id, VideoStatus.FAILED, str(e))
            raise

        if not result.video_url:
            message = "Sora task completed but no video URL was provided"
            await tracker.fail_video(video_id, message)
            await tracker.sync_plan_item(video_id, VideoStatus.FAILED, message)
        else:
            await tracker.complete_video(video_id, result.video_url)
            await tracker.sync_plan_item(video_id, VideoStatus.COMPLETED)
        return await tracker.get_video(video_id)

    async def refresh_generating_videos(self, limit: int = 50) -> dict[str, int]:
        """Refresh every generating video; per-video errors are logged and skipped."""
        tracker = await self.get_tracker()
        videos = await tracker.get_generating_videos(limit)
        counts = {"checked": 0, "completed": 0, "failed": 0, "errors": 0}

        for video in videos:
            counts["checked"] += 1
            try:
                status = await self.refresh_video(video)
            except Exception as e:
                counts["errors"] += 1
                logger.error(f"[Video] Failed to refresh video {video['id']}: {e}")
                continue
            if status == VideoStatus.COMPLETED.value:
                counts["completed"] += 1
            elif status == VideoStatus.FAILED.value:
                counts["failed"] += 1

        if videos:
            logger.info(f"[Video] Refreshed {counts['checked']} generating videos: {counts}")
        return counts
