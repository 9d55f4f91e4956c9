"""
Distribution Service

Moves finished videos onto social platforms through Upload-Post.

Two modes (see core.feature_flags):
- deferred: schedule_distribution() stores pending scheduled_posts rows and
  send_scheduled_posts() uploads them once they fall due
- provider: the upload happens immediately and Upload-Post holds it until
  the scheduled_date

Either way check_pending_upload_status() follows async uploads until each
platform reports posted or failed, then settles the plan item.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

import asyncpg

from core.config import get_config
from core.database import get_pool
from core.errors import NotFoundError, ProviderError, ValidationError
from core.feature_flags import should_defer_posting
from services.plans.repository import PlanRepository
from services.plans.scheduling import local_to_utc
from services.plans.state import ItemStatus, PostStatus, VideoStatus, ensure_transition
from services.video_generation.job_tracker import VideoJobTracker

from .posts import ScheduledPostRepository
from .uploadpost_client import (
    DistributionError,
    PlatformResult,
    UploadPostClient,
    UploadResponse,
    get_uploadpost_client,
)

logger = logging.getLogger(__name__)

PENDING_UPLOAD_CHECK_LIMIT = 20
SETTLED_POST_STATUSES = (PostStatus.POSTED.value, PostStatus.FAILED.value)


def post_status_for_result(result: Optional[PlatformResult], overall: Optional[str] = None) -> str:
    """Map an Upload-Post platform result (or the overall status) to a PostStatus value."""
    if result is not None:
        if result.success:
            return PostStatus.POSTED.value
        if result.status == "failed" or result.error:
            return PostStatus.FAILED.value
        if result.post_id:
            return PostStatus.POSTED.value
        return PostStatus.PENDING.value

    if overall == "success":
        return PostStatus.POSTED.value
    if overall == "failed":
        return PostStatus.FAILED.value
    return PostStatus.PENDING.value


def settled_item_status(post_statuses: list[str]) -> Optional[str]:
    """
    Item status once every post has settled: posted if any post went out,
    failed if all failed. None while any post is still pending.
    """
    if not post_statuses or any(s not in SETTLED_POST_STATUSES for s in post_statuses):
        return None
    if any(s == PostStatus.POSTED.value for s in post_statuses):
        return ItemStatus.POSTED.value
    return ItemStatus.FAILED.value


def _completed_video_url(video: Optional[dict]) -> Optional[str]:
    if not video or video.get("status") != VideoStatus.COMPLETED.value:
        return None
    return video.get("video_url")


class DistributionService:
    """
    Usage:
        service = DistributionService()
        posts = await service.schedule_distribution(item_id, user_id)

        # worker
        await service.send_scheduled_posts()
        await service.check_pending_upload_status()
    """

    def __init__(
        self,
        client: Optional[UploadPostClient] = None,
        plans: Optional[PlanRepository] = None,
        posts: Optional[ScheduledPostRepository] = None,
        tracker: Optional[VideoJobTracker] = None,
        pool: Optional[asyncpg.Pool] = None,
        config=None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = client
        self._plans = plans
        self._posts = posts
        self._tracker = tracker
        self._pool = pool
        self.config = config or get_config()
        self._sleep = sleep

    @property
    def client(self) -> UploadPostClient:
        if self._client is None:
            self._client = get_uploadpost_client()
        return self._client

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await get_pool()
        return self._pool

    async def get_plans(self) -> PlanRepository:
        if self._plans is None:
            self._plans = PlanRepository(await self._get_pool())
        return self._plans

    async def get_posts(self) -> ScheduledPostRepository:
        if self._posts is None:
            self._posts = ScheduledPostRepository(await self._get_pool())
        return self._posts

    async def get_tracker(self) -> VideoJobTracker:
        if self._tracker is None:
            self._tracker = VideoJobTracker(await self._get_pool())
        return self._tracker

    async def _record_upload(
        self,
        video_id,
        user_id: str,
        platforms: list[str],
        response: UploadResponse,
        scheduled_time: Optional[datetime],
    ) -> list[dict]:
        posts = await self.get_posts()
        created = []
        for platform in platforms:
            result = response.result_for(platform)
            status = post_status_for_result(result, response.status)
            created.append(await posts.create_post(
                video_id,
                user_id,
                platform,
                scheduled_time=scheduled_time,
                status=status,
                upload_post_id=response.upload_id or (result.post_id if result else None),
                posted_at=datetime.now(timezone.utc) if status == PostStatus.POSTED.value else None,
                error_message=(result.error if result else None) or response.error,
            ))
        return created

    async def schedule_distribution(self, item_id, user_id: str) -> list[dict]:
        """
        Queue a completed plan item for posting on its platforms.

        Returns:
            The scheduled_posts rows created

        Raises:
            NotFoundError: Item missing or not owned by the user
            ValidationError: Item not completed, video not ready, no platforms or accounts
        """
        plans = await self.get_plans()
        posts = await self.get_posts()
        tracker = await self.get_tracker()

        item = await plans.get_item_for_user(item_id, user_id)
        if item is None:
            raise NotFoundError("Plan item not found")
        if item["status"] != ItemStatus.COMPLETED.value:
            raise ValidationError("Item must be completed to schedule distribution")

        video = await tracker.get_video(item["video_id"]) if item.get("video_id") else None
        video_url = _completed_video_url(video)
        if not video_url:
            raise ValidationError("Video must be completed with a URL")

        plan = item.get("plan") or {}
        platforms = item.get("platforms") or plan.get("default_platforms") or []
        if not platforms:
            raise ValidationError("No platforms specified for distribution")

        profile = await posts.upload_profile(user_id, platforms)
        if not profile:
            raise ValidationError("No connected social accounts found for specified platforms")

        scheduled_time = local_to_utc(item["scheduled_date"], item.get("scheduled_time"), plan.get("timezone"))
        defer = should_defer_posting()

        if defer and scheduled_time:
            logger.info(
                f"[Distribution] Deferring item {item_id} to {scheduled_time.isoformat()} on {platforms}"
            )
            created = [
                await posts.create_post(item["video_id"], user_id, platform, scheduled_time=scheduled_time)
                for platform in platforms
            ]
        else:
            response = await self.client.post_video(
                user=profile,
                video_url=video_url,
                platforms=platforms,
                caption=item.get("caption") or item.get("topic") or "",
                scheduled_time=None if defer else scheduled_time,
            )
            created = await self._record_upload(item["video_id"], user_id, platforms, response, scheduled_time)

        ensure_transition(item["status"], ItemStatus.SCHEDULED.value)
        await plans.update_item(item_id, {
            "status": ItemStatus.SCHEDULED.value,
            "scheduled_post_id": created[0]["id"] if created else None,
            "error_message": None,
        })
        logger.info(f"[Distribution] Item {item_id} scheduled with {len(created)} post(s)")
        return created

    async def send_scheduled_posts(self, now: Optional[datetime] = None) -> dict[str, int]:
        """
        Upload pending posts that are due. Deferred mode only.

        Posts for the same video and user go out in one upload. Rate limits
        leave the group pending for the next run.
        """
        counts = {"due": 0, "sent": 0, "failed": 0, "deferred": 0}
        if not should_defer_posting():
            return counts

        settings = self.config.distribution
        posts = await self.get_posts()
        tracker = await self.get_tracker()

        now = now or datetime.now(timezone.utc)
        due = await posts.due_posts(now + timedelta(seconds=settings.due_buffer_seconds), settings.max_posts_per_run)
        if not due:
            return counts
        counts["due"] = len(due)
        logger.info(f"[Scheduled Posts] Found {len(due)} posts due (max {settings.max_posts_per_run} per run)")

        groups: dict[tuple, list[dict]] = {}
        for post in due:
            groups.setdefault((str(post["video_id"]), post["user_id"]), []).append(post)

        for index, group in enumerate(groups.values()):
            if index:
                await self._sleep(settings.delay_between_batches_ms / 1000)

            first = group[0]
            ids = [p["id"] for p in group]
            platforms = [p["platform"] for p in group]

            video = await tracker.get_video(first["video_id"])
            if not video or not video.get("video_url"):
                logger.error(f"[Scheduled Posts] No video URL for post {first['id']}")
                await posts.mark_failed(ids, "Video URL not found")
                counts["failed"] += len(group)
                continue

            profile = await posts.upload_profile(first["user_id"], platforms)
            if not profile:
                logger.error(f"[Scheduled Posts] No Upload-Post profile for post {first['id']}")
                await posts.mark_failed(ids, "Upload-Post user ID not found")
                counts["failed"] += len(group)
                continue

            caption = await posts.caption_for_video(first["video_id"])
            logger.info(f"[Scheduled Posts] Sending {len(platforms)} posts for video {first['video_id']}")

            try:
                response = await self.client.post_video(
                    user=profile,
                    video_url=video["video_url"],
                    platforms=platforms,
                    caption=caption,
                )
            except ProviderError as e:
                if e.is_rate_limited:
                    logger.warning(f"[Scheduled Posts] Rate limit hit, will retry on next run: {e}")
                    counts["deferred"] += len(group)
                    await self._sleep(settings.rate_limit_pause_seconds)
                    continue
                logger.error(f"[Scheduled Posts] Upload failed for video {first['video_id']}: {e}")
                await posts.mark_failed(ids, str(e))
                counts["failed"] += len(group)
                continue

            for post in group:
                result = response.result_for(post["platform"])
                status = post_status_for_result(result)
                upload_id = response.upload_id or (result.post_id if result else None)
                if status == PostStatus.PENDING.value and not upload_id:
                    # Accepted with nothing to poll; leave it out of the due queue
                    status = PostStatus.SCHEDULED.value
                await posts.update_post(post["id"], {
                    "status": status,
                    "upload_post_id": upload_id,
                    "posted_at": datetime.now(timezone.utc) if status == PostStatus.POSTED.value else None,
                    "error_message": result.error if result else None,
                })
                if status == PostStatus.FAILED.value:
                    counts["failed"] += 1
                else:
                    counts["sent"] += 1
            await self._settle_item(first["video_id"])

        return counts

    async def check_pending_upload_status(self) -> dict[str, int]:
        """Follow async uploads and settle posts and their plan items."""
        posts = await self.get_posts()
        pending = await posts.pending_uploads(PENDING_UPLOAD_CHECK_LIMIT)
        counts = {"checked": 0, "posted": 0, "failed": 0, "errors": 0}
        if not pending:
            return counts

        logger.info(f"[Distribution] Checking status for {len(pending)} pending uploads")
        for post in pending:
            counts["checked"] += 1
            try:
                updated = await self._refresh_post(post)
            except ProviderError as e:
                counts["errors"] += 1
                logger.error(f"[Distribution] Error checking upload status for post {post['id']}: {e}")
                continue
            if updated["status"] == PostStatus.POSTED.value:
                counts["posted"] += 1
            elif updated["status"] == PostStatus.FAILED.value:
                counts["failed"] += 1
        return counts

    async def _refresh_post(self, post: dict) -> dict:
        posts = await self.get_posts()
        response = await self.client.get_upload_status(post["upload_post_id"])
        result = response.result_for(post["platform"])
        status = post_status_for_result(result, response.status)
        if status == post["status"]:
            return post

        updated = await posts.update_post(post["id"], {
            "status": status,
            "posted_at": datetime.now(timezone.utc) if status == PostStatus.POSTED.value else post.get("posted_at"),
            "error_message": (result.error if result else None) or response.error,
        })
        logger.info(f"[Distribution] Post {post['id']} ({post['platform']}): {post['status']} -> {status}")
        await self._settle_item(post["video_id"])
        return updated or {**post, "status": status}

    async def _settle_item(self, video_id) -> Optional[str]:
        """Close out the plan item once all of its video's posts have settled."""
        plans = await self.get_plans()
        posts = await self.get_posts()

        item = await plans.get_item_by_video(video_id)
        if item is None or item["status"] != ItemStatus.SCHEDULED.value:
            return None

        target = settled_item_status(await posts.statuses_for_video(video_id))
        if target is None:
            return None

        updates = {"status": target}
        if target == ItemStatus.FAILED.value:
            updates["error_message"] = "All posts failed"
        await plans.update_item(item["id"], updates, expected_status=ItemStatus.SCHEDULED.value)
        logger.info(f"[Distribution] All posts settled for item {item['id']}: {target}")
        return target

    # -- posts API -----------------------------------------------------------

    async def list_posts(self, user_id: str, status: Optional[str] = None, video_id=None) -> list[dict]:
        posts = await self.get_posts()
        return await posts.list_posts(user_id, status=status, video_id=video_id)

    async def schedule_post(
        self,
        user_id: str,
        video_id,
        platforms: list[str],
        scheduled_time: Optional[datetime] = None,
        caption: Optional[str] = None,
    ) -> list[dict]:
        """
        Post a standalone video. A failed upload is recorded as failed rows
        rather than raised.
        """
        if not video_id or not platforms:
            raise ValidationError("Video ID and at least one platform are required")

        posts = await self.get_posts()
        tracker = await self.get_tracker()

        video = await tracker.get_video(video_id, user_id)
        if video is None:
            raise NotFoundError("Video not found")
        video_url = _completed_video_url(video)
        if not video_url:
            raise ValidationError("Video must be completed before posting")

        profile = await posts.upload_profile(user_id, platforms)
        if not profile:
            raise ValidationError("No connected accounts found for selected platforms")

        if scheduled_time and scheduled_time.tzinfo is None:
            scheduled_time = scheduled_time.replace(tzinfo=timezone.utc)
        defer = should_defer_posting()

        if defer and scheduled_time and scheduled_time > datetime.now(timezone.utc):
            return [
                await posts.create_post(video_id, user_id, platform, scheduled_time=scheduled_time)
                for platform in platforms
            ]

        try:
            response = await self.client.post_video(
                user=profile,
                video_url=video_url,
                platforms=platforms,
                caption=caption or video.get("topic"),
                scheduled_time=None if defer else scheduled_time,
            )
        except DistributionError as e:
            logger.error(f"[Distribution] Posting video {video_id} failed: {e}")
            return [
                await posts.create_post(
                    video_id,
                    user_id,
                    platform,
                    scheduled_time=scheduled_time,
                    status=PostStatus.FAILED.value,
                    error_message=str(e),
                )
                for platform in platforms
            ]

        return await self._record_upload(video_id, user_id, platforms, response, scheduled_time)

    async def refresh_post_status(self, post_id, user_id: str) -> dict:
        """A post with fresh status from Upload-Post when it is still unsettled."""
        posts = await self.get_posts()
        post = await posts.get_post(post_id, user_id)
        if post is None:
            raise NotFoundError("Post not found")

        if post.get("upload_post_id") and post["status"] in (PostStatus.PENDING.value, PostStatus.FAILED.value):
            try:
                return await self._refresh_post(post)
            except ProviderError as e:
                logger.warning(f"[Distribution] Status check for post {post_id} failed: {e}")
        return post

    async def cancel_post(self, post_id, user_id: str) -> dict:
        posts = await self.get_posts()
        post = await posts.get_post(post_id, user_id)
        if post is None:
            raise NotFoundError("Post not found")
        if post["status"] == PostStatus.POSTED.value:
            raise ValidationError("Cannot cancel already posted content")

        cancelled = await posts.update_post(post_id, {"status": PostStatus.CANCELLED.value})
        logger.info(f"[Distribution] Cancelled post {post_id}")
        return cancelled
