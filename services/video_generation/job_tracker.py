"""
Video Job Tracker - persistence for Poyo generation jobs.

One row in ``videos`` per requested clip. The row owns the provider task id,
so the refresh job can resume polling after a restart.
"""

import logging
from typing import Optional

import asyncpg

from services.plans.state import ItemStatus, VideoStatus

logger = logging.getLogger(__name__)


class VideoJobTracker:
    """
    Persists video generation jobs to PostgreSQL.

    Usage:
        tracker = VideoJobTracker(db_pool)

        video = await tracker.create_video(user_id, topic, script)
        await tracker.mark_submitted(video["id"], task_id, "sora-2")
        await tracker.complete_video(video["id"], url)
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def create_video(
        self,
        user_id: str,
        topic: Optional[str],
        script: Optional[str],
        aspect_ratio: str = "9:16",
        duration_seconds: int = 15,
        plan_item_id: Optional[str] = None,
    ) -> dict:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO videos (
                    user_id, topic, script, aspect_ratio, duration_seconds, plan_item_id, status
                ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING *
                """,
                user_id,
                topic,
                script,
                aspect_ratio,
                duration_seconds,
                plan_item_id,
                VideoStatus.PENDING.value,
            )
        logger.info(f"Created video {row['id']} for user {user_id}")
        return dict(row)

    async def mark_submitted(self, video_id, task_id: str, model: str):
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE videos SET
                    provider_task_id = $1,
                    model = $2,
                    status = $3,
                    updated_at = NOW()
                WHERE id = $4
                """,
                task_id,
                model,
                VideoStatus.GENERATING.value,
                video_id,
            )

    async def update_progress(self, video_id, progress: int):
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                "UPDATE videos SET progress = $1, updated_at = NOW() WHERE id = $2",
                progress,
                video_id,
            )

    async def complete_video(self, video_id, video_url: str):
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE videos SET
                    status = $1, video_url = $2, progress = 100, error_message = NULL, updated_at = NOW()
                WHERE id = $3
                """,
                VideoStatus.COMPLETED.value,
                video_url,
                video_id,
            )
        logger.info(f"Video {video_id} completed: {video_url}")

    async def fail_video(self, video_id, error_message: str):
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                "UPDATE videos SET status = $1, error_message = $2, updated_at = NOW() WHERE id = $3",
                VideoStatus.FAILED.value,
                error_message,
                video_id,
            )
        logger.warning(f"Video {video_id} failed: {error_message}")

    async def get_video(self, video_id, user_id: Optional[str] = None) -> Optional[dict]:
        async with self.db_pool.acquire() as conn:
            if user_id is None:
                row = await conn.fetchrow("SELECT * FROM videos WHERE id = $1", video_id)
            else:
                row = await conn.fetchrow(
                    "SELECT * FROM videos WHERE id = $1 AND user_id = $2", video_id, user_id
                )
        return dict(row) if row else None

    async def get_generating_videos(self, limit: int = 50) -> list[dict]:
        """Videos with a provider task still running, oldest first."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM videos
                WHERE status = $1 AND provider_task_id IS NOT NULL
                ORDER BY created_at ASC
                LIMIT $2
                """,
                VideoStatus.GENERATING.value,
                limit,
            )
        return [dict(r) for r in rows]

    async def sync_plan_item(self, video_id, video_status: VideoStatus, error_message: Optional[str] = None) -> int:
        """
        Move the plan item waiting on this video out of ``generating``.

        Returns:
            Number of plan items updated
        """
        target = ItemStatus.COMPLETED if video_status == VideoStatus.COMPLETED else ItemStatus.FAILED
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE video_plan_items SET
                    status = $1, error_message = $2, updated_at = NOW()
                WHERE video_id = $3 AND status = $4
                """,
                target.value,
                error_message,
                video_id,
                ItemStatus.GENERATING.value,
            )
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        return int(result.split()[-1]) if result else 0
