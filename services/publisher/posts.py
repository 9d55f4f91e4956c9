"""
Scheduled post persistence.

One ``scheduled_posts`` row per (video, platform). In deferred mode rows are
created ``pending`` with a scheduled_time and sent by the worker; otherwise
they record the result of an immediate upload.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional

import asyncpg

from services.plans.state import PostStatus

logger = logging.getLogger(__name__)

POST_COLUMNS = ("status", "upload_post_id", "posted_at", "error_message", "scheduled_time")


class ScheduledPostRepository:
    """asyncpg access to scheduled_posts and the social accounts they post through."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def create_post(
        self,
        video_id,
        user_id: str,
        platform: str,
        scheduled_time: Optional[datetime] = None,
        status: str = PostStatus.PENDING.value,
        upload_post_id: Optional[str] = None,
        posted_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
    ) -> dict:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO scheduled_posts (
                    video_id, user_id, platform, scheduled_time, status,
                    upload_post_id, posted_at, error_message
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                RETURNING *
                """,
                video_id,
                user_id,
                platform,
                scheduled_time,
                status,
                upload_post_id,
                posted_at,
                error_message,
            )
        return dict(row)

    async def get_post(self, post_id, user_id: Optional[str] = None) -> Optional[dict]:
        async with self.db_pool.acquire() as conn:
            if user_id is None:
                row = await conn.fetchrow("SELECT * FROM scheduled_posts WHERE id = $1", post_id)
            else:
                row = await conn.fetchrow(
                    "SELECT * FROM scheduled_posts WHERE id = $1 AND user_id = $2", post_id, user_id
                )
        return dict(row) if row else None

    async def list_posts(self, user_id: str, status: Optional[str] = None, video_id=None) -> list[dict]:
        """The user's posts, newest first, each with its video."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT sp.*, to_jsonb(v.*) AS video
                FROM scheduled_posts sp
                LEFT JOIN videos v ON v.id = sp.video_id
                WHERE sp.user_id = $1
                  AND ($2::text IS NULL OR sp.status = $2::text)
                  AND ($3::uuid IS NULL OR sp.video_id = $3::uuid)
                ORDER BY sp.created_at DESC
                """,
                user_id,
                status,
                video_id,
            )
        return [dict(r) for r in rows]

    async def update_post(self, post_id, updates: dict[str, Any]) -> Optional[dict]:
        unknown = set(updates) - set(POST_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown columns: {sorted(unknown)}")

        parts = [f"{column} = ${index}" for index, column in enumerate(updates, start=2)]
        parts.append("updated_at = NOW()")
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                f"UPDATE scheduled_posts SET {', '.join(parts)} WHERE id = $1 RETURNING *",
                post_id,
                *updates.values(),
            )
        return dict(row) if row else None

    async def mark_failed(self, post_ids: Iterable, error_message: str):
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE scheduled_posts
                SET status = $1, error_message = $2, updated_at = NOW()
                WHERE id = ANY($3::uuid[])
                """,
                PostStatus.FAILED.value,
                error_message,
                [str(p) for p in post_ids],
            )

    async def due_posts(self, before: datetime, limit: int) -> list[dict]:
        """Pending posts not yet handed to Upload-Post and scheduled at or before ``before``, oldest first."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM scheduled_posts
                WHERE status = $1 AND upload_post_id IS NULL
                  AND scheduled_time IS NOT NULL AND scheduled_time <= $2
                ORDER BY scheduled_time ASC
                LIMIT $3
                """,
                PostStatus.PENDING.value,
                before,
                limit,
            )
        return [dict(r) for r in rows]

    async def pending_uploads(self, limit: int = 20) -> list[dict]:
        """Pending posts already handed to Upload-Post."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM scheduled_posts
                WHERE status = $1 AND upload_post_id IS NOT NULL
                ORDER BY created_at ASC
                LIMIT $2
                """,
                PostStatus.PENDING.value,
                limit,
            )
        return [dict(r) for r in rows]

    async def statuses_for_video(self, video_id) -> list[str]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT status FROM scheduled_posts WHERE video_id = $1 AND status <> $2",
                video_id,
                PostStatus.CANCELLED.value,
            )
        return [r["status"] for r in rows]

    async def caption_for_video(self, video_id) -> str:
        """Caption of the plan item owning the video, else its topic."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT i.caption, i.topic, v.topic AS video_topic
                FROM videos v
                LEFT JOIN video_plan_items i ON i.video_id = v.id
                WHERE v.id = $1
                LIMIT 1
                """,
                video_id,
            )
        if row is None:
            return ""
        return row["caption"] or row["topic"] or row["video_topic"] or ""

    async def upload_profile(self, user_id: str, platforms: Iterable[str]) -> Optional[str]:
        """Upload-Post profile of the first connected account among ``platforms``."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT platform_account_id FROM social_accounts
                WHERE user_id = $1 AND platform = ANY($2::text[]) AND status = 'connected'
                  AND platform_account_id IS NOT NULL
                ORDER BY connected_at DESC
                LIMIT 1
                """,
                user_id,
                list(platforms),
            )
        return row["platform_account_id"] if row else None
