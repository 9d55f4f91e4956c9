"""
Plan persistence.

Rows come back as plain dicts. Item queries that need plan settings join the
plan in as a nested ``plan`` dict (via to_jsonb), so dates and times inside
it are ISO strings.
"""

import logging
from datetime import date
from typing import Any, Iterable, Optional

import asyncpg

from .state import ItemStatus

logger = logging.getLogger(__name__)

PLAN_COLUMNS = (
    "name",
    "videos_per_day",
    "start_date",
    "end_date",
    "enabled",
    "auto_research",
    "auto_create",
    "auto_approve",
    "auto_schedule_trigger",
    "trigger_time",
    "default_platforms",
    "timezone",
)

ITEM_COLUMNS = (
    "scheduled_date",
    "scheduled_time",
    "topic",
    "category",
    "description",
    "why_important",
    "useful_tips",
    "research_data",
    "script",
    "script_status",
    "platforms",
    "caption",
    "status",
    "video_id",
    "scheduled_post_id",
    "error_message",
)

_ITEM_WITH_PLAN = """
    SELECT i.*, to_jsonb(p.*) AS plan
    FROM video_plan_items i
    JOIN video_plans p ON p.id = i.plan_id
"""


def _set_clause(updates: dict[str, Any], allowed: Iterable[str], start: int = 1) -> tuple[str, list]:
    allowed = set(allowed)
    unknown = set(updates) - allowed
    if unknown:
        raise ValueError(f"Unknown columns: {sorted(unknown)}")

    parts, values = [], []
    for index, (column, value) in enumerate(updates.items(), start=start):
        parts.append(f"{column} = ${index}")
        values.append(value)
    parts.append("updated_at = NOW()")
    return ", ".join(parts), values


class PlanRepository:
    """asyncpg access to video_plans and video_plan_items."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    # -- plans ---------------------------------------------------------------

    async def create_plan(self, user_id: str, values: dict[str, Any]) -> dict:
        columns = [c for c in PLAN_COLUMNS if c in values]
        placeholders = ", ".join(f"${i}" for i in range(2, len(columns) + 2))
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO video_plans (user_id, {", ".join(columns)})
                VALUES ($1, {placeholders})
                RETURNING *
                """,
                user_id,
                *[values[c] for c in columns],
            )
        return dict(row)

    async def get_plan(self, plan_id, user_id: str) -> Optional[dict]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM video_plans WHERE id = $1 AND user_id = $2",
                plan_id,
                user_id,
            )
        return dict(row) if row else None

    async def list_plans(self, user_id: str) -> list[dict]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM video_plans WHERE user_id = $1 ORDER BY created_at DESC",
                user_id,
            )
        return [dict(r) for r in rows]

    async def update_plan(self, plan_id, user_id: str, updates: dict[str, Any]) -> Optional[dict]:
        clause, values = _set_clause(updates, PLAN_COLUMNS, start=3)
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                f"UPDATE video_plans SET {clause} WHERE id = $1 AND user_id = $2 RETURNING *",
                plan_id,
                user_id,
                *values,
            )
        return dict(row) if row else None

    async def delete_plan(self, plan_id, user_id: str) -> bool:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM video_plans WHERE id = $1 AND user_id = $2",
                plan_id,
                user_id,
            )
        return result.endswith(" 1")

    async def enabled_plans(self, triggers: Iterable[str] = ("daily",)) -> list[dict]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM video_plans
                WHERE enabled = true AND auto_schedule_trigger = ANY($1::text[])
                """,
                list(triggers),
            )
        return [dict(r) for r in rows]

    # -- items ---------------------------------------------------------------

    async def insert_item(self, plan_id, values: dict[str, Any]) -> dict:
        columns = [c for c in ITEM_COLUMNS if c in values]
        placeholders = ", ".join(f"${i}" for i in range(2, len(columns) + 2))
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO video_plan_items (plan_id, {", ".join(columns)})
                VALUES ($1, {placeholders})
                RETURNING *
                """,
                plan_id,
                *[values[c] for c in columns],
            )
        return dict(row)

    async def get_items(self, plan_id) -> list[dict]:
        """Items of a plan in posting order, each with its video (or None)."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT i.*, to_jsonb(v.*) AS video
                FROM video_plan_items i
                LEFT JOIN videos v ON v.id = i.video_id
                WHERE i.plan_id = $1
                ORDER BY i.scheduled_date ASC, i.scheduled_time ASC
                """,
                plan_id,
            )
        return [dict(r) for r in rows]

    async def get_item_for_user(self, item_id, user_id: str) -> Optional[dict]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                f"{_ITEM_WITH_PLAN} WHERE i.id = $1 AND p.user_id = $2",
                item_id,
                user_id,
            )
        return dict(row) if row else None

    async def get_item_by_video(self, video_id) -> Optional[dict]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(f"{_ITEM_WITH_PLAN} WHERE i.video_id = $1 LIMIT 1", video_id)
        return dict(row) if row else None

    async def update_item(
        self,
        item_id,
        updates: dict[str, Any],
        expected_status: Optional[str] = None,
    ) -> Optional[dict]:
        """
        Update an item. With ``expected_status`` the update only applies while
        the item is still in that status.

        Returns:
            The updated row, or None when nothing matched
        """
        clause, values = _set_clause(updates, ITEM_COLUMNS, start=2)
        query = f"UPDATE video_plan_items SET {clause} WHERE id = $1"
        if expected_status is not None:
            values.append(expected_status)
            query += f" AND status = ${len(values) + 1}"
        query += " RETURNING *"

        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(query, item_id, *values)
        return dict(row) if row else None

    async def claim_item_for_video(self, item_id) -> Optional[dict]:
        """Atomically move an approved item with no video to generating."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE video_plan_items
                SET status = $2, error_message = NULL, updated_at = NOW()
                WHERE id = $1 AND status = $3 AND video_id IS NULL
                RETURNING *
                """,
                item_id,
                ItemStatus.GENERATING.value,
                ItemStatus.APPROVED.value,
            )
        return dict(row) if row else None

    async def attach_video(self, item_id, video_id) -> Optional[dict]:
        """Record the video on a claimed item; no-op if the item left generating."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE video_plan_items
                SET video_id = $2, updated_at = NOW()
                WHERE id = $1 AND status = $3
                RETURNING *
                """,
                item_id,
                video_id,
                ItemStatus.GENERATING.value,
            )
        return dict(row) if row else None

    # -- queues --------------------------------------------------------------

    async def items_ready_for_distribution(self, limit: int = 10) -> list[dict]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                {_ITEM_WITH_PLAN}
                WHERE p.enabled = true AND i.status = $1 AND i.video_id IS NOT NULL
                ORDER BY i.scheduled_date ASC, i.scheduled_time ASC
                LIMIT $2
                """,
                ItemStatus.COMPLETED.value,
                limit,
            )
        return [dict(r) for r in rows]

    async def items_for_date(self, plan_id, day: date, status: str, limit: int = 10) -> list[dict]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM video_plan_items
                WHERE plan_id = $1 AND scheduled_date = $2 AND status = $3
                ORDER BY scheduled_time ASC
                LIMIT $4
                """,
                plan_id,
                day,
                status,
                limit,
            )
        return [dict(r) for r in rows]

    # -- history -------------------------------------------------------------

    async def recent_topics(self, user_id: str, limit: int = 10) -> list[dict]:
        """The user's most recent topics across all plans."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT i.topic, i.category
                FROM video_plan_items i
                JOIN video_plans p ON p.id = i.plan_id
                WHERE p.user_id = $1 AND i.topic IS NOT NULL
                ORDER BY i.updated_at DESC
                LIMIT $2
                """,
                user_id,
                limit,
            )
        return [{"topic": r["topic"], "category": r["category"]} for r in rows]

    async def recent_scripts(self, plan_id, exclude_item_id=None, limit: int = 5) -> list[str]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT script FROM video_plan_items
                WHERE plan_id = $1 AND script IS NOT NULL
                  AND ($2::uuid IS NULL OR id <> $2::uuid)
                ORDER BY updated_at DESC
                LIMIT $3
                """,
                plan_id,
                exclude_item_id,
                limit,
            )
        return [r["script"] for r in rows]

    async def categories_on_date(self, plan_id, day: date) -> list[str]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT category FROM video_plan_items
                WHERE plan_id = $1 AND scheduled_date = $2 AND category IS NOT NULL
                ORDER BY scheduled_time ASC
                """,
                plan_id,
                day,
            )
        return [r["category"] for r in rows]
