"""
Saved video prompts.

Reusable topic briefs a user can drop into a plan slot. Optional text fields
are trimmed and stored as NULL when blank.
"""

import logging
from typing import Any, Optional

import asyncpg

from core.database import get_pool
from core.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

OPTIONAL_FIELDS = ("topic", "category", "description", "why_important", "useful_tips")


def clean_prompt(data: dict[str, Any]) -> dict[str, Optional[str]]:
    """Validated column values for a saved prompt."""
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Prompt name is required")

    values = {"name": name.strip()}
    for field in OPTIONAL_FIELDS:
        value = data.get(field)
        values[field] = value.strip() or None if isinstance(value, str) else None
    return values


class PromptLibrary:
    """
    Usage:
        library = PromptLibrary()
        prompt = await library.create_prompt(user_id, {"name": "Risk basics", "topic": "..."})
    """

    def __init__(self, pool: Optional[asyncpg.Pool] = None):
        self._pool = pool

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await get_pool()
        return self._pool

    async def list_prompts(self, user_id: str) -> list[dict]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM video_prompts WHERE user_id = $1 ORDER BY created_at DESC",
                user_id,
            )
        return [dict(r) for r in rows]

    async def get_prompt(self, prompt_id, user_id: str) -> dict:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM video_prompts WHERE id = $1 AND user_id = $2",
                prompt_id,
                user_id,
            )
        if row is None:
            raise NotFoundError("Prompt not found")
        return dict(row)

    async def create_prompt(self, user_id: str, data: dict[str, Any]) -> dict:
        values = clean_prompt(data)
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO video_prompts (
                    user_id, name, topic, category, description, why_important, useful_tips
                ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING *
                """,
                user_id,
                values["name"],
                *[values[f] for f in OPTIONAL_FIELDS],
            )
        return dict(row)

    async def update_prompt(self, prompt_id, user_id: str, data: dict[str, Any]) -> dict:
        values = clean_prompt(data)
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE video_prompts SET
                    name = $3, topic = $4, category = $5, description = $6,
                    why_important = $7, useful_tips = $8, updated_at = NOW()
                WHERE id = $1 AND user_id = $2
                RETURNING *
                """,
                prompt_id,
                user_id,
                values["name"],
                *[values[f] for f in OPTIONAL_FIELDS],
            )
        if row is None:
            raise NotFoundError("Prompt not found")
        return dict(row)

    async def delete_prompt(self, prompt_id, user_id: str):
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM video_prompts WHERE id = $1 AND user_id = $2",
                prompt_id,
                user_id,
            )
        if not result.endswith(" 1"):
            raise NotFoundError("Prompt not found")
