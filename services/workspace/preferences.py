"""User preferences with defaults for users who never saved any."""

import logging
from typing import Any, Optional

import asyncpg

from core.database import get_pool
from core.errors import ValidationError
from services.publisher.uploadpost_client import SUPPORTED_PLATFORMS

logger = logging.getLogger(__name__)

DEFAULT_PREFERENCES = {
    "timezone": "UTC",
    "default_platforms": [],
    "notifications_enabled": True,
    "auto_research_default": True,
    "auto_approve_default": False,
}

PREFERENCE_FIELDS = tuple(DEFAULT_PREFERENCES)


class PreferencesService:

    def __init__(self, pool: Optional[asyncpg.Pool] = None):
        self._pool = pool

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await get_pool()
        return self._pool

    async def get_preferences(self, user_id: str) -> dict:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM user_preferences WHERE user_id = $1", user_id)
        if row is None:
            return {"user_id": user_id, **DEFAULT_PREFERENCES, "default_platforms": []}
        return dict(row)

    async def update_preferences(self, user_id: str, updates: dict[str, Any]) -> dict:
        """Partial upsert; fields not given keep their stored or default value."""
        values = {k: v for k, v in updates.items() if k in PREFERENCE_FIELDS and v is not None}
        platforms = values.get("default_platforms")
        if platforms is not None:
            unknown = [p for p in platforms if p not in SUPPORTED_PLATFORMS]
            if unknown:
                raise ValidationError(f"Unsupported platforms: {unknown}")

        current = await self.get_preferences(user_id)
        merged = {field: values.get(field, current[field]) for field in PREFERENCE_FIELDS}

        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO user_preferences (
                    user_id, timezone, default_platforms, notifications_enabled,
                    auto_research_default, auto_approve_default, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, NOW())
                ON CONFLICT (user_id) DO UPDATE SET
                    timezone = EXCLUDED.timezone,
                    default_platforms = EXCLUDED.default_platforms,
                    notifications_enabled = EXCLUDED.notifications_enabled,
                    auto_research_default = EXCLUDED.auto_research_default,
                    auto_approve_default = EXCLUDED.auto_approve_default,
                    updated_at = NOW()
                RETURNING *
                """,
                user_id,
                *[merged[field] for field in PREFERENCE_FIELDS],
            )
        logger.info(f"[Preferences] Saved preferences for user {user_id}")
        return dict(row)
