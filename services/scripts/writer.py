"""
Script writer: OpenAI client plus the user's saved audience persona.
"""

import logging
from typing import Optional

import asyncpg

from core.database import get_pool

from .openai_client import ScriptClient, ScriptRequest, ScriptResult

logger = logging.getLogger(__name__)


class ScriptWriter:
    """Generates scripts, filling in the caller's active persona when none is given."""

    def __init__(self, client: Optional[ScriptClient] = None, pool: Optional[asyncpg.Pool] = None):
        self.client = client or ScriptClient()
        self._pool = pool

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await get_pool()
        return self._pool

    async def get_persona(self, user_id: str) -> Optional[str]:
        """Active script persona from prompt_templates; None when absent or unreadable."""
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                persona = await conn.fetchval(
                    """
                    SELECT persona FROM prompt_templates
                    WHERE user_id = $1 AND template_type = 'script' AND status = 'active'
                    ORDER BY created_at DESC
                    LIMIT 1
                    """,
                    user_id,
                )
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"[Script] Failed to fetch persona for user {user_id}: {e}")
            return None
        return persona or None

    async def generate(self, request: ScriptRequest, user_id: Optional[str] = None) -> ScriptResult:
        if user_id and not request.persona:
            request.persona = await self.get_persona(user_id)
        return await self.client.generate_script(request)
