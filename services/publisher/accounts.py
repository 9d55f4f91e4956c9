"""
Social account linking.

Accounts are linked on Upload-Post's hosted page for the user's profile
(``user_{id}``). We only keep a row per platform pointing at that profile.
"""

import logging
from typing import Optional

import asyncpg

from core.database import get_pool
from core.errors import NotFoundError, ValidationError

from .uploadpost_client import SUPPORTED_PLATFORMS, DistributionError, UploadPostClient, get_uploadpost_client

logger = logging.getLogger(__name__)


def profile_username(user_id: str) -> str:
    return f"user_{user_id}"


def validate_platform(platform: Optional[str]) -> str:
    if not platform or platform.lower() not in SUPPORTED_PLATFORMS:
        raise ValidationError("Valid platform is required")
    return platform.lower()


class SocialAccountService:
    """
    Usage:
        service = SocialAccountService()
        url = await service.connect(user_id, "tiktok", redirect_url)
        account = await service.handle_callback(user_id, "tiktok")
        stats = await service.get_analytics(user_id)
    """

    def __init__(self, client: Optional[UploadPostClient] = None, pool: Optional[asyncpg.Pool] = None):
        self._client = client
        self._pool = pool

    @property
    def client(self) -> UploadPostClient:
        if self._client is None:
            self._client = get_uploadpost_client()
        return self._client

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await get_pool()
        return self._pool

    async def ensure_profile(self, user_id: str) -> str:
        """Create the user's Upload-Post profile unless it already exists."""
        username = profile_username(user_id)
        try:
            await self.client.create_user_profile(username)
            logger.info(f"[Social] Created Upload-Post profile {username}")
        except DistributionError as e:
            if e.status_code not in (400, 409):
                raise
            logger.info(f"[Social] Upload-Post profile {username} already exists")
        return username

    async def connect(self, user_id: str, platform: str, redirect_url: Optional[str] = None) -> str:
        """
        Returns:
            URL where the user links the platform to their profile
        """
        platform = validate_platform(platform)
        username = await self.ensure_profile(user_id)
        return await self.client.generate_access_link(
            username,
            redirect_url=redirect_url,
            platforms=[platform],
        )

    async def handle_callback(self, user_id: str, platform: str, profile: Optional[str] = None) -> dict:
        """Record the platform as connected through the user's profile."""
        platform = validate_platform(platform)
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO social_accounts (user_id, platform, platform_account_id, status, connected_at)
                VALUES ($1, $2, $3, 'connected', NOW())
                ON CONFLICT (user_id, platform) DO UPDATE SET
                    platform_account_id = EXCLUDED.platform_account_id,
                    access_token = NULL,
                    refresh_token = NULL,
                    status = 'connected',
                    connected_at = NOW()
                RETURNING *
                """,
                user_id,
                platform,
                profile or profile_username(user_id),
            )
        logger.info(f"[Social] Connected {platform} for user {user_id}")
        return dict(row)

    async def list_accounts(self, user_id: str) -> list[dict]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM social_accounts WHERE user_id = $1 ORDER BY connected_at DESC",
                user_id,
            )
        return [dict(r) for r in rows]

    async def get_account(self, account_id, user_id: str) -> dict:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM social_accounts WHERE id = $1 AND user_id = $2",
                account_id,
                user_id,
            )
        if row is None:
            raise NotFoundError("Account not found")
        return dict(row)

    async def disconnect(self, account_id, user_id: str) -> dict:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE social_accounts
                SET status = 'disconnected', access_token = NULL, refresh_token = NULL
                WHERE id = $1 AND user_id = $2
                RETURNING *
                """,
                account_id,
                user_id,
            )
        if row is None:
            raise NotFoundError("Account not found")
        logger.info(f"[Social] Disconnected {row['platform']} for user {user_id}")
        return dict(row)

    async def connected_platforms(self, user_id: str) -> list[str]:
        return [a["platform"] for a in await self.list_accounts(user_id) if a.get("status") == "connected"]

    async def get_profile(self, user_id: str) -> dict:
        """The user's Upload-Post profile, including its linked social accounts."""
        try:
            return await self.client.get_user_profile(profile_username(user_id))
        except DistributionError as e:
            if e.status_code == 404:
                raise NotFoundError("Upload-Post profile not found")
            raise

    async def get_analytics(self, user_id: str, platforms: Optional[list[str]] = None) -> dict:
        """Follower and engagement stats; defaults to every connected platform."""
        if platforms:
            platforms = [validate_platform(p) for p in platforms]
        else:
            platforms = await self.connected_platforms(user_id)
        if not platforms:
            raise ValidationError("Connect a social account before requesting analytics")
        return await self.client.get_analytics(profile_username(user_id), platforms)
