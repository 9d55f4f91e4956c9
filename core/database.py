"""
PostgreSQL connection pool.

All repositories share one asyncpg pool created lazily from DATABASE_URL.
"""

import json
import logging
from pathlib import Path
from typing import Optional

import asyncpg

from .config import get_config

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"

_pool: Optional[asyncpg.Pool] = None


async def _init_connection(conn: asyncpg.Connection):
    # JSONB columns (research_data) round-trip as Python dicts
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


async def get_pool() -> asyncpg.Pool:
    """Get or create the global connection pool."""
    global _pool
    if _pool is None:
        config = get_config()
        if not config.database.url:
            raise RuntimeError("DATABASE_URL not configured")

        _pool = await asyncpg.create_pool(
            config.database.url,
            min_size=config.database.pool_min_size,
            max_size=config.database.pool_max_size,
            init=_init_connection,
        )
        logger.info("Database pool created")
    return _pool


async def close_pool():
    """Close the global connection pool."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


async def apply_migrations(pool: asyncpg.Pool) -> list[str]:
    """Run every .sql file in migrations/ in name order. Returns the applied file names."""
    applied = []
    async with pool.acquire() as conn:
        for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
            logger.info(f"Applying migration {path.name}")
            await conn.execute(path.read_text())
            applied.append(path.name)
    return applied


async def check_database(pool: asyncpg.Pool) -> bool:
    """Lightweight connectivity check for /health."""
    try:
        async with pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1
    except (OSError, asyncpg.PostgresError) as e:
        logger.warning(f"Database health check failed: {e}")
        return False
