"""Async Postgres connection pool using asyncpg."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import asyncpg

from ..settings import Settings

SCHEMA_PATH = Path(__file__).with_name("schema.sql")


async def create_pool(settings: Settings) -> asyncpg.Pool:
    """Create the asyncpg connection pool the application owns."""
    if not settings.database_url:
        raise RuntimeError(
            "DATABASE_URL is not set. "
            "Postgres is required."
        )
    return await asyncpg.create_pool(
        dsn=settings.database_url,
        min_size=settings.db_pool_min,
        max_size=settings.db_pool_max,
    )


async def close_pool(pool: Optional[asyncpg.Pool]) -> None:
    """Shut down the connection pool (call on app shutdown)."""
    if pool is not None:
        await pool.close()


async def apply_schema(pool: asyncpg.Pool) -> None:
    """Create tables if they do not exist yet."""
    sql = SCHEMA_PATH.read_text(encoding="utf-8")
    async with pool.acquire() as conn:
        await conn.execute(sql)
