"""asyncpg pool shared by the order store."""
from __future__ import annotations

import logging
from typing import Optional

import asyncpg

from ..settings import settings
from ..services.errors import ServiceNotConfigured

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None


async def get_pool() -> asyncpg.Pool:
    """Lazily open the pool on first use; orders cannot be stored without it."""
    global _pool
    if _pool is None:
        if not settings.database_url:
            raise ServiceNotConfigured("Database not configured (set DATABASE_URL)")
        _pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
        logger.info(
            "postgres pool open (%d-%d connections)",
            settings.db_pool_min_size, settings.db_pool_max_size,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
