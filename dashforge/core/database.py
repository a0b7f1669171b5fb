"""
asyncpg pool holder for the PostgreSQL version registry.

The pool exists only when DATABASE_URL is set. main.py opens it in the
application lifespan and hands it to PostgresSpecVersionRegistry; without a
URL the API runs on in-memory stores and nothing here is called except
is_db_configured().

Pool sizing comes from settings:
- DB_POOL_MIN_SIZE (default 2)
- DB_POOL_MAX_SIZE (default 10)
- DB_COMMAND_TIMEOUT_SECONDS (default 60)

Usage:
    if is_db_configured():
        pool = await init_db()
        registry = PostgresSpecVersionRegistry(pool)
    ...
    await close_db()
"""

import logging
from typing import Optional

import asyncpg
from asyncpg import Pool

from dashforge.core.config import get_settings

logger = logging.getLogger(__name__)


# Module-level pool shared by every request of the process
_pool: Optional[Pool] = None


def is_db_configured() -> bool:
    """True when DATABASE_URL is set."""
    return bool(get_settings().database_url)


async def init_db(dsn: Optional[str] = None) -> Pool:
    """
    Open the pool, or return the one already open.

    Args:
        dsn: Connection string; DATABASE_URL when None.

    Raises:
        RuntimeError: If no connection string is available.
        asyncpg.PostgresError / OSError: If the server cannot be reached.
    """
    global _pool
    if _pool is not None:
        return _pool

    settings = get_settings()
    dsn = dsn or settings.database_url
    if not dsn:
        raise RuntimeError("DATABASE_URL is not configured")

    _pool = await asyncpg.create_pool(
        dsn=dsn,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=settings.db_command_timeout_seconds,
    )
    logger.info(
        f"Version store pool opened (min={settings.db_pool_min_size}, max={settings.db_pool_max_size})"
    )
    return _pool


async def close_db() -> None:
    """Close the pool; a no-op when it was never opened."""
    global _pool
    if _pool is None:
        return
    pool, _pool = _pool, None
    await pool.close()
    logger.info("Version store pool closed")
