"""
asyncpg pool factory and standalone pool context manager.

Jobs are short-lived processes, so each run opens a small pool and
closes it on the way out.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import asyncpg

from services.curator.config import settings


async def create_pool(database_url: Optional[str] = None) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        database_url or settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )


@asynccontextmanager
async def standalone_pool(database_url: Optional[str] = None) -> AsyncIterator[asyncpg.Pool]:
    """
    For job entry points that run outside any long-lived service.
    Handles pool lifecycle to prevent connection leaks on failure.
    """
    pool = await create_pool(database_url)
    try:
        yield pool
    finally:
        await pool.close()


def parse_command_tag_count(command_tag: str) -> int:
    """Extract row count from asyncpg command tag like 'UPDATE 5'."""
    try:
        return int(command_tag.split()[-1])
    except (ValueError, IndexError, AttributeError):
        return 0
