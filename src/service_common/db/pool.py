"""Process-wide asyncpg pool."""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol

import asyncpg  # type: ignore[import-untyped]

pool: asyncpg.Pool | None = None


class SettingsProtocol(Protocol):
    """Settings objects carrying database configuration."""

    database_url: Any
    db_pool_size: int


async def init_pool(database_url: str, pool_size: int) -> asyncpg.Pool:
    """Create the global pool once; later calls return the existing one."""
    global pool
    if pool is None:
        pool = await asyncpg.create_pool(dsn=database_url, max_size=pool_size)
    return pool


async def close_pool() -> None:
    global pool
    if pool is not None:
        await pool.close()
        pool = None


async def get_pool() -> asyncpg.Pool:
    """Return the initialized pool."""
    if pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    return pool


def create_pool_hooks(
    settings: SettingsProtocol,
) -> tuple[Callable[[Any], Awaitable[None]], Callable[[Any], Awaitable[None]]]:
    """Build ``on_startup`` / ``on_cleanup`` hooks bound to *settings*."""

    async def init_pool_hook(_app: Any = None) -> None:
        await init_pool(str(settings.database_url), settings.db_pool_size)

    async def close_pool_hook(_app: Any = None) -> None:
        await close_pool()

    return init_pool_hook, close_pool_hook
