"""
Shared Redis connection pool.

Redis backs three concerns: the latest device position per driver, the
per-driver trip-start lock and the cross-process change relay.  The pool
is created lazily so importing this module never opens a connection.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from schoolbus.config import settings

_pool: aioredis.ConnectionPool | None = None


def _get_pool() -> aioredis.ConnectionPool:
    global _pool
    if _pool is None:
        _pool = aioredis.ConnectionPool.from_url(
            settings.redis_url, decode_responses=True
        )
    return _pool


async def get_redis() -> aioredis.Redis:
    """Return a Redis client backed by the shared connection pool."""
    return aioredis.Redis(connection_pool=_get_pool())


async def close_redis() -> None:
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None
