"""
Redis-based distributed lock.

Guards ``start_trip`` per driver (key ``lock:trip-start:{driver_id}``) so
two concurrent starts for the same driver cannot both pass the "no active
trip" check.  The partial unique index on ``trips`` is the backstop; the
lock turns the race into a clean ``TripAlreadyActive`` instead of an
integrity error.

Acquire is SET NX EX; release is an atomic check-and-delete in Lua so an
expired lock taken over by another holder is never deleted.
"""

from __future__ import annotations

import logging
import uuid

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(Exception):
    def __init__(self, key: str):
        super().__init__(f"Could not acquire lock: {key}")
        self.key = key


def trip_start_key(driver_id: str) -> str:
    return f"trip-start:{driver_id}"


class DistributedLock:
    def __init__(self, client: aioredis.Redis, key: str, ttl_seconds: int = 15):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())
        self.held = False

    async def acquire(self) -> bool:
        """Try once; never blocks.  Returns True on success."""
        self.held = bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )
        return self.held

    async def release(self) -> None:
        if not self.held:
            return
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        self.held = False

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquired(self.key)
        return self

    async def __aexit__(self, *args):
        # An unreleased lock still expires after ttl
        try:
            await self.release()
        except RedisError:
            logger.warning("Could not release %s; it expires in %ds", self.key, self.ttl)
