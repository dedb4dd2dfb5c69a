"""
Device positions.

Driver devices report fixes through ``POST /api/v1/positions``; the latest
fix per driver is kept in Redis under ``position:{driver_id}`` with a TTL.
The sampler reads it back and rejects fixes older than the configured
maximum age.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from schoolbus.config import settings
from schoolbus.domain.entities import Location, as_utc, utcnow
from schoolbus.domain.errors import PositionUnavailable


class PositionSource(Protocol):
    async def current_position(self, driver_id: str) -> Location: ...


def _key(driver_id: str) -> str:
    return f"position:{driver_id}"


class RedisPositionSource:
    def __init__(
        self,
        client: aioredis.Redis,
        max_age_seconds: float | None = None,
        ttl_seconds: int | None = None,
    ):
        self.redis = client
        self.max_age = timedelta(
            seconds=max_age_seconds or settings.position_max_age_seconds
        )
        self.ttl = ttl_seconds or settings.position_ttl_seconds

    async def record_position(
        self, driver_id: str, location: Location, at: datetime | None = None
    ) -> None:
        payload = {**location.to_dict(), "at": as_utc(at or utcnow()).isoformat()}
        await self.redis.set(_key(driver_id), json.dumps(payload), ex=self.ttl)

    async def current_position(self, driver_id: str) -> Location:
        try:
            raw = await self.redis.get(_key(driver_id))
        except RedisError as exc:
            raise PositionUnavailable(f"Position store unreachable: {exc}") from exc
        if raw is None:
            raise PositionUnavailable(f"No position reported for driver {driver_id}")
        try:
            data = json.loads(raw)
            at = as_utc(datetime.fromisoformat(data["at"]))
            location = Location.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise PositionUnavailable(f"Corrupt position for driver {driver_id}") from exc
        if utcnow() - at > self.max_age:
            raise PositionUnavailable(f"Position for driver {driver_id} is stale")
        return location
