"""
Composition root.

``TrackingCore`` wires the store, directory, services and samplers
together.  The API builds one per process in its lifespan; tests build
one over a throwaway SQLite database with fake collaborators.
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from schoolbus.config import settings
from schoolbus.infrastructure.database import create_engine, create_session_factory
from schoolbus.infrastructure.directory import Directory
from schoolbus.infrastructure.positioning import PositionSource, RedisPositionSource
from schoolbus.infrastructure.redis_client import close_redis, get_redis
from schoolbus.infrastructure.relay import RedisChangeRelay
from schoolbus.infrastructure.resilient import ResilientReader
from schoolbus.infrastructure.snapshots import (
    InMemorySnapshotStore,
    JsonFileSnapshotStore,
    SnapshotStore,
)
from schoolbus.infrastructure.store import RealtimeStore
from schoolbus.infrastructure.weather_client import WeatherProvider, XWeatherProvider
from schoolbus.realtime.hub import SubscriptionHub
from schoolbus.realtime.subscriptions import SubscriptionService
from schoolbus.services.behavior import BehaviorReporter
from schoolbus.services.boarding import StudentStatusTracker
from schoolbus.services.notifications import NotificationDispatcher
from schoolbus.services.trips import TripController
from schoolbus.services.weather import WeatherAttachment
from schoolbus.workers.location_sampler import LocationSampler

logger = logging.getLogger(__name__)


class TrackingCore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        positions: PositionSource,
        weather_provider: Optional[WeatherProvider] = None,
        redis: aioredis.Redis | None = None,
        snapshots: SnapshotStore | None = None,
        relay: RedisChangeRelay | None = None,
        engine: AsyncEngine | None = None,
    ):
        self.engine = engine
        self.redis = redis
        self.positions = positions
        self.weather_provider = weather_provider
        self.snapshots = snapshots if snapshots is not None else InMemorySnapshotStore()

        self.hub = SubscriptionHub()
        self.store = RealtimeStore(session_factory, self.hub)
        self.reader = ResilientReader(self.snapshots)
        self.directory = Directory(self.store, self.reader)
        self.notifications = NotificationDispatcher(self.store)
        self.weather = (
            WeatherAttachment(self.store, weather_provider, self.notifications)
            if weather_provider is not None
            else None
        )
        self.sampler = LocationSampler(
            self.store, positions, self.notifications, weather=self.weather
        )
        self.trips = TripController(
            self.store,
            self.directory,
            self.notifications,
            self.sampler,
            positions,
            redis=redis,
        )
        self.boarding = StudentStatusTracker(self.store, self.directory, self.notifications)
        self.behavior = BehaviorReporter(self.store, self.directory, self.notifications)
        self.subscriptions = SubscriptionService(self.store, self.reader)

        self.relay = relay
        if relay is not None:
            self.store.add_publisher(relay.publish)

    @classmethod
    async def from_settings(cls) -> "TrackingCore":
        engine = create_engine()
        redis = await get_redis()
        snapshots: SnapshotStore = (
            JsonFileSnapshotStore(settings.fallback_snapshot_path)
            if settings.fallback_snapshot_path
            else InMemorySnapshotStore()
        )
        core = cls(
            create_session_factory(engine),
            positions=RedisPositionSource(redis),
            weather_provider=XWeatherProvider(),
            redis=redis,
            snapshots=snapshots,
            engine=engine,
        )
        if settings.realtime_relay_enabled:
            core.relay = RedisChangeRelay(redis, core.hub)
            core.store.add_publisher(core.relay.publish)
        return core

    async def start(self) -> None:
        if self.relay is not None:
            self.relay.start()
        logger.info("Tracking core started")

    async def shutdown(self) -> None:
        await self.trips.shutdown()
        if self.relay is not None:
            await self.relay.stop()
        aclose = getattr(self.weather_provider, "aclose", None)
        if aclose is not None:
            await aclose()
        if isinstance(self.snapshots, JsonFileSnapshotStore):
            try:
                self.snapshots.flush()
            except OSError:
                logger.exception("Could not write fallback snapshot")
        if self.engine is not None:
            await self.engine.dispose()
            await close_redis()
        logger.info("Tracking core stopped")

    def health(self) -> dict:
        return {
            "status": "ok",
            "active_samplers": self.trips.active_sampler_count,
            "subscribers": self.hub.subscriber_count(),
        }
