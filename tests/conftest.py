"""
Shared test fixtures.

Uses a throwaway SQLite file database (via aiosqlite) per test so tests
run without Docker / PostgreSQL / Redis while still allowing several
concurrent sessions.  Redis is an ``AsyncMock``; device positions and
the weather provider are in-test fakes.

Directory fixture data
----------------------
* ``admin1`` owns ``route1`` (driver ``driver1``, stops ``s1``, ``s2``)
* ``s1`` -> parent ``parent1``; ``s2`` -> parent ``parent2``
* ``s3`` exists but rides no route; ``driver2`` has no route
"""

from __future__ import annotations

from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from schoolbus.api.app import create_app
from schoolbus.api.middleware import limiter
from schoolbus.core import TrackingCore
from schoolbus.domain.entities import Actor, Location
from schoolbus.domain.enums import UserRole
from schoolbus.domain.errors import PositionUnavailable, WeatherUnavailable
from schoolbus.infrastructure import models  # noqa: F401  (registers tables)
from schoolbus.infrastructure.database import Base
from schoolbus.infrastructure.weather_client import WeatherReading
from seed import insert_directory

ADMIN = Actor("admin1", UserRole.ADMIN)
DRIVER = Actor("driver1", UserRole.DRIVER)
DRIVER_NO_ROUTE = Actor("driver2", UserRole.DRIVER)
PARENT1 = Actor("parent1", UserRole.PARENT)
PARENT2 = Actor("parent2", UserRole.PARENT)

USERS = [
    {"id": "admin1", "display_name": "Avery Admin", "role": UserRole.ADMIN},
    {"id": "admin2", "display_name": "Other Admin", "role": UserRole.ADMIN},
    {"id": "driver1", "display_name": "Dana Driver", "role": UserRole.DRIVER, "admin_id": "admin1"},
    {"id": "driver2", "display_name": "Drew Driver", "role": UserRole.DRIVER, "admin_id": "admin1"},
    {"id": "parent1", "display_name": "Pat Parent", "role": UserRole.PARENT, "admin_id": "admin1"},
    {"id": "parent2", "display_name": "Robin Parent", "role": UserRole.PARENT, "admin_id": "admin1"},
]

STUDENTS = [
    {"id": "s1", "full_name": "Sam One", "parent_id": "parent1", "driver_id": "driver1", "home": (40.0, -73.0)},
    {"id": "s2", "full_name": "Sky Two", "parent_id": "parent2", "driver_id": "driver1", "home": (40.1, -73.1)},
    {"id": "s3", "full_name": "Sol Three", "parent_id": "parent1", "home": (40.2, -73.2)},
]

ROUTES = [
    {
        "id": "route1",
        "name": "Route One",
        "driver_id": "driver1",
        "bus_id": "bus1",
        "admin_id": "admin1",
        "stops": ["s1", "s2"],
    },
]


class FakePositionSource:
    """Positions keyed by driver; ``fail`` makes every read unavailable."""

    def __init__(self):
        self.positions: dict[str, Location] = {}
        self.fail = False
        self.calls = 0

    async def current_position(self, driver_id: str) -> Location:
        self.calls += 1
        if self.fail or driver_id not in self.positions:
            raise PositionUnavailable(f"no fix for {driver_id}")
        return self.positions[driver_id]

    async def record_position(self, driver_id, location, at=None) -> None:
        self.positions[driver_id] = location


class FakeWeatherProvider:
    def __init__(self, conditions: str = "Sunny"):
        self.reading = WeatherReading(temperature=21.0, conditions=conditions, wind_speed=3.0, humidity=40.0)
        self.fail = False
        self.calls = 0

    async def get(self, latitude: float, longitude: float) -> WeatherReading:
        self.calls += 1
        if self.fail:
            raise WeatherUnavailable("provider down")
        return self.reading


def make_redis() -> AsyncMock:
    """Redis mock whose SET NX behaves like a real lock."""
    held: dict[str, str] = {}
    redis = AsyncMock()

    async def _set(key, value, nx=False, ex=None):
        if nx and key in held:
            return None
        held[key] = value
        return True

    async def _eval(script, numkeys, key, token):
        if held.get(key) == token:
            del held[key]
            return 1
        return 0

    redis.set = AsyncMock(side_effect=_set)
    redis.eval = AsyncMock(side_effect=_eval)
    redis.publish = AsyncMock(return_value=1)
    return redis


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create tables and the directory, yield a session factory, then dispose."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        await insert_directory(session, USERS, STUDENTS, ROUTES)
        await session.commit()

    yield factory
    await engine.dispose()


@pytest.fixture
def positions() -> FakePositionSource:
    source = FakePositionSource()
    source.positions["driver1"] = Location(40.05, -73.05)
    return source


@pytest.fixture
def weather_provider() -> FakeWeatherProvider:
    return FakeWeatherProvider()


@pytest.fixture
def redis() -> AsyncMock:
    return make_redis()


@pytest_asyncio.fixture
async def core(session_factory, positions, weather_provider, redis) -> AsyncGenerator[TrackingCore, None]:
    tracking = TrackingCore(
        session_factory,
        positions=positions,
        weather_provider=weather_provider,
        redis=redis,
    )
    yield tracking
    await tracking.shutdown()


@pytest_asyncio.fixture
async def client(core) -> AsyncGenerator[AsyncClient, None]:
    limiter.reset()
    app = create_app(core)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def headers(actor: Actor) -> dict[str, str]:
    return {"X-User-Id": actor.user_id, "X-User-Role": actor.role.value}
