"""
Weather attachment.

Keeps a ``WeatherSnapshot`` on each active trip, refreshed at most every
``weather_refresh_minutes``.  Refresh is best effort: provider errors or
timeouts keep the previous snapshot, and a failed attempt waits out the
same interval before the provider is called again.  Only one refresh per trip runs at a
time; overlapping calls return immediately.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from schoolbus.config import settings
from schoolbus.domain.entities import Location, WeatherSnapshot
from schoolbus.domain.errors import InfrastructureError
from schoolbus.domain.events import WeatherAlert
from schoolbus.domain.weather import icon_for, normalize_condition
from schoolbus.infrastructure.store import RealtimeStore
from schoolbus.infrastructure.weather_client import WeatherProvider, WeatherReading
from schoolbus.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


def snapshot_from_reading(reading: WeatherReading, at: datetime) -> WeatherSnapshot:
    condition = normalize_condition(reading.conditions)
    return WeatherSnapshot(
        temperature=reading.temperature,
        condition=condition,
        description=reading.conditions,
        icon=icon_for(condition),
        wind_speed=reading.wind_speed,
        humidity=reading.humidity,
        updated_at=at,
    )


class WeatherAttachment:
    def __init__(
        self,
        store: RealtimeStore,
        provider: WeatherProvider,
        dispatcher: NotificationDispatcher,
        refresh_interval: timedelta | None = None,
        timeout: float | None = None,
        alert_conditions: Iterable[str] | None = None,
    ):
        self.store = store
        self.provider = provider
        self.dispatcher = dispatcher
        self.refresh_interval = refresh_interval or timedelta(
            minutes=settings.weather_refresh_minutes
        )
        self.timeout = timeout or settings.weather_timeout_seconds
        self.alert_conditions = frozenset(
            alert_conditions
            if alert_conditions is not None
            else settings.weather_alert_conditions
        )
        self._in_flight: set[str] = set()
        self._last_attempt: dict[str, datetime] = {}

    def is_refreshing(self, trip_id: str) -> bool:
        return trip_id in self._in_flight

    async def maybe_refresh(
        self, trip_id: str, location: Location, now: datetime
    ) -> Optional[WeatherSnapshot]:
        """Return the new snapshot, or ``None`` when nothing was written."""
        if trip_id in self._in_flight:
            return None
        self._in_flight.add(trip_id)
        try:
            return await self._refresh(trip_id, location, now)
        finally:
            self._in_flight.discard(trip_id)

    async def _refresh(
        self, trip_id: str, location: Location, now: datetime
    ) -> Optional[WeatherSnapshot]:
        try:
            trip = await self.store.get_trip(trip_id)
        except InfrastructureError as exc:
            logger.warning("Weather skipped for trip %s: %s", trip_id, exc)
            return None
        if trip is None or not trip.is_active:
            self._last_attempt.pop(trip_id, None)
            return None
        previous = trip.weather
        if previous is not None and not previous.is_due(now, self.refresh_interval):
            return None
        last = self._last_attempt.get(trip_id)
        if last is not None and now - last < self.refresh_interval:
            return None
        self._last_attempt[trip_id] = now

        try:
            reading = await asyncio.wait_for(
                self.provider.get(location.latitude, location.longitude), self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Weather provider timed out for trip %s", trip_id)
            return None
        except InfrastructureError as exc:
            logger.warning("Weather unavailable for trip %s: %s", trip_id, exc)
            return None

        snapshot = snapshot_from_reading(reading, now)
        try:
            async with self.store.unit_of_work() as uow:
                if not await uow.trips.set_weather_if_active(trip_id, snapshot):
                    uow.discard()
                    return None
                uow.trip_changed(await uow.trips.get(trip_id))
        except InfrastructureError as exc:
            logger.warning("Weather write failed for trip %s: %s", trip_id, exc)
            return None

        logger.info("Weather for trip %s: %s", trip_id, snapshot.condition)
        if snapshot.condition in self.alert_conditions and (
            previous is None or previous.condition != snapshot.condition
        ):
            await self.dispatcher.emit(
                WeatherAlert(
                    trip_id=trip.id,
                    driver_id=trip.driver_id,
                    admin_id=trip.admin_id,
                    condition=snapshot.condition,
                    description=snapshot.description,
                )
            )
        return snapshot
