"""
Location Sampler
================

One asyncio task per active trip, ticking every ``sample_interval``
seconds (default 30 s).

Per tick
--------
1. Read the driver's position (bounded by ``tick_timeout_seconds``).
2. Write ``current_location`` with a conditional update that only applies
   while the trip is IN_PROGRESS (also bounded).
3. Hand the fresh coordinates to the weather attachment in a separate
   task, after the write.

Failure handling
----------------
* A failed tick (position unavailable, timeout, store unavailable) is
  logged and skipped.
* ``stale_failure_threshold`` consecutive failures emit one
  ``LocationStale`` event per failure streak.
* No successful tick for ``stall_timeout_seconds`` schedules the
  ``on_stall(trip_id)`` callback once.

Stopping
--------
``SamplerHandle.stop()`` cancels and awaits the task.  The loop also ends
on its own when a trip-scoped subscription sees the trip reach a terminal
state, or when the conditional write finds the trip no longer active.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from schoolbus.config import settings
from schoolbus.domain.entities import Location, Trip, utcnow
from schoolbus.domain.enums import TERMINAL_TRIP_STATUSES, ChangeKind, TripStatus
from schoolbus.domain.errors import InfrastructureError
from schoolbus.domain.events import LocationStale
from schoolbus.infrastructure.positioning import PositionSource
from schoolbus.infrastructure.store import RealtimeStore
from schoolbus.realtime.hub import Subscription, SubscriptionFilter
from schoolbus.services.notifications import NotificationDispatcher
from schoolbus.services.weather import WeatherAttachment

logger = logging.getLogger(__name__)

StallCallback = Callable[[str], Awaitable[object]]


class _TripClosed(Exception):
    pass


class SamplerHandle:
    """Cancellable handle for one trip's sampling task."""

    def __init__(self, trip_id: str):
        self.trip_id = trip_id
        self.ticks = 0
        self.failures = 0
        self.consecutive_failures = 0
        self.stale_reported = False
        self.stall_reported = False
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._subscription: Subscription | None = None
        self._side_tasks: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._side_tasks.add(task)
        task.add_done_callback(self._side_tasks.discard)
        return task

    def add_done_callback(self, callback: Callable[["SamplerHandle"], None]) -> None:
        assert self._task is not None
        self._task.add_done_callback(lambda _t: callback(self))

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.shield(self._task)

    async def stop(self) -> None:
        """Stop sampling; returns once no further tick can run."""
        self._stop_event.set()
        if self._subscription is not None:
            self._subscription.close()
        current = asyncio.current_task()
        for side in list(self._side_tasks):
            if side is not current:
                side.cancel()
        task = self._task
        if task is None or task is asyncio.current_task():
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Sampler for trip %s ended with error", self.trip_id)


class LocationSampler:
    def __init__(
        self,
        store: RealtimeStore,
        positions: PositionSource,
        dispatcher: NotificationDispatcher,
        weather: Optional[WeatherAttachment] = None,
        tick_timeout: float | None = None,
        stale_failure_threshold: int | None = None,
        stall_timeout: float | None = None,
    ):
        self.store = store
        self.positions = positions
        self.dispatcher = dispatcher
        self.weather = weather
        self.tick_timeout = tick_timeout or settings.tick_timeout_seconds
        self.stale_failure_threshold = (
            stale_failure_threshold or settings.stale_failure_threshold
        )
        self.stall_timeout = stall_timeout or settings.stall_timeout_seconds

    def run(
        self,
        trip: Trip,
        sample_interval: float | None = None,
        on_stall: StallCallback | None = None,
    ) -> SamplerHandle:
        """Start sampling *trip* in a new task and return its handle.

        The trip's driver and admin are taken from *trip* once; each tick
        checks that the trip is still active through the conditional write.
        """
        trip_id = trip.id
        interval = sample_interval or settings.sample_interval_seconds
        handle = SamplerHandle(trip_id)
        handle._subscription = self.store.hub.subscribe(
            SubscriptionFilter.by_trip_id(trip_id)
        )
        handle._task = asyncio.create_task(self._loop(handle, trip, interval, on_stall))
        logger.info("Sampler started for trip %s (interval=%.1fs)", trip_id, interval)
        return handle

    # ── Internals ─────────────────────────────────────────────────────

    async def _loop(
        self,
        handle: SamplerHandle,
        trip: Trip,
        interval: float,
        on_stall: StallCallback | None,
    ) -> None:
        loop = asyncio.get_running_loop()
        watcher = handle.spawn(self._watch_terminal(handle))
        last_success = loop.time()
        try:
            while True:
                # First tick one interval after start; start_trip takes the initial fix
                try:
                    await asyncio.wait_for(handle._stop_event.wait(), timeout=interval)
                    break
                except asyncio.TimeoutError:
                    pass

                try:
                    await self.tick(handle, trip)
                    last_success = loop.time()
                except _TripClosed:
                    logger.info("Trip %s no longer active; sampler exiting", handle.trip_id)
                    break
                except (InfrastructureError, asyncio.TimeoutError) as exc:
                    await self._record_failure(handle, trip, repr(exc))
                except Exception:
                    logger.exception("Unhandled error in sampler tick for %s", handle.trip_id)
                    await self._record_failure(handle, trip, "unexpected error")

                if (
                    on_stall is not None
                    and not handle.stall_reported
                    and loop.time() - last_success >= self.stall_timeout
                ):
                    handle.stall_reported = True
                    logger.warning(
                        "Trip %s stalled: no location for %.0fs",
                        handle.trip_id, loop.time() - last_success,
                    )
                    handle.spawn(self._call_stall(on_stall, handle.trip_id))
        finally:
            watcher.cancel()
            if handle._subscription is not None:
                handle._subscription.close()
            logger.info(
                "Sampler stopped for trip %s after %d tick(s)", handle.trip_id, handle.ticks
            )

    async def tick(self, handle: SamplerHandle, trip: Trip) -> Location:
        position = await asyncio.wait_for(
            self.positions.current_position(trip.driver_id), self.tick_timeout
        )
        now = utcnow()
        written = await asyncio.wait_for(
            self._write_location(trip.id, position, now), self.tick_timeout
        )
        if not written:
            raise _TripClosed(trip.id)

        handle.ticks += 1
        handle.consecutive_failures = 0
        handle.stale_reported = False
        if self.weather is not None:
            handle.spawn(self._refresh_weather(trip.id, position, now))
        return position

    async def _write_location(self, trip_id: str, location: Location, at) -> bool:
        async with self.store.unit_of_work() as uow:
            if not await uow.trips.set_location_if_active(trip_id, location, at):
                uow.discard()
                return False
            uow.trip_changed(await uow.trips.get(trip_id))
        return True

    async def _refresh_weather(self, trip_id: str, location: Location, at) -> None:
        try:
            await self.weather.maybe_refresh(trip_id, location, at)
        except Exception:
            logger.exception("Weather refresh crashed for trip %s", trip_id)

    async def _record_failure(
        self, handle: SamplerHandle, trip: Trip, reason: str
    ) -> None:
        handle.failures += 1
        handle.consecutive_failures += 1
        logger.warning(
            "Sampler tick failed for trip %s (%d in a row): %s",
            handle.trip_id, handle.consecutive_failures, reason,
        )
        if (
            not handle.stale_reported
            and handle.consecutive_failures >= self.stale_failure_threshold
        ):
            handle.stale_reported = True
            await self.dispatcher.emit(
                LocationStale(
                    trip_id=trip.id,
                    driver_id=trip.driver_id,
                    admin_id=trip.admin_id,
                    consecutive_failures=handle.consecutive_failures,
                )
            )

    @staticmethod
    async def _call_stall(on_stall: StallCallback, trip_id: str) -> None:
        try:
            await on_stall(trip_id)
        except Exception:
            logger.exception("Stall callback failed for trip %s", trip_id)

    @staticmethod
    async def _watch_terminal(handle: SamplerHandle) -> None:
        sub = handle._subscription
        if sub is None:
            return
        async for change in sub:
            status = change.document.get("status")
            if change.kind == ChangeKind.REMOVED or (
                status and TripStatus(status) in TERMINAL_TRIP_STATUSES
            ):
                logger.info("Trip %s reached %s; stopping sampler", handle.trip_id, status)
                handle._stop_event.set()
                return
