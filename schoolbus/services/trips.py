"""
Trip controller: start, end and cancel trips.

Lifecycle rules
---------------
* NOT_STARTED -> IN_PROGRESS -> COMPLETED | CANCELLED (``Trip.transition_to``).
* At most one IN_PROGRESS trip per driver.  A per-driver Redis lock
  serializes concurrent starts; the partial unique index on ``trips`` is
  the backstop.
* Every close is a conditional write under ``status = 'IN_PROGRESS'``; the
  sampler is stopped before ``end_trip`` / ``cancel_trip`` return.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.exc import IntegrityError

from schoolbus.config import settings
from schoolbus.domain.entities import SYSTEM_ACTOR, Actor, Location, Route, Trip, utcnow
from schoolbus.domain.enums import ChangeKind, TripStatus
from schoolbus.domain.errors import (
    InfrastructureError,
    NoRouteAssigned,
    StoreUnavailable,
    TripAlreadyActive,
    TripNotActive,
    TripNotFound,
)
from schoolbus.domain.events import (
    ApproachingStudent,
    BusApproaching,
    TripCancelled,
    TripEnded,
    TripStarted,
)
from schoolbus.infrastructure.directory import Directory
from schoolbus.infrastructure.locks import DistributedLock, LockNotAcquired, trip_start_key
from schoolbus.infrastructure.positioning import PositionSource
from schoolbus.infrastructure.store import RealtimeStore
from schoolbus.services.notifications import NotificationDispatcher
from schoolbus.workers.location_sampler import LocationSampler, SamplerHandle

logger = logging.getLogger(__name__)

STALL_CANCEL_REASON = "No location updates received"


class TripController:
    def __init__(
        self,
        store: RealtimeStore,
        directory: Directory,
        dispatcher: NotificationDispatcher,
        sampler: LocationSampler,
        positions: PositionSource,
        redis: aioredis.Redis | None = None,
        sample_interval: float | None = None,
        auto_cancel_on_stall: bool | None = None,
    ):
        self.store = store
        self.directory = directory
        self.dispatcher = dispatcher
        self.sampler = sampler
        self.positions = positions
        self.redis = redis
        self.sample_interval = sample_interval or settings.sample_interval_seconds
        self.auto_cancel_on_stall = (
            settings.auto_cancel_on_stall
            if auto_cancel_on_stall is None
            else auto_cancel_on_stall
        )
        self._samplers: dict[str, SamplerHandle] = {}

    # ── Queries ───────────────────────────────────────────────────────

    async def get_trip(self, trip_id: str) -> Trip:
        trip = await self.store.get_trip(trip_id)
        if trip is None:
            raise TripNotFound(trip_id)
        return trip

    def sampler_for(self, trip_id: str) -> Optional[SamplerHandle]:
        return self._samplers.get(trip_id)

    @property
    def active_sampler_count(self) -> int:
        return len(self._samplers)

    # ── Start ─────────────────────────────────────────────────────────

    async def start_trip(
        self, actor: Actor, driver_id: str, route_id: str | None = None
    ) -> Trip:
        route = await self._resolve_route(driver_id, route_id)

        if self.redis is None:
            trip = await self._insert_trip(driver_id, route)
        else:
            lock = DistributedLock(
                self.redis, trip_start_key(driver_id), settings.start_lock_ttl_seconds
            )
            try:
                async with lock:
                    trip = await self._insert_trip(driver_id, route)
            except LockNotAcquired as exc:
                raise TripAlreadyActive(driver_id) from exc
            except RedisError as exc:
                raise StoreUnavailable(f"Start lock unavailable: {exc}") from exc

        self._start_sampler(trip)
        logger.info(
            "Trip %s started by %s for driver %s on route %s",
            trip.id, actor.user_id, driver_id, route.id,
        )
        await self.dispatcher.emit(
            TripStarted(
                trip_id=trip.id,
                driver_id=driver_id,
                driver_name=await self.directory.display_name(driver_id),
                admin_id=trip.admin_id,
            )
        )
        return trip

    async def _resolve_route(self, driver_id: str, route_id: str | None) -> Route:
        if route_id is None:
            route = await self.directory.route_for_driver(driver_id)
        else:
            route = await self.directory.get_route(route_id)
            if route is not None and route.driver_id != driver_id:
                route = None
        if route is None:
            raise NoRouteAssigned(driver_id)
        return route

    async def _initial_position(self, driver_id: str) -> Optional[Location]:
        try:
            return await asyncio.wait_for(
                self.positions.current_position(driver_id), settings.tick_timeout_seconds
            )
        except (InfrastructureError, asyncio.TimeoutError) as exc:
            logger.info("No initial position for driver %s: %s", driver_id, exc)
            return None

    async def _insert_trip(self, driver_id: str, route: Route) -> Trip:
        now = utcnow()
        location = await self._initial_position(driver_id)
        trip = Trip(
            id=str(uuid.uuid4()),
            driver_id=driver_id,
            route_id=route.id,
            admin_id=route.admin_id,
            bus_id=route.bus_id,
            version=1,
            created_at=now,
        )
        trip.transition_to(TripStatus.IN_PROGRESS)
        trip.start_time = now
        if location is not None:
            trip.current_location = location
            trip.location_updated_at = now

        try:
            async with self.store.unit_of_work() as uow:
                existing = await uow.trips.find_active_for_driver(driver_id)
                if existing is not None:
                    raise TripAlreadyActive(driver_id, existing.id)
                await uow.trips.add(trip)
                uow.trip_changed(trip, ChangeKind.CREATED)
        except IntegrityError as exc:
            raise TripAlreadyActive(driver_id) from exc
        return trip

    def _start_sampler(self, trip: Trip) -> None:
        on_stall = self._on_stall if self.auto_cancel_on_stall else None
        handle = self.sampler.run(trip, self.sample_interval, on_stall=on_stall)
        self._samplers[trip.id] = handle
        handle.add_done_callback(lambda h: self._forget(h))

    def _forget(self, handle: SamplerHandle) -> None:
        if self._samplers.get(handle.trip_id) is handle:
            del self._samplers[handle.trip_id]

    # ── End / cancel ──────────────────────────────────────────────────

    async def end_trip(self, actor: Actor, trip_id: str) -> Trip:
        trip = await self._close(actor, trip_id, TripStatus.COMPLETED)
        await self.dispatcher.emit(
            TripEnded(
                trip_id=trip.id,
                driver_id=trip.driver_id,
                driver_name=await self.directory.display_name(trip.driver_id),
                admin_id=trip.admin_id,
            )
        )
        return trip

    async def cancel_trip(self, actor: Actor, trip_id: str, reason: str) -> Trip:
        trip = await self._close(actor, trip_id, TripStatus.CANCELLED, reason)
        await self.dispatcher.emit(
            TripCancelled(
                trip_id=trip.id,
                driver_id=trip.driver_id,
                driver_name=await self.directory.display_name(trip.driver_id),
                admin_id=trip.admin_id,
                reason=reason,
            )
        )
        return trip

    async def _close(
        self,
        actor: Actor,
        trip_id: str,
        status: TripStatus,
        reason: str | None = None,
    ) -> Trip:
        trip = await self.get_trip(trip_id)
        if not trip.is_active:
            raise TripNotActive(trip_id, trip.status)
        trip.transition_to(status)

        async with self.store.unit_of_work() as uow:
            closed = await uow.trips.close_if_active(
                trip_id, status, end_time=utcnow(), closed_by=actor.user_id, reason=reason
            )
            if not closed:
                current = await uow.trips.get(trip_id)
                raise TripNotActive(trip_id, current.status if current else None)
            trip = await uow.trips.get(trip_id)
            uow.trip_changed(trip)

        await self.stop_sampler(trip_id)
        logger.info("Trip %s %s by %s", trip_id, status.value, actor.user_id)
        return trip

    async def stop_sampler(self, trip_id: str) -> None:
        """Stop the registered sampler for *trip_id*, if any, and wait for it."""
        handle = self._samplers.pop(trip_id, None)
        if handle is not None:
            await handle.stop()

    async def _on_stall(self, trip_id: str) -> None:
        try:
            await self.cancel_trip(SYSTEM_ACTOR, trip_id, STALL_CANCEL_REASON)
        except (TripNotActive, TripNotFound):
            logger.info("Stalled trip %s already closed", trip_id)

    # ── Approaching ───────────────────────────────────────────────────

    async def announce_approaching(self, actor: Actor, trip_id: str) -> list[str]:
        """Tell every parent on the route that the bus is on its way."""
        trip = await self.get_trip(trip_id)
        if not trip.is_active:
            raise TripNotActive(trip_id, trip.status)
        route = await self.directory.get_route(trip.route_id)
        students = []
        for student_id in route.student_ids if route else []:
            student = await self.directory.get_student(student_id)
            if student is None:
                logger.warning("Route %s lists unknown student %s", trip.route_id, student_id)
                continue
            students.append(
                ApproachingStudent(student.id, student.full_name, student.parent_id)
            )
        logger.info(
            "Approach announced for trip %s by %s (%d students)",
            trip_id, actor.user_id, len(students),
        )
        return await self.dispatcher.emit(
            BusApproaching(
                trip_id=trip.id,
                driver_id=trip.driver_id,
                route_id=trip.route_id,
                students=tuple(students),
            )
        )

    # ── Shutdown ──────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        handles = list(self._samplers.values())
        self._samplers.clear()
        await asyncio.gather(*(h.stop() for h in handles), return_exceptions=True)
        if handles:
            logger.info("Stopped %d sampler(s)", len(handles))
