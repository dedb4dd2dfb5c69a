"""
Student status tracker: WAITING -> ONBOARD -> EXITED, strictly forward.

Each board/exit runs in one transaction that starts by bumping the trip
version under ``status = 'IN_PROGRESS'``.  That write takes the trip row
lock, so every mutation of one trip is serialized and two drivers' taps
on different students can never clobber each other.  A repeated or
out-of-order tap is a no-op reported with ``changed=False``.
"""

from __future__ import annotations

import logging

from schoolbus.domain.entities import Actor, BoardingResult, Student, Trip, utcnow
from schoolbus.domain.enums import BOARDING_TRANSITIONS, BoardingState
from schoolbus.domain.errors import (
    StudentNotFound,
    StudentNotOnRoute,
    TripNotActive,
    TripNotFound,
)
from schoolbus.domain.events import StudentDropoff, StudentOnboard
from schoolbus.infrastructure.directory import Directory
from schoolbus.infrastructure.store import RealtimeStore, UnitOfWork
from schoolbus.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


async def load_trip_and_student(
    store: RealtimeStore, directory: Directory, trip_id: str, student_id: str
) -> tuple[Trip, Student]:
    """Validate that *student_id* rides on the route of trip *trip_id*."""
    trip = await store.get_trip(trip_id)
    if trip is None:
        raise TripNotFound(trip_id)
    student = await directory.get_student(student_id)
    if student is None:
        raise StudentNotFound(student_id)
    route = await directory.get_route(trip.route_id)
    if route is None or student_id not in route.student_ids:
        raise StudentNotOnRoute(student_id, trip.route_id)
    return trip, student


class StudentStatusTracker:
    def __init__(
        self,
        store: RealtimeStore,
        directory: Directory,
        dispatcher: NotificationDispatcher,
    ):
        self.store = store
        self.directory = directory
        self.dispatcher = dispatcher

    async def board(self, actor: Actor, trip_id: str, student_id: str) -> BoardingResult:
        return await self._move(actor, trip_id, student_id, BoardingState.ONBOARD)

    async def exit(self, actor: Actor, trip_id: str, student_id: str) -> BoardingResult:
        return await self._move(actor, trip_id, student_id, BoardingState.EXITED)

    async def _move(
        self, actor: Actor, trip_id: str, student_id: str, target: BoardingState
    ) -> BoardingResult:
        trip, student = await load_trip_and_student(
            self.store, self.directory, trip_id, student_id
        )
        if not trip.is_active:
            raise TripNotActive(trip_id, trip.status)

        async with self.store.unit_of_work() as uow:
            if not await uow.trips.bump_if_active(trip_id):
                current = await uow.trips.get(trip_id)
                raise TripNotActive(trip_id, current.status if current else None)

            state = await uow.boarding.get_state(trip_id, student_id)
            if target not in BOARDING_TRANSITIONS[state]:
                uow.discard()
                logger.info(
                    "No-op %s for student %s on trip %s (state %s)",
                    target.value, student_id, trip_id, state.value,
                )
                return BoardingResult(trip_id, student_id, state, changed=False)

            await self._write(uow, trip_id, student_id, target)
            updated = await uow.trips.get(trip_id)
            uow.trip_changed(updated)

        logger.info(
            "Student %s %s on trip %s by %s",
            student_id, target.value, trip_id, actor.user_id,
        )
        event_cls = StudentOnboard if target == BoardingState.ONBOARD else StudentDropoff
        await self.dispatcher.emit(
            event_cls(
                trip_id=trip_id,
                driver_id=trip.driver_id,
                student_id=student_id,
                student_name=student.full_name,
                parent_id=student.parent_id,
            )
        )
        return BoardingResult(trip_id, student_id, target, changed=True)

    @staticmethod
    async def _write(
        uow: UnitOfWork, trip_id: str, student_id: str, target: BoardingState
    ) -> None:
        now = utcnow()
        if target == BoardingState.ONBOARD:
            await uow.boarding.mark_onboard(trip_id, student_id, now)
        else:
            await uow.boarding.mark_exited(trip_id, student_id, now)
