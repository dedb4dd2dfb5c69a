"""
Real-time store: transactional document access plus change publication.

``RealtimeStore.unit_of_work()`` yields a ``UnitOfWork`` bundling the
repositories over one session.  Changes recorded on it are published to
the subscription hub (and any extra publishers such as the Redis relay)
only *after* a successful commit, so subscribers never see a write that
was rolled back.

Connection-level failures are re-raised as ``StoreUnavailable`` so callers
can tell "unreachable" apart from "not found" (a plain ``None``).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .repositories import (
    BehaviorReportRepository,
    BoardingRepository,
    DirectoryRepository,
    NotificationRepository,
    TripRepository,
)
from schoolbus.domain.entities import Notification, Trip
from schoolbus.domain.enums import ChangeKind
from schoolbus.domain.errors import StoreUnavailable
from schoolbus.realtime.hub import NOTIFICATIONS, TRIPS, ChangeEvent, SubscriptionHub

logger = logging.getLogger(__name__)

Publisher = Callable[[ChangeEvent], None]


def _is_unavailable(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError, ConnectionError, OSError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


class UnitOfWork:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.trips = TripRepository(session)
        self.boarding = BoardingRepository(session)
        self.notifications = NotificationRepository(session)
        self.behavior_reports = BehaviorReportRepository(session)
        self.directory = DirectoryRepository(session)
        self.changes: list[ChangeEvent] = []
        self.discarded = False

    def trip_changed(self, trip: Trip, kind: ChangeKind = ChangeKind.UPDATED) -> None:
        self.changes.append(
            ChangeEvent(TRIPS, trip.id, kind, trip.version, trip.to_document())
        )

    def notification_changed(
        self, notification: Notification, kind: ChangeKind = ChangeKind.UPDATED
    ) -> None:
        self.changes.append(
            ChangeEvent(
                NOTIFICATIONS,
                notification.id,
                kind,
                notification.version,
                notification.to_document(),
            )
        )

    def discard(self) -> None:
        """Roll back instead of committing when the block exits."""
        self.discarded = True


class RealtimeStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hub: SubscriptionHub,
    ):
        self._session_factory = session_factory
        self.hub = hub
        self._publishers: list[Publisher] = [hub.publish]

    def add_publisher(self, publisher: Publisher) -> None:
        self._publishers.append(publisher)

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[UnitOfWork]:
        """Commit on success, rollback on error, then publish changes."""
        try:
            async with self._session_factory() as session:
                uow = UnitOfWork(session)
                try:
                    yield uow
                    if uow.discarded:
                        await session.rollback()
                        return
                    await session.commit()
                except BaseException:
                    await session.rollback()
                    raise
        except Exception as exc:
            if _is_unavailable(exc):
                raise StoreUnavailable(str(exc)) from exc
            raise
        if not uow.discarded:
            self._publish(uow.changes)

    @asynccontextmanager
    async def read(self) -> AsyncIterator[UnitOfWork]:
        """Read-only access; nothing is committed or published."""
        try:
            async with self._session_factory() as session:
                yield UnitOfWork(session)
        except Exception as exc:
            if _is_unavailable(exc):
                raise StoreUnavailable(str(exc)) from exc
            raise

    def _publish(self, changes: list[ChangeEvent]) -> None:
        for change in changes:
            for publish in self._publishers:
                try:
                    publish(change)
                except Exception:
                    logger.exception(
                        "Publisher failed for %s %s", change.collection, change.doc_id
                    )

    # ── Convenience reads ─────────────────────────────────────────────

    async def get_trip(self, trip_id: str) -> Trip | None:
        async with self.read() as uow:
            return await uow.trips.get(trip_id)
