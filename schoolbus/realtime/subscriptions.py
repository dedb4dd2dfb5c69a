"""
Subscription service: snapshot + change stream per filter.

The subscription is registered with the hub *before* the snapshot is
loaded, so no change committed in between is lost; changes already
covered by the snapshot are skipped by version.
"""

from __future__ import annotations

import logging

from schoolbus.config import settings
from schoolbus.domain.enums import TripStatus
from schoolbus.infrastructure.resilient import ResilientReader
from schoolbus.infrastructure.store import RealtimeStore
from schoolbus.realtime.hub import (
    NOTIFICATIONS,
    TRIPS,
    FilterKind,
    Subscription,
    SubscriptionFilter,
)

logger = logging.getLogger(__name__)


class SubscriptionService:
    def __init__(
        self,
        store: RealtimeStore,
        reader: ResilientReader,
        notification_limit: int | None = None,
    ):
        self.store = store
        self.hub = store.hub
        self.reader = reader
        self.notification_limit = (
            notification_limit or settings.notification_snapshot_limit
        )

    async def subscribe(self, filter: SubscriptionFilter) -> Subscription:
        sub = self.hub.subscribe(filter)
        try:
            sub.seed(await self._snapshot(filter))
        except BaseException:
            sub.close()
            raise
        logger.info(
            "Subscribed %s=%s (%d document(s) in snapshot)",
            filter.kind.value, filter.value, len(sub.snapshot),
        )
        return sub

    async def _snapshot(self, filter: SubscriptionFilter) -> list[dict]:
        if filter.kind == FilterKind.TRIP:
            return await self._trip(filter.value)
        if filter.kind == FilterKind.RECIPIENT:
            return await self._notifications(filter.value)
        return await self._active_trips(filter.kind, filter.value)

    async def _trip(self, trip_id: str) -> list[dict]:
        async def fetch():
            trip = await self.store.get_trip(trip_id)
            return trip.to_document() if trip else None

        doc = await self.reader.get(TRIPS, trip_id, fetch)
        return [doc] if doc else []

    async def _active_trips(self, kind: FilterKind, value: str) -> list[dict]:
        async def fetch():
            async with self.store.read() as uow:
                trips = await uow.trips.query(
                    statuses=[TripStatus.IN_PROGRESS], **{kind.value: value}
                )
            return [t.to_document() for t in trips]

        return await self.reader.query(
            TRIPS, {kind.value: value, "status": TripStatus.IN_PROGRESS.value}, fetch
        )

    async def _notifications(self, user_id: str) -> list[dict]:
        async def fetch():
            async with self.store.read() as uow:
                items = await uow.notifications.list_for(
                    user_id, limit=self.notification_limit
                )
            return [n.to_document() for n in items]

        docs = await self.reader.query(
            NOTIFICATIONS,
            {"recipient_user_id": user_id},
            fetch,
            limit=self.notification_limit,
        )
        return sorted(docs, key=lambda d: d.get("created_at") or "", reverse=True)
