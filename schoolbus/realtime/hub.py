"""
In-process change fan-out.

Every committed Trip / Notification mutation is published to the hub as a
``ChangeEvent`` carrying the full document and its version.  The hub
routes it to subscriptions by filter key:

* trips          -> ``trip_id``, ``driver_id``, ``admin_id``
* notifications  -> ``recipient_user_id``

Ordering
--------
Publication order across tasks is not commit order, so each subscription
remembers the last version it delivered per entity and silently drops
anything that is not newer.  Documents are full snapshots, so a dropped
older version is always superseded by one already delivered.

Lifetime
--------
There is no TTL.  A subscription lives until ``close()`` is called (or
its ``async with`` block exits); a leaked subscription is a client bug.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Optional

from schoolbus.domain.enums import TERMINAL_TRIP_STATUSES, ChangeKind, TripStatus

logger = logging.getLogger(__name__)

TRIPS = "trips"
NOTIFICATIONS = "notifications"

_CLOSED = object()


@dataclass(frozen=True)
class ChangeEvent:
    collection: str
    doc_id: str
    kind: ChangeKind
    version: int
    document: dict = field(default_factory=dict)
    origin: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(
            {
                "collection": self.collection,
                "doc_id": self.doc_id,
                "kind": self.kind.value,
                "version": self.version,
                "document": self.document,
                "origin": self.origin,
            }
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "ChangeEvent":
        data = json.loads(raw)
        return cls(
            collection=data["collection"],
            doc_id=data["doc_id"],
            kind=ChangeKind(data["kind"]),
            version=int(data["version"]),
            document=data.get("document") or {},
            origin=data.get("origin"),
        )


class FilterKind(str, enum.Enum):
    TRIP = "trip_id"
    DRIVER = "driver_id"
    ADMIN = "admin_id"
    RECIPIENT = "recipient_user_id"


@dataclass(frozen=True)
class SubscriptionFilter:
    kind: FilterKind
    value: str

    @classmethod
    def by_trip_id(cls, trip_id: str) -> "SubscriptionFilter":
        return cls(FilterKind.TRIP, trip_id)

    @classmethod
    def by_driver_id(cls, driver_id: str) -> "SubscriptionFilter":
        return cls(FilterKind.DRIVER, driver_id)

    @classmethod
    def by_admin_id(cls, admin_id: str) -> "SubscriptionFilter":
        return cls(FilterKind.ADMIN, admin_id)

    @classmethod
    def by_recipient_user_id(cls, user_id: str) -> "SubscriptionFilter":
        return cls(FilterKind.RECIPIENT, user_id)

    @property
    def collection(self) -> str:
        return NOTIFICATIONS if self.kind == FilterKind.RECIPIENT else TRIPS

    @property
    def active_trips_only(self) -> bool:
        """Driver and admin views list in-progress trips only."""
        return self.kind in (FilterKind.DRIVER, FilterKind.ADMIN)

    def matches(self, event: ChangeEvent) -> bool:
        if event.collection != self.collection:
            return False
        if self.kind == FilterKind.TRIP:
            return event.doc_id == self.value
        return event.document.get(self.kind.value) == self.value


def _routing_keys(event: ChangeEvent) -> list[tuple[FilterKind, str]]:
    doc = event.document
    if event.collection == TRIPS:
        keys = [(FilterKind.TRIP, event.doc_id)]
        for kind in (FilterKind.DRIVER, FilterKind.ADMIN):
            if doc.get(kind.value):
                keys.append((kind, doc[kind.value]))
        return keys
    if event.collection == NOTIFICATIONS and doc.get(FilterKind.RECIPIENT.value):
        return [(FilterKind.RECIPIENT, doc[FilterKind.RECIPIENT.value])]
    return []


class Subscription:
    """A single cancellable stream of changes for one filter."""

    def __init__(self, hub: "SubscriptionHub", filter: SubscriptionFilter):
        self.filter = filter
        self.snapshot: list[dict] = []
        self._hub = hub
        self._queue: asyncio.Queue = asyncio.Queue()
        self._versions: dict[str, int] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def seed(self, documents: list[dict]) -> None:
        """Record the initial snapshot; queued changes it covers are skipped."""
        self.snapshot = documents
        for doc in documents:
            self._remember(doc["id"], doc.get("version", 0))

    def deliver(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        if (
            self.filter.active_trips_only
            and event.kind != ChangeKind.REMOVED
            and TripStatus(event.document.get("status")) in TERMINAL_TRIP_STATUSES
        ):
            event = replace(event, kind=ChangeKind.REMOVED)
        self._queue.put_nowait(event)

    def _remember(self, doc_id: str, version: int) -> None:
        if version > self._versions.get(doc_id, -1):
            self._versions[doc_id] = version

    def _is_stale(self, event: ChangeEvent) -> bool:
        return event.version <= self._versions.get(event.doc_id, -1)

    async def next(self, timeout: float | None = None) -> ChangeEvent:
        """Next fresh change; raises ``StopAsyncIteration`` once closed."""
        while True:
            if timeout is None:
                item = await self._queue.get()
            else:
                item = await asyncio.wait_for(self._queue.get(), timeout)
            if item is _CLOSED:
                raise StopAsyncIteration
            if self._is_stale(item):
                continue
            self._remember(item.doc_id, item.version)
            return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        return await self.next()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._hub._discard(self)
        self._queue.put_nowait(_CLOSED)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        self.close()


class SubscriptionHub:
    def __init__(self):
        self._subs: dict[tuple[FilterKind, str], set[Subscription]] = defaultdict(set)

    def subscribe(self, filter: SubscriptionFilter) -> Subscription:
        sub = Subscription(self, filter)
        self._subs[(filter.kind, filter.value)].add(sub)
        return sub

    def _discard(self, sub: Subscription) -> None:
        key = (sub.filter.kind, sub.filter.value)
        subs = self._subs.get(key)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._subs[key]

    def subscriber_count(self, filter: SubscriptionFilter | None = None) -> int:
        if filter is not None:
            return len(self._subs.get((filter.kind, filter.value), ()))
        return sum(len(s) for s in self._subs.values())

    def publish(self, event: ChangeEvent) -> int:
        """Route *event* to every matching subscription.  Returns the count."""
        delivered = 0
        for key in _routing_keys(event):
            for sub in list(self._subs.get(key, ())):
                sub.deliver(event)
                delivered += 1
        if delivered:
            logger.debug(
                "Published %s %s v%d to %d subscriber(s)",
                event.collection, event.doc_id, event.version, delivered,
            )
        return delivered
