"""
Notification dispatcher.

Turns domain events into per-recipient ``Notification`` rows.  Every
recipient is written in its own transaction: one failed write is logged
and skipped, it never blocks the other recipients or the mutation that
produced the event.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from schoolbus.config import settings
from schoolbus.domain.entities import Actor, Notification, utcnow
from schoolbus.domain.enums import BehaviorType, ChangeKind, NotificationType
from schoolbus.domain.errors import InfrastructureError, NotificationNotFound
from schoolbus.domain.events import (
    BehaviorReported,
    BusApproaching,
    LocationStale,
    StudentDropoff,
    StudentOnboard,
    TripCancelled,
    TripEnded,
    TripStarted,
    WeatherAlert,
)
from schoolbus.infrastructure.store import RealtimeStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Draft:
    recipient_user_id: Optional[str]
    type: NotificationType
    title: str
    message: str
    trip_id: Optional[str] = None
    driver_id: Optional[str] = None
    student_id: Optional[str] = None


def _trip_started(e: TripStarted) -> list[_Draft]:
    return [
        _Draft(
            e.admin_id, NotificationType.TRIP_STARTED, "Trip Started",
            f"Driver {e.driver_name} has started their route.",
            trip_id=e.trip_id, driver_id=e.driver_id,
        )
    ]


def _trip_ended(e: TripEnded) -> list[_Draft]:
    return [
        _Draft(
            e.admin_id, NotificationType.TRIP_ENDED, "Trip Ended",
            f"Driver {e.driver_name} has completed their route.",
            trip_id=e.trip_id, driver_id=e.driver_id,
        )
    ]


def _trip_cancelled(e: TripCancelled) -> list[_Draft]:
    return [
        _Draft(
            e.admin_id, NotificationType.TRIP_ENDED, "Trip Cancelled",
            f"Trip for driver {e.driver_name} was cancelled: {e.reason}",
            trip_id=e.trip_id, driver_id=e.driver_id,
        )
    ]


def _student_onboard(e: StudentOnboard) -> list[_Draft]:
    return [
        _Draft(
            e.parent_id, NotificationType.STUDENT_ONBOARD, "Student Boarded",
            f"{e.student_name} has boarded the bus",
            trip_id=e.trip_id, driver_id=e.driver_id, student_id=e.student_id,
        )
    ]


def _student_dropoff(e: StudentDropoff) -> list[_Draft]:
    return [
        _Draft(
            e.parent_id, NotificationType.STUDENT_DROPOFF, "Student Dropped Off",
            f"{e.student_name} has been dropped off",
            trip_id=e.trip_id, driver_id=e.driver_id, student_id=e.student_id,
        )
    ]


def _behavior_reported(e: BehaviorReported) -> list[_Draft]:
    kind = e.behavior_type.value.lower()
    drafts = [
        _Draft(
            e.admin_id, NotificationType.STUDENT_BEHAVIOR, "Student Behavior Report",
            f"{e.driver_name} reported {kind} behavior for {e.student_name}",
            trip_id=e.trip_id, driver_id=e.driver_id, student_id=e.student_id,
        )
    ]
    if e.behavior_type != BehaviorType.POSITIVE:
        drafts.append(
            _Draft(
                e.parent_id, NotificationType.STUDENT_BEHAVIOR, "Behavior Notification",
                f"Your child's driver has reported {kind} behavior.",
                trip_id=e.trip_id, driver_id=e.driver_id, student_id=e.student_id,
            )
        )
    return drafts


def _bus_approaching(e: BusApproaching) -> list[_Draft]:
    return [
        _Draft(
            s.parent_id, NotificationType.BUS_APPROACHING, "Bus Approaching",
            f"The bus is approaching {s.student_name}'s stop.",
            trip_id=e.trip_id, driver_id=e.driver_id, student_id=s.student_id,
        )
        for s in e.students
    ]


def _location_stale(e: LocationStale) -> list[_Draft]:
    return [
        _Draft(
            e.admin_id, NotificationType.EMERGENCY, "Bus Location Unavailable",
            f"No location received for trip {e.trip_id} "
            f"after {e.consecutive_failures} attempts.",
            trip_id=e.trip_id, driver_id=e.driver_id,
        )
    ]


def _weather_alert(e: WeatherAlert) -> list[_Draft]:
    return [
        _Draft(
            e.admin_id, NotificationType.WEATHER_ALERT, "Weather Alert",
            f"{e.description or e.condition.title()} reported along the route.",
            trip_id=e.trip_id, driver_id=e.driver_id,
        )
    ]


_RULES = {
    TripStarted: _trip_started,
    TripEnded: _trip_ended,
    TripCancelled: _trip_cancelled,
    StudentOnboard: _student_onboard,
    StudentDropoff: _student_dropoff,
    BehaviorReported: _behavior_reported,
    BusApproaching: _bus_approaching,
    LocationStale: _location_stale,
    WeatherAlert: _weather_alert,
}


class NotificationDispatcher:
    def __init__(self, store: RealtimeStore):
        self.store = store

    async def emit(self, event) -> list[str]:
        """Write one notification per recipient; returns the created ids."""
        rule = _RULES.get(type(event))
        if rule is None:
            raise TypeError(f"Unsupported event: {type(event).__name__}")

        created: list[str] = []
        for draft in rule(event):
            if not draft.recipient_user_id:
                logger.info(
                    "Skipping %s notification without recipient", draft.type.value
                )
                continue
            try:
                created.append(await self._write(draft))
            except InfrastructureError as exc:
                logger.warning(
                    "Notification to %s not written: %s", draft.recipient_user_id, exc
                )
            except Exception:
                logger.exception(
                    "Notification to %s failed", draft.recipient_user_id
                )
        return created

    async def _write(self, draft: _Draft) -> str:
        notification = Notification(
            id=str(uuid.uuid4()),
            recipient_user_id=draft.recipient_user_id,
            title=draft.title,
            message=draft.message,
            type=draft.type,
            created_at=utcnow(),
            student_id=draft.student_id,
            driver_id=draft.driver_id,
            trip_id=draft.trip_id,
            version=1,
        )
        async with self.store.unit_of_work() as uow:
            await uow.notifications.add(notification)
            uow.notification_changed(notification, ChangeKind.CREATED)
        return notification.id

    # ── Recipient operations ──────────────────────────────────────────

    async def mark_read(self, actor: Actor, notification_id: str) -> Notification:
        """Idempotent; only the recipient can mark a notification read."""
        async with self.store.unit_of_work() as uow:
            changed = await uow.notifications.mark_read(notification_id, actor.user_id)
            notification = await uow.notifications.get(notification_id)
            if notification is None or notification.recipient_user_id != actor.user_id:
                raise NotificationNotFound(notification_id)
            if changed:
                uow.notification_changed(notification)
            else:
                uow.discard()
        return notification

    async def mark_all_read(self, actor: Actor) -> int:
        async with self.store.unit_of_work() as uow:
            unread = await uow.notifications.list_for(actor.user_id, unread_only=True)
            count = 0
            for item in unread:
                if await uow.notifications.mark_read(item.id, actor.user_id):
                    count += 1
                    updated = await uow.notifications.get(item.id)
                    uow.notification_changed(updated)
        return count

    async def list_for(
        self, actor: Actor, unread_only: bool = False, limit: int | None = None
    ) -> list[Notification]:
        async with self.store.read() as uow:
            return await uow.notifications.list_for(
                actor.user_id,
                unread_only=unread_only,
                limit=limit or settings.notification_snapshot_limit,
            )
