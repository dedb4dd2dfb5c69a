"""
Authorization rules, applied once at the API boundary.

* Drivers act on their own trips; admins on trips they own.
* Parents may watch a trip whose route carries one of their children.
* Notifications are read and marked only by their recipient.

Core operations below this layer are role-agnostic.
"""

from __future__ import annotations

from schoolbus.core import TrackingCore
from schoolbus.domain.entities import Actor, Trip
from schoolbus.domain.enums import UserRole
from schoolbus.domain.errors import PermissionDenied
from schoolbus.realtime.hub import FilterKind, SubscriptionFilter


def require_role(actor: Actor, *roles: UserRole) -> None:
    if actor.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        raise PermissionDenied(f"Requires role {allowed}")


def _operates(actor: Actor, trip: Trip) -> bool:
    if actor.role == UserRole.DRIVER:
        return trip.driver_id == actor.user_id
    if actor.role == UserRole.ADMIN:
        return trip.admin_id == actor.user_id
    return False


def authorize_trip_operation(actor: Actor, trip: Trip) -> None:
    """End, cancel, board/exit, behavior reports, approach announcements."""
    if not _operates(actor, trip):
        raise PermissionDenied(f"{actor.user_id} may not operate trip {trip.id}")


async def authorize_start(core: TrackingCore, actor: Actor, driver_id: str) -> None:
    if actor.role == UserRole.DRIVER and actor.user_id == driver_id:
        return
    if actor.role == UserRole.ADMIN:
        driver = await core.directory.get_user(driver_id)
        if driver is not None and driver.admin_id == actor.user_id:
            return
    raise PermissionDenied(f"{actor.user_id} may not start a trip for {driver_id}")


async def authorize_watch_trip(core: TrackingCore, actor: Actor, trip: Trip) -> None:
    if _operates(actor, trip):
        return
    if actor.role == UserRole.PARENT:
        route = await core.directory.get_route(trip.route_id)
        for student_id in route.student_ids if route else []:
            student = await core.directory.get_student(student_id)
            if student is not None and student.parent_id == actor.user_id:
                return
    raise PermissionDenied(f"{actor.user_id} may not watch trip {trip.id}")


async def authorize_subscription(
    core: TrackingCore, actor: Actor, filter: SubscriptionFilter
) -> None:
    if filter.kind == FilterKind.TRIP:
        await authorize_watch_trip(core, actor, await core.trips.get_trip(filter.value))
        return
    if filter.kind == FilterKind.DRIVER:
        if actor.role == UserRole.DRIVER and actor.user_id == filter.value:
            return
        if actor.role == UserRole.ADMIN:
            driver = await core.directory.get_user(filter.value)
            if driver is not None and driver.admin_id == actor.user_id:
                return
    elif filter.kind == FilterKind.ADMIN:
        if actor.role == UserRole.ADMIN and actor.user_id == filter.value:
            return
    elif actor.user_id == filter.value:
        return
    raise PermissionDenied(
        f"{actor.user_id} may not subscribe to {filter.kind.value}={filter.value}"
    )
