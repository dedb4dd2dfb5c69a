"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Mutations of core-owned rows are
*conditional*: the ``WHERE`` clause restates the precondition (status,
current boarding state, recipient) and the caller inspects the affected
row count instead of trusting an earlier read.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    BehaviorReportModel,
    NotificationModel,
    RouteModel,
    RouteStopModel,
    StudentModel,
    TripModel,
    TripStudentModel,
    UserModel,
)
from schoolbus.domain.entities import (
    BehaviorReport,
    Location,
    Notification,
    Trip,
    WeatherSnapshot,
    as_utc,
)
from schoolbus.domain.enums import BoardingState, TripStatus


def _trip_from_row(row: TripModel, boarding: dict[str, BoardingState]) -> Trip:
    location = None
    if row.current_lat is not None and row.current_lng is not None:
        location = Location(row.current_lat, row.current_lng)
    return Trip(
        id=row.id,
        driver_id=row.driver_id,
        route_id=row.route_id,
        admin_id=row.admin_id,
        bus_id=row.bus_id,
        status=TripStatus(row.status),
        start_time=as_utc(row.start_time),
        end_time=as_utc(row.end_time),
        current_location=location,
        location_updated_at=as_utc(row.location_updated_at),
        weather=WeatherSnapshot.from_dict(row.weather),
        boarding=boarding,
        cancel_reason=row.cancel_reason,
        closed_by=row.closed_by,
        version=row.version,
        created_at=as_utc(row.created_at),
    )


def _notification_from_row(row: NotificationModel) -> Notification:
    return Notification(
        id=row.id,
        recipient_user_id=row.recipient_user_id,
        title=row.title,
        message=row.message,
        type=row.type,
        read=row.read,
        created_at=as_utc(row.created_at),
        student_id=row.student_id,
        driver_id=row.driver_id,
        trip_id=row.trip_id,
        version=row.version,
    )


class TripRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, trip: Trip) -> None:
        loc = trip.current_location
        self.session.add(
            TripModel(
                id=trip.id,
                driver_id=trip.driver_id,
                route_id=trip.route_id,
                admin_id=trip.admin_id,
                bus_id=trip.bus_id,
                status=trip.status,
                start_time=trip.start_time,
                current_lat=loc.latitude if loc else None,
                current_lng=loc.longitude if loc else None,
                location_updated_at=trip.location_updated_at,
                weather=trip.weather.to_dict() if trip.weather else None,
                version=trip.version,
            )
        )
        await self.session.flush()

    async def get(self, trip_id: str) -> Optional[Trip]:
        result = await self.session.execute(
            select(TripModel)
            .where(TripModel.id == trip_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        states = await self._boarding_for([trip_id])
        return _trip_from_row(row, states.get(trip_id, {}))

    async def find_active_for_driver(self, driver_id: str) -> Optional[Trip]:
        trips = await self.query(
            driver_id=driver_id, statuses=[TripStatus.IN_PROGRESS], limit=1
        )
        return trips[0] if trips else None

    async def query(
        self,
        *,
        driver_id: str | None = None,
        admin_id: str | None = None,
        driver_ids: Iterable[str] | None = None,
        statuses: Iterable[TripStatus] | None = None,
        limit: int | None = None,
    ) -> list[Trip]:
        """Equality / ``in`` filters plus an optional limit."""
        stmt = select(TripModel).execution_options(populate_existing=True)
        if driver_id is not None:
            stmt = stmt.where(TripModel.driver_id == driver_id)
        if admin_id is not None:
            stmt = stmt.where(TripModel.admin_id == admin_id)
        if driver_ids is not None:
            stmt = stmt.where(TripModel.driver_id.in_(list(driver_ids)))
        if statuses is not None:
            stmt = stmt.where(TripModel.status.in_(list(statuses)))
        stmt = stmt.order_by(TripModel.start_time.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = list((await self.session.execute(stmt)).scalars().all())
        states = await self._boarding_for([r.id for r in rows])
        return [_trip_from_row(r, states.get(r.id, {})) for r in rows]

    async def _boarding_for(
        self, trip_ids: list[str]
    ) -> dict[str, dict[str, BoardingState]]:
        if not trip_ids:
            return {}
        result = await self.session.execute(
            select(TripStudentModel).where(TripStudentModel.trip_id.in_(trip_ids))
        )
        states: dict[str, dict[str, BoardingState]] = defaultdict(dict)
        for row in result.scalars().all():
            states[row.trip_id][row.student_id] = BoardingState(row.state)
        return states

    # ── Conditional writes (only while IN_PROGRESS) ───────────────────

    async def _update_if_active(self, trip_id: str, **values) -> bool:
        result = await self.session.execute(
            update(TripModel)
            .where(
                TripModel.id == trip_id,
                TripModel.status == TripStatus.IN_PROGRESS,
            )
            .values(version=TripModel.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def bump_if_active(self, trip_id: str) -> bool:
        """Bump the version; on PostgreSQL this also row-locks the trip."""
        return await self._update_if_active(trip_id)

    async def set_location_if_active(
        self, trip_id: str, location: Location, at: datetime
    ) -> bool:
        return await self._update_if_active(
            trip_id,
            current_lat=location.latitude,
            current_lng=location.longitude,
            location_updated_at=at,
        )

    async def set_weather_if_active(
        self, trip_id: str, weather: WeatherSnapshot
    ) -> bool:
        return await self._update_if_active(trip_id, weather=weather.to_dict())

    async def close_if_active(
        self,
        trip_id: str,
        status: TripStatus,
        *,
        end_time: datetime,
        closed_by: str,
        reason: str | None = None,
    ) -> bool:
        return await self._update_if_active(
            trip_id,
            status=status,
            end_time=end_time,
            closed_by=closed_by,
            cancel_reason=reason,
            current_lat=None,
            current_lng=None,
        )


class BoardingRepository:
    """Per-(trip, student) state rows.  No row means WAITING."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_state(self, trip_id: str, student_id: str) -> BoardingState:
        row = await self.session.get(
            TripStudentModel, (trip_id, student_id), populate_existing=True
        )
        return BoardingState(row.state) if row else BoardingState.WAITING

    async def mark_onboard(self, trip_id: str, student_id: str, at: datetime) -> None:
        self.session.add(
            TripStudentModel(
                trip_id=trip_id,
                student_id=student_id,
                state=BoardingState.ONBOARD,
                boarded_at=at,
            )
        )
        await self.session.flush()

    async def mark_exited(self, trip_id: str, student_id: str, at: datetime) -> bool:
        result = await self.session.execute(
            update(TripStudentModel)
            .where(
                TripStudentModel.trip_id == trip_id,
                TripStudentModel.student_id == student_id,
                TripStudentModel.state == BoardingState.ONBOARD,
            )
            .values(state=BoardingState.EXITED, exited_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, notification: Notification) -> None:
        self.session.add(
            NotificationModel(
                id=notification.id,
                recipient_user_id=notification.recipient_user_id,
                title=notification.title,
                message=notification.message,
                type=notification.type,
                read=notification.read,
                student_id=notification.student_id,
                driver_id=notification.driver_id,
                trip_id=notification.trip_id,
                version=notification.version,
                created_at=notification.created_at,
            )
        )
        await self.session.flush()

    async def get(self, notification_id: str) -> Optional[Notification]:
        row = await self.session.get(
            NotificationModel, notification_id, populate_existing=True
        )
        return _notification_from_row(row) if row else None

    async def mark_read(self, notification_id: str, recipient_user_id: str) -> bool:
        result = await self.session.execute(
            update(NotificationModel)
            .where(
                NotificationModel.id == notification_id,
                NotificationModel.recipient_user_id == recipient_user_id,
                NotificationModel.read.is_(False),
            )
            .values(read=True, version=NotificationModel.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_for(
        self,
        recipient_user_id: str,
        *,
        unread_only: bool = False,
        limit: int | None = None,
    ) -> list[Notification]:
        stmt = (
            select(NotificationModel)
            .where(NotificationModel.recipient_user_id == recipient_user_id)
            .order_by(NotificationModel.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if unread_only:
            stmt = stmt.where(NotificationModel.read.is_(False))
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return [_notification_from_row(r) for r in result.scalars().all()]


class BehaviorReportRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, report: BehaviorReport) -> None:
        self.session.add(
            BehaviorReportModel(
                id=report.id,
                trip_id=report.trip_id,
                student_id=report.student_id,
                driver_id=report.driver_id,
                type=report.type,
                description=report.description,
                status=report.status,
                created_at=report.created_at,
            )
        )
        await self.session.flush()


class DirectoryRepository:
    """Read-only reference data, returned as plain documents."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user(self, user_id: str) -> Optional[dict]:
        row = await self.session.get(UserModel, user_id)
        if row is None:
            return None
        return {
            "id": row.id,
            "display_name": row.display_name,
            "email": row.email,
            "role": row.role.value,
            "phone_number": row.phone_number,
            "admin_id": row.admin_id,
        }

    async def get_student(self, student_id: str) -> Optional[dict]:
        row = await self.session.get(StudentModel, student_id)
        if row is None:
            return None
        home = None
        if row.home_lat is not None and row.home_lng is not None:
            home = {"latitude": row.home_lat, "longitude": row.home_lng}
        return {
            "id": row.id,
            "full_name": row.full_name,
            "grade": row.grade,
            "school": row.school,
            "parent_id": row.parent_id,
            "driver_id": row.driver_id,
            "home_location": home,
            "admin_id": row.admin_id,
        }

    async def get_route(self, route_id: str) -> Optional[dict]:
        row = await self.session.get(RouteModel, route_id)
        if row is None:
            return None
        return await self._route_document(row)

    async def routes_for_driver(self, driver_id: str) -> list[dict]:
        result = await self.session.execute(
            select(RouteModel)
            .where(RouteModel.driver_id == driver_id)
            .order_by(RouteModel.id)
        )
        return [await self._route_document(r) for r in result.scalars().all()]

    async def _route_document(self, row: RouteModel) -> dict:
        result = await self.session.execute(
            select(RouteStopModel)
            .where(RouteStopModel.route_id == row.id)
            .order_by(RouteStopModel.position)
        )
        stops = [
            {
                "student_id": s.student_id,
                "location": {"latitude": s.lat, "longitude": s.lng},
                "estimated_time": (
                    as_utc(s.estimated_time).isoformat() if s.estimated_time else None
                ),
            }
            for s in result.scalars().all()
        ]
        return {
            "id": row.id,
            "name": row.name,
            "driver_id": row.driver_id,
            "bus_id": row.bus_id,
            "admin_id": row.admin_id,
            "stops": stops,
        }
