"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Trip``: enforces valid lifecycle transitions
  (NOT_STARTED -> IN_PROGRESS -> COMPLETED | CANCELLED).
- Boarding state is an explicit per-student map on ``Trip``; the
  ``students_onboard`` / ``students_exited`` sets are derived from it, so a
  student can never be in both.
- ``Trip.to_document`` gives the JSON shape pushed to subscribers and
  kept in the offline snapshot store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from .enums import (
    TERMINAL_TRIP_STATUSES,
    TRIP_TRANSITIONS,
    BehaviorType,
    BoardingState,
    NotificationType,
    TripStatus,
    UserRole,
)
from .errors import InvalidStateTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value is not None else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(value))


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Location"]:
        if not data:
            return None
        return cls(float(data["latitude"]), float(data["longitude"]))


@dataclass(frozen=True)
class WeatherSnapshot:
    temperature: float
    condition: str
    description: str
    icon: str
    wind_speed: Optional[float]
    humidity: Optional[float]
    updated_at: datetime

    def is_due(self, now: datetime, refresh_interval: timedelta) -> bool:
        return as_utc(now) - as_utc(self.updated_at) >= refresh_interval

    def to_dict(self) -> dict:
        return {
            "temperature": self.temperature,
            "condition": self.condition,
            "description": self.description,
            "icon": self.icon,
            "wind_speed": self.wind_speed,
            "humidity": self.humidity,
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["WeatherSnapshot"]:
        if not data:
            return None
        return cls(
            temperature=data["temperature"],
            condition=data["condition"],
            description=data.get("description", ""),
            icon=data.get("icon", ""),
            wind_speed=data.get("wind_speed"),
            humidity=data.get("humidity"),
            updated_at=_parse_dt(data["updated_at"]),
        )


@dataclass(frozen=True)
class Actor:
    """Pre-resolved identity of whoever invokes a core operation."""

    user_id: str
    role: UserRole


SYSTEM_ACTOR = Actor(user_id="system", role=UserRole.ADMIN)


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Trip:
    id: Optional[str] = None
    driver_id: str = ""
    route_id: str = ""
    admin_id: Optional[str] = None
    bus_id: Optional[str] = None
    status: TripStatus = TripStatus.NOT_STARTED
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    current_location: Optional[Location] = None
    location_updated_at: Optional[datetime] = None
    weather: Optional[WeatherSnapshot] = None
    boarding: dict[str, BoardingState] = field(default_factory=dict)
    cancel_reason: Optional[str] = None
    closed_by: Optional[str] = None
    version: int = 0
    created_at: Optional[datetime] = None

    def transition_to(self, new_status: TripStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        allowed = TRIP_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidStateTransition(
                f"Cannot transition from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    @property
    def is_active(self) -> bool:
        return self.status == TripStatus.IN_PROGRESS

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TRIP_STATUSES

    def boarding_state(self, student_id: str) -> BoardingState:
        return self.boarding.get(student_id, BoardingState.WAITING)

    @property
    def students_onboard(self) -> frozenset[str]:
        return frozenset(
            sid for sid, s in self.boarding.items() if s == BoardingState.ONBOARD
        )

    @property
    def students_exited(self) -> frozenset[str]:
        return frozenset(
            sid for sid, s in self.boarding.items() if s == BoardingState.EXITED
        )

    def to_document(self) -> dict:
        return {
            "id": self.id,
            "driver_id": self.driver_id,
            "route_id": self.route_id,
            "admin_id": self.admin_id,
            "bus_id": self.bus_id,
            "status": self.status.value,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "current_location": (
                self.current_location.to_dict() if self.current_location else None
            ),
            "location_updated_at": _iso(self.location_updated_at),
            "weather": self.weather.to_dict() if self.weather else None,
            "students_onboard": sorted(self.students_onboard),
            "students_exited": sorted(self.students_exited),
            "cancel_reason": self.cancel_reason,
            "closed_by": self.closed_by,
            "version": self.version,
        }


@dataclass
class Notification:
    id: Optional[str] = None
    recipient_user_id: str = ""
    title: str = ""
    message: str = ""
    type: NotificationType = NotificationType.TRIP_STARTED
    read: bool = False
    created_at: Optional[datetime] = None
    student_id: Optional[str] = None
    driver_id: Optional[str] = None
    trip_id: Optional[str] = None
    version: int = 0

    def to_document(self) -> dict:
        return {
            "id": self.id,
            "recipient_user_id": self.recipient_user_id,
            "title": self.title,
            "message": self.message,
            "type": self.type.value,
            "read": self.read,
            "created_at": _iso(self.created_at),
            "student_id": self.student_id,
            "driver_id": self.driver_id,
            "trip_id": self.trip_id,
            "version": self.version,
        }


@dataclass
class BehaviorReport:
    id: Optional[str] = None
    trip_id: str = ""
    student_id: str = ""
    driver_id: str = ""
    type: BehaviorType = BehaviorType.OTHER
    description: str = ""
    status: str = "pending"
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class BoardingResult:
    trip_id: str
    student_id: str
    state: BoardingState
    changed: bool


# ── Directory reference data (read-only) ──────────────────────────────


@dataclass(frozen=True)
class User:
    id: str
    display_name: str
    role: UserRole
    email: Optional[str] = None
    phone_number: Optional[str] = None
    admin_id: Optional[str] = None

    @classmethod
    def from_document(cls, doc: dict) -> "User":
        return cls(
            id=doc["id"],
            display_name=doc.get("display_name") or doc["id"],
            role=UserRole(doc["role"]),
            email=doc.get("email"),
            phone_number=doc.get("phone_number"),
            admin_id=doc.get("admin_id"),
        )


@dataclass(frozen=True)
class Student:
    id: str
    full_name: str
    parent_id: Optional[str] = None
    driver_id: Optional[str] = None
    home_location: Optional[Location] = None
    grade: Optional[str] = None
    school: Optional[str] = None
    admin_id: Optional[str] = None

    @classmethod
    def from_document(cls, doc: dict) -> "Student":
        return cls(
            id=doc["id"],
            full_name=doc.get("full_name") or doc["id"],
            parent_id=doc.get("parent_id"),
            driver_id=doc.get("driver_id"),
            home_location=Location.from_dict(doc.get("home_location")),
            grade=doc.get("grade"),
            school=doc.get("school"),
            admin_id=doc.get("admin_id"),
        )


@dataclass(frozen=True)
class RouteStop:
    student_id: str
    location: Location
    estimated_time: Optional[datetime] = None


@dataclass(frozen=True)
class Route:
    id: str
    name: str
    driver_id: str
    admin_id: Optional[str] = None
    bus_id: Optional[str] = None
    stops: tuple[RouteStop, ...] = ()

    @property
    def student_ids(self) -> list[str]:
        return [stop.student_id for stop in self.stops]

    @classmethod
    def from_document(cls, doc: dict) -> "Route":
        stops = tuple(
            RouteStop(
                student_id=s["student_id"],
                location=Location.from_dict(s["location"]),
                estimated_time=_parse_dt(s.get("estimated_time")),
            )
            for s in doc.get("stops", [])
        )
        return cls(
            id=doc["id"],
            name=doc.get("name", ""),
            driver_id=doc["driver_id"],
            admin_id=doc.get("admin_id"),
            bus_id=doc.get("bus_id"),
            stops=stops,
        )
