"""
SQLAlchemy ORM models.

Tables
------
Directory (reference data, read-only to the core):

* ``users``           -- admins, drivers, parents
* ``students``        -- riders with their parent / driver assignment
* ``routes``          -- one route per driver, owned by an admin
* ``route_stops``     -- ordered stops, one per student

Owned by the core:

* ``trips``           -- trip lifecycle, location and weather
* ``trip_students``   -- per-(trip, student) boarding state map
* ``notifications``   -- per-recipient notification records
* ``behavior_reports``

Indexes
-------
* Partial **unique** index on ``trips.driver_id`` where status is
  ``IN_PROGRESS``: at most one active trip per driver.
* **B-Tree** on the filter columns used by subscriptions
  (``driver_id``, ``admin_id``, ``status``, ``recipient_user_id``).

Every core-owned row carries ``version``; conditional writes compare or
bump it and subscribers use it to discard stale deliveries.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)

from .database import Base
from schoolbus.domain.enums import (
    BehaviorType,
    BoardingState,
    NotificationType,
    TripStatus,
    UserRole,
)

_ACTIVE_ONLY = text("status = 'IN_PROGRESS'")


# ── Directory ─────────────────────────────────────────────────────────


class UserModel(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    display_name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    role = Column(Enum(UserRole), nullable=False)
    phone_number = Column(String(32), nullable=True)
    admin_id = Column(String(64), nullable=True)
    approved = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class StudentModel(Base):
    __tablename__ = "students"

    id = Column(String(64), primary_key=True)
    full_name = Column(String(120), nullable=False)
    grade = Column(String(32), nullable=True)
    school = Column(String(120), nullable=True)
    parent_id = Column(String(64), nullable=True)
    driver_id = Column(String(64), nullable=True)
    home_lat = Column(Float, nullable=True)
    home_lng = Column(Float, nullable=True)
    admin_id = Column(String(64), nullable=True)

    __table_args__ = (
        Index("idx_students_parent", "parent_id"),
        Index("idx_students_driver", "driver_id"),
    )


class RouteModel(Base):
    __tablename__ = "routes"

    id = Column(String(64), primary_key=True)
    name = Column(String(120), nullable=False)
    driver_id = Column(String(64), nullable=False)
    bus_id = Column(String(64), nullable=True)
    admin_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_routes_driver", "driver_id"),)


class RouteStopModel(Base):
    __tablename__ = "route_stops"

    id = Column(Integer, primary_key=True, autoincrement=True)
    route_id = Column(String(64), ForeignKey("routes.id"), nullable=False)
    position = Column(Integer, nullable=False)
    student_id = Column(String(64), nullable=False)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    estimated_time = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_route_stops_route", "route_id", "position"),)


# ── Core-owned ────────────────────────────────────────────────────────


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(String(36), primary_key=True)
    driver_id = Column(String(64), nullable=False)
    route_id = Column(String(64), nullable=False)
    admin_id = Column(String(64), nullable=True)
    bus_id = Column(String(64), nullable=True)
    status = Column(Enum(TripStatus), default=TripStatus.IN_PROGRESS, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=True)
    end_time = Column(DateTime(timezone=True), nullable=True)

    # Plain floats; the core never runs spatial queries
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    location_updated_at = Column(DateTime(timezone=True), nullable=True)

    weather = Column(JSON, nullable=True)
    cancel_reason = Column(String(255), nullable=True)
    closed_by = Column(String(64), nullable=True)
    version = Column(Integer, default=1, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index(
            "uq_trips_active_driver",
            "driver_id",
            unique=True,
            postgresql_where=_ACTIVE_ONLY,
            sqlite_where=_ACTIVE_ONLY,
        ),
        Index("idx_trips_driver_status", "driver_id", "status"),
        Index("idx_trips_admin_status", "admin_id", "status"),
    )


class TripStudentModel(Base):
    __tablename__ = "trip_students"

    trip_id = Column(String(36), ForeignKey("trips.id"), primary_key=True)
    student_id = Column(String(64), primary_key=True)
    state = Column(Enum(BoardingState), nullable=False)
    boarded_at = Column(DateTime(timezone=True), nullable=True)
    exited_at = Column(DateTime(timezone=True), nullable=True)


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True)
    recipient_user_id = Column(String(64), nullable=False)
    title = Column(String(120), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(Enum(NotificationType), nullable=False)
    read = Column(Boolean, default=False, nullable=False)
    student_id = Column(String(64), nullable=True)
    driver_id = Column(String(64), nullable=True)
    trip_id = Column(String(36), nullable=True)
    version = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_notifications_recipient", "recipient_user_id", "created_at"),
        Index("idx_notifications_unread", "recipient_user_id", "read"),
    )


class BehaviorReportModel(Base):
    __tablename__ = "behavior_reports"

    id = Column(String(36), primary_key=True)
    trip_id = Column(String(36), ForeignKey("trips.id"), nullable=False)
    student_id = Column(String(64), nullable=False)
    driver_id = Column(String(64), nullable=False)
    type = Column(Enum(BehaviorType), nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(String(20), default="pending", nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_behavior_reports_status", "status"),
        Index("idx_behavior_reports_student", "student_id"),
    )
