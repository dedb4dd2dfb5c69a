"""Initial schema: directory tables, trips, boarding state, notifications.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

_ACTIVE_ONLY = sa.text("status = 'IN_PROGRESS'")


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("display_name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=True),
        sa.Column(
            "role",
            sa.Enum("ADMIN", "DRIVER", "PARENT", "STUDENT", name="userrole"),
            nullable=False,
        ),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column("admin_id", sa.String(64), nullable=True),
        sa.Column("approved", sa.Boolean, default=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── students ──────────────────────────────────────────────────────
    op.create_table(
        "students",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("full_name", sa.String(120), nullable=False),
        sa.Column("grade", sa.String(32), nullable=True),
        sa.Column("school", sa.String(120), nullable=True),
        sa.Column("parent_id", sa.String(64), nullable=True),
        sa.Column("driver_id", sa.String(64), nullable=True),
        sa.Column("home_lat", sa.Float, nullable=True),
        sa.Column("home_lng", sa.Float, nullable=True),
        sa.Column("admin_id", sa.String(64), nullable=True),
    )
    op.create_index("idx_students_parent", "students", ["parent_id"])
    op.create_index("idx_students_driver", "students", ["driver_id"])

    # ── routes / route_stops ──────────────────────────────────────────
    op.create_table(
        "routes",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("driver_id", sa.String(64), nullable=False),
        sa.Column("bus_id", sa.String(64), nullable=True),
        sa.Column("admin_id", sa.String(64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_routes_driver", "routes", ["driver_id"])

    op.create_table(
        "route_stops",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("route_id", sa.String(64), sa.ForeignKey("routes.id"), nullable=False),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("lat", sa.Float, nullable=False),
        sa.Column("lng", sa.Float, nullable=False),
        sa.Column("estimated_time", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_route_stops_route", "route_stops", ["route_id", "position"])

    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("driver_id", sa.String(64), nullable=False),
        sa.Column("route_id", sa.String(64), nullable=False),
        sa.Column("admin_id", sa.String(64), nullable=True),
        sa.Column("bus_id", sa.String(64), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "NOT_STARTED",
                "IN_PROGRESS",
                "COMPLETED",
                "CANCELLED",
                name="tripstatus",
            ),
            default="IN_PROGRESS",
            nullable=False,
        ),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("weather", sa.JSON, nullable=True),
        sa.Column("cancel_reason", sa.String(255), nullable=True),
        sa.Column("closed_by", sa.String(64), nullable=True),
        sa.Column("version", sa.Integer, default=1, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "uq_trips_active_driver",
        "trips",
        ["driver_id"],
        unique=True,
        postgresql_where=_ACTIVE_ONLY,
    )
    op.create_index("idx_trips_driver_status", "trips", ["driver_id", "status"])
    op.create_index("idx_trips_admin_status", "trips", ["admin_id", "status"])

    # ── trip_students ─────────────────────────────────────────────────
    op.create_table(
        "trip_students",
        sa.Column("trip_id", sa.String(36), sa.ForeignKey("trips.id"), primary_key=True),
        sa.Column("student_id", sa.String(64), primary_key=True),
        sa.Column(
            "state",
            sa.Enum("WAITING", "ONBOARD", "EXITED", name="boardingstate"),
            nullable=False,
        ),
        sa.Column("boarded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("exited_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── notifications ─────────────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("recipient_user_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "TRIP_STARTED",
                "TRIP_ENDED",
                "BUS_APPROACHING",
                "STUDENT_ONBOARD",
                "STUDENT_DROPOFF",
                "STUDENT_BEHAVIOR",
                "EMERGENCY",
                "WEATHER_ALERT",
                name="notificationtype",
            ),
            nullable=False,
        ),
        sa.Column("read", sa.Boolean, default=False, nullable=False),
        sa.Column("student_id", sa.String(64), nullable=True),
        sa.Column("driver_id", sa.String(64), nullable=True),
        sa.Column("trip_id", sa.String(36), nullable=True),
        sa.Column("version", sa.Integer, default=1, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_notifications_recipient", "notifications", ["recipient_user_id", "created_at"]
    )
    op.create_index(
        "idx_notifications_unread", "notifications", ["recipient_user_id", "read"]
    )

    # ── behavior_reports ──────────────────────────────────────────────
    op.create_table(
        "behavior_reports",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("trip_id", sa.String(36), sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("driver_id", sa.String(64), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "MISCONDUCT",
                "BULLYING",
                "DISRUPTIVE",
                "POSITIVE",
                "OTHER",
                name="behaviortype",
            ),
            nullable=False,
        ),
        sa.Column("description", sa.Text, nullable=False, default=""),
        sa.Column("status", sa.String(20), default="pending", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_behavior_reports_status", "behavior_reports", ["status"])
    op.create_index("idx_behavior_reports_student", "behavior_reports", ["student_id"])


def downgrade() -> None:
    op.drop_table("behavior_reports")
    op.drop_table("notifications")
    op.drop_table("trip_students")
    op.drop_table("trips")
    op.drop_table("route_stops")
    op.drop_table("routes")
    op.drop_table("students")
    op.drop_table("users")
    for enum_name in (
        "behaviortype",
        "notificationtype",
        "boardingstate",
        "tripstatus",
        "userrole",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
