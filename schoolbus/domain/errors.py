"""
Error taxonomy.

* ``ValidationError`` subclasses are surfaced to the caller and never
  retried automatically.
* ``InfrastructureError`` subclasses are transient; background paths
  (sampler, weather) log and degrade, request paths surface them.
"""


class TrackingError(Exception):
    """Base class for every error raised by the tracking core."""


# ── Validation ────────────────────────────────────────────────────────


class ValidationError(TrackingError):
    pass


class InvalidStateTransition(ValidationError):
    """Raised when a trip status change violates the state machine."""


class NoRouteAssigned(ValidationError):
    def __init__(self, driver_id: str):
        super().__init__(f"Driver {driver_id} has no route assigned")
        self.driver_id = driver_id


class TripAlreadyActive(ValidationError):
    def __init__(self, driver_id: str, trip_id: str | None = None):
        detail = f" (trip {trip_id})" if trip_id else ""
        super().__init__(f"Driver {driver_id} already has an active trip{detail}")
        self.driver_id = driver_id
        self.trip_id = trip_id


class TripNotFound(ValidationError):
    def __init__(self, trip_id: str):
        super().__init__(f"Trip {trip_id} not found")
        self.trip_id = trip_id


class TripNotActive(ValidationError):
    def __init__(self, trip_id: str, status=None):
        detail = f" (status {status.value})" if status is not None else ""
        super().__init__(f"Trip {trip_id} is not in progress{detail}")
        self.trip_id = trip_id
        self.status = status


class StudentNotFound(ValidationError):
    def __init__(self, student_id: str):
        super().__init__(f"Student {student_id} not found")
        self.student_id = student_id


class StudentNotOnRoute(ValidationError):
    def __init__(self, student_id: str, route_id: str):
        super().__init__(f"Student {student_id} is not on route {route_id}")
        self.student_id = student_id
        self.route_id = route_id


class NotificationNotFound(ValidationError):
    def __init__(self, notification_id: str):
        super().__init__(f"Notification {notification_id} not found")
        self.notification_id = notification_id


class PermissionDenied(ValidationError):
    pass


# ── Infrastructure ────────────────────────────────────────────────────


class InfrastructureError(TrackingError):
    pass


class StoreUnavailable(InfrastructureError):
    """The store could not be reached; distinct from a missing document."""


class PositionUnavailable(InfrastructureError):
    pass


class WeatherUnavailable(InfrastructureError):
    pass
