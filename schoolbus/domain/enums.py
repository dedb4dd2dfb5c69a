"""Domain enumerations and state-transition rules."""

import enum


class TripStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# State machine: maps current status -> set of valid next statuses
TRIP_TRANSITIONS: dict[TripStatus, set[TripStatus]] = {
    TripStatus.NOT_STARTED: {TripStatus.IN_PROGRESS},
    TripStatus.IN_PROGRESS: {TripStatus.COMPLETED, TripStatus.CANCELLED},
    TripStatus.COMPLETED: set(),
    TripStatus.CANCELLED: set(),
}

TERMINAL_TRIP_STATUSES = frozenset({TripStatus.COMPLETED, TripStatus.CANCELLED})


class BoardingState(str, enum.Enum):
    WAITING = "WAITING"
    ONBOARD = "ONBOARD"
    EXITED = "EXITED"


# Strictly forward; anything not listed is a no-op
BOARDING_TRANSITIONS: dict[BoardingState, set[BoardingState]] = {
    BoardingState.WAITING: {BoardingState.ONBOARD},
    BoardingState.ONBOARD: {BoardingState.EXITED},
    BoardingState.EXITED: set(),
}


class NotificationType(str, enum.Enum):
    TRIP_STARTED = "TRIP_STARTED"
    TRIP_ENDED = "TRIP_ENDED"
    BUS_APPROACHING = "BUS_APPROACHING"
    STUDENT_ONBOARD = "STUDENT_ONBOARD"
    STUDENT_DROPOFF = "STUDENT_DROPOFF"
    STUDENT_BEHAVIOR = "STUDENT_BEHAVIOR"
    EMERGENCY = "EMERGENCY"
    WEATHER_ALERT = "WEATHER_ALERT"


class BehaviorType(str, enum.Enum):
    MISCONDUCT = "MISCONDUCT"
    BULLYING = "BULLYING"
    DISRUPTIVE = "DISRUPTIVE"
    POSITIVE = "POSITIVE"
    OTHER = "OTHER"


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    DRIVER = "DRIVER"
    PARENT = "PARENT"
    STUDENT = "STUDENT"


class ChangeKind(str, enum.Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    REMOVED = "REMOVED"
