"""
Domain events consumed by the notification dispatcher.

Events carry everything the dispatcher needs to address and word a
notification, so it never has to reach back into the directory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .enums import BehaviorType


@dataclass(frozen=True)
class TripStarted:
    trip_id: str
    driver_id: str
    driver_name: str
    admin_id: Optional[str]


@dataclass(frozen=True)
class TripEnded:
    trip_id: str
    driver_id: str
    driver_name: str
    admin_id: Optional[str]


@dataclass(frozen=True)
class TripCancelled:
    trip_id: str
    driver_id: str
    driver_name: str
    admin_id: Optional[str]
    reason: str


@dataclass(frozen=True)
class StudentOnboard:
    trip_id: str
    driver_id: str
    student_id: str
    student_name: str
    parent_id: Optional[str]


@dataclass(frozen=True)
class StudentDropoff:
    trip_id: str
    driver_id: str
    student_id: str
    student_name: str
    parent_id: Optional[str]


@dataclass(frozen=True)
class BehaviorReported:
    trip_id: str
    driver_id: str
    driver_name: str
    admin_id: Optional[str]
    student_id: str
    student_name: str
    parent_id: Optional[str]
    behavior_type: BehaviorType


@dataclass(frozen=True)
class ApproachingStudent:
    student_id: str
    student_name: str
    parent_id: Optional[str]


@dataclass(frozen=True)
class BusApproaching:
    trip_id: str
    driver_id: str
    route_id: str
    students: tuple[ApproachingStudent, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class LocationStale:
    trip_id: str
    driver_id: str
    admin_id: Optional[str]
    consecutive_failures: int


@dataclass(frozen=True)
class WeatherAlert:
    trip_id: str
    driver_id: str
    admin_id: Optional[str]
    condition: str
    description: str
