"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from schoolbus.domain.enums import BehaviorType


# ── Requests ──────────────────────────────────────────────────────────


class TripStartRequest(BaseModel):
    driver_id: Optional[str] = Field(
        None, description="Defaults to the calling driver."
    )
    route_id: Optional[str] = Field(
        None, description="Defaults to the driver's assigned route."
    )


class TripCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class BehaviorReportRequest(BaseModel):
    student_id: str
    type: BehaviorType
    description: str = Field("", max_length=2000)


class PositionReport(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    recorded_at: Optional[datetime] = None


# ── Responses ─────────────────────────────────────────────────────────


class LocationResponse(BaseModel):
    latitude: float
    longitude: float


class WeatherResponse(BaseModel):
    temperature: float
    condition: str
    description: str = ""
    icon: str = ""
    wind_speed: Optional[float] = None
    humidity: Optional[float] = None
    updated_at: datetime


class TripResponse(BaseModel):
    id: str
    driver_id: str
    route_id: str
    admin_id: Optional[str] = None
    bus_id: Optional[str] = None
    status: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    current_location: Optional[LocationResponse] = None
    location_updated_at: Optional[datetime] = None
    weather: Optional[WeatherResponse] = None
    students_onboard: list[str] = []
    students_exited: list[str] = []
    cancel_reason: Optional[str] = None
    closed_by: Optional[str] = None
    version: int


class BoardingResponse(BaseModel):
    trip_id: str
    student_id: str
    state: str
    changed: bool


class BehaviorReportResponse(BaseModel):
    id: str
    trip_id: str
    student_id: str
    driver_id: str
    type: str
    description: str
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationResponse(BaseModel):
    id: str
    recipient_user_id: str
    title: str
    message: str
    type: str
    read: bool
    created_at: datetime
    student_id: Optional[str] = None
    driver_id: Optional[str] = None
    trip_id: Optional[str] = None
    version: int


class MarkAllReadResponse(BaseModel):
    updated: int


class ApproachingResponse(BaseModel):
    notification_ids: list[str]


class HealthResponse(BaseModel):
    status: str = "ok"
    active_samplers: int = 0
    subscribers: int = 0


class ErrorResponse(BaseModel):
    detail: str
