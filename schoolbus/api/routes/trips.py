"""
Trip endpoints
==============

POST /api/v1/trips                                   -- start a trip
GET  /api/v1/trips/{trip_id}                         -- current trip document
POST /api/v1/trips/{trip_id}/end                     -- complete a trip
POST /api/v1/trips/{trip_id}/cancel                  -- cancel a trip
POST /api/v1/trips/{trip_id}/approaching             -- notify parents on the route
POST /api/v1/trips/{trip_id}/students/{sid}/board    -- mark a student onboard
POST /api/v1/trips/{trip_id}/students/{sid}/exit     -- mark a student dropped off
POST /api/v1/trips/{trip_id}/behavior-reports        -- file a behavior report
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from schoolbus.api.authorization import (
    authorize_start,
    authorize_trip_operation,
    authorize_watch_trip,
    require_role,
)
from schoolbus.api.dependencies import get_actor, get_core
from schoolbus.api.middleware import limiter
from schoolbus.api.schemas import (
    ApproachingResponse,
    BehaviorReportRequest,
    BehaviorReportResponse,
    BoardingResponse,
    TripCancelRequest,
    TripResponse,
    TripStartRequest,
)
from schoolbus.config import settings
from schoolbus.core import TrackingCore
from schoolbus.domain.entities import Actor, BoardingResult, Trip
from schoolbus.domain.enums import UserRole

router = APIRouter(prefix="/trips", tags=["trips"])


def _trip_response(trip: Trip) -> TripResponse:
    return TripResponse(**trip.to_document())


def _boarding_response(result: BoardingResult) -> BoardingResponse:
    return BoardingResponse(
        trip_id=result.trip_id,
        student_id=result.student_id,
        state=result.state.value,
        changed=result.changed,
    )


@router.post(
    "",
    status_code=201,
    response_model=TripResponse,
    summary="Start a trip",
    responses={409: {"description": "Driver already has an active trip."}},
)
@limiter.limit(settings.rate_limit)
async def start_trip(
    request: Request,
    body: TripStartRequest,
    actor: Actor = Depends(get_actor),
    core: TrackingCore = Depends(get_core),
):
    driver_id = body.driver_id or actor.user_id
    await authorize_start(core, actor, driver_id)
    trip = await core.trips.start_trip(actor, driver_id, body.route_id)
    return _trip_response(trip)


@router.get("/{trip_id}", response_model=TripResponse, summary="Get a trip")
@limiter.limit(settings.rate_limit)
async def get_trip(
    request: Request,
    trip_id: str,
    actor: Actor = Depends(get_actor),
    core: TrackingCore = Depends(get_core),
):
    trip = await core.trips.get_trip(trip_id)
    await authorize_watch_trip(core, actor, trip)
    return _trip_response(trip)


@router.post("/{trip_id}/end", response_model=TripResponse, summary="Complete a trip")
@limiter.limit(settings.rate_limit)
async def end_trip(
    request: Request,
    trip_id: str,
    actor: Actor = Depends(get_actor),
    core: TrackingCore = Depends(get_core),
):
    authorize_trip_operation(actor, await core.trips.get_trip(trip_id))
    return _trip_response(await core.trips.end_trip(actor, trip_id))


@router.post("/{trip_id}/cancel", response_model=TripResponse, summary="Cancel a trip")
@limiter.limit(settings.rate_limit)
async def cancel_trip(
    request: Request,
    trip_id: str,
    body: TripCancelRequest,
    actor: Actor = Depends(get_actor),
    core: TrackingCore = Depends(get_core),
):
    authorize_trip_operation(actor, await core.trips.get_trip(trip_id))
    return _trip_response(await core.trips.cancel_trip(actor, trip_id, body.reason))


@router.post(
    "/{trip_id}/approaching",
    response_model=ApproachingResponse,
    summary="Notify every parent on the route that the bus is approaching",
)
@limiter.limit(settings.rate_limit)
async def announce_approaching(
    request: Request,
    trip_id: str,
    actor: Actor = Depends(get_actor),
    core: TrackingCore = Depends(get_core),
):
    authorize_trip_operation(actor, await core.trips.get_trip(trip_id))
    ids = await core.trips.announce_approaching(actor, trip_id)
    return ApproachingResponse(notification_ids=ids)


@router.post(
    "/{trip_id}/students/{student_id}/board",
    response_model=BoardingResponse,
    summary="Mark a student as onboard (idempotent)",
)
@limiter.limit(settings.rate_limit)
async def board_student(
    request: Request,
    trip_id: str,
    student_id: str,
    actor: Actor = Depends(get_actor),
    core: TrackingCore = Depends(get_core),
):
    authorize_trip_operation(actor, await core.trips.get_trip(trip_id))
    return _boarding_response(await core.boarding.board(actor, trip_id, student_id))


@router.post(
    "/{trip_id}/students/{student_id}/exit",
    response_model=BoardingResponse,
    summary="Mark a student as dropped off (idempotent)",
)
@limiter.limit(settings.rate_limit)
async def exit_student(
    request: Request,
    trip_id: str,
    student_id: str,
    actor: Actor = Depends(get_actor),
    core: TrackingCore = Depends(get_core),
):
    authorize_trip_operation(actor, await core.trips.get_trip(trip_id))
    return _boarding_response(await core.boarding.exit(actor, trip_id, student_id))


@router.post(
    "/{trip_id}/behavior-reports",
    status_code=201,
    response_model=BehaviorReportResponse,
    summary="Report student behavior",
)
@limiter.limit(settings.rate_limit)
async def report_behavior(
    request: Request,
    trip_id: str,
    body: BehaviorReportRequest,
    actor: Actor = Depends(get_actor),
    core: TrackingCore = Depends(get_core),
):
    require_role(actor, UserRole.DRIVER)
    authorize_trip_operation(actor, await core.trips.get_trip(trip_id))
    report = await core.behavior.report(
        actor, trip_id, body.student_id, body.type, body.description
    )
    return BehaviorReportResponse(
        id=report.id,
        trip_id=report.trip_id,
        student_id=report.student_id,
        driver_id=report.driver_id,
        type=report.type.value,
        description=report.description,
        status=report.status,
        created_at=report.created_at,
    )
