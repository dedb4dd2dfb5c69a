"""
Device position endpoint
========================

POST /api/v1/positions -- a driver's device reports its latest fix
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from schoolbus.api.authorization import require_role
from schoolbus.api.dependencies import get_actor, get_core
from schoolbus.api.middleware import limiter
from schoolbus.api.schemas import PositionReport
from schoolbus.config import settings
from schoolbus.core import TrackingCore
from schoolbus.domain.entities import Actor, Location
from schoolbus.domain.enums import UserRole

router = APIRouter(prefix="/positions", tags=["positions"])


@router.post("", status_code=204, summary="Report the driver's current position")
@limiter.limit(settings.rate_limit)
async def report_position(
    request: Request,
    body: PositionReport,
    actor: Actor = Depends(get_actor),
    core: TrackingCore = Depends(get_core),
):
    require_role(actor, UserRole.DRIVER)
    record = getattr(core.positions, "record_position", None)
    if record is None:
        raise HTTPException(status_code=501, detail="Position source is read-only")
    await record(actor.user_id, Location(body.latitude, body.longitude), body.recorded_at)
