"""
Notification endpoints (recipient only)
=======================================

GET  /api/v1/notifications                    -- newest first, optional unread filter
POST /api/v1/notifications/{id}/read          -- mark one read (idempotent)
POST /api/v1/notifications/read-all           -- mark every unread one read
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from schoolbus.api.dependencies import get_actor, get_core
from schoolbus.api.middleware import limiter
from schoolbus.api.schemas import MarkAllReadResponse, NotificationResponse
from schoolbus.config import settings
from schoolbus.core import TrackingCore
from schoolbus.domain.entities import Actor, Notification

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _response(notification: Notification) -> NotificationResponse:
    return NotificationResponse(**notification.to_document())


@router.get("", response_model=list[NotificationResponse], summary="List my notifications")
@limiter.limit(settings.rate_limit)
async def list_notifications(
    request: Request,
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    core: TrackingCore = Depends(get_core),
):
    items = await core.notifications.list_for(actor, unread_only=unread_only, limit=limit)
    return [_response(n) for n in items]


@router.post(
    "/read-all", response_model=MarkAllReadResponse, summary="Mark all my notifications read"
)
@limiter.limit(settings.rate_limit)
async def mark_all_read(
    request: Request,
    actor: Actor = Depends(get_actor),
    core: TrackingCore = Depends(get_core),
):
    return MarkAllReadResponse(updated=await core.notifications.mark_all_read(actor))


@router.post(
    "/{notification_id}/read",
    response_model=NotificationResponse,
    summary="Mark a notification read",
)
@limiter.limit(settings.rate_limit)
async def mark_read(
    request: Request,
    notification_id: str,
    actor: Actor = Depends(get_actor),
    core: TrackingCore = Depends(get_core),
):
    return _response(await core.notifications.mark_read(actor, notification_id))
