"""
Server-Sent Events stream
=========================

GET /api/v1/stream?trip_id=...            -- one trip
GET /api/v1/stream?driver_id=...          -- the driver's active trips
GET /api/v1/stream?admin_id=...           -- the admin's active trips
GET /api/v1/stream?recipient_user_id=...  -- a user's notifications

Exactly one filter is accepted.  The first event is ``snapshot`` (the
initial documents); every following ``change`` event carries one
``ChangeEvent``.  A comment line is sent while idle so dead connections
are noticed.
"""

from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from schoolbus.api.authorization import authorize_subscription
from schoolbus.api.dependencies import get_actor, get_core
from schoolbus.core import TrackingCore
from schoolbus.domain.entities import Actor
from schoolbus.realtime.hub import ChangeEvent, Subscription, SubscriptionFilter

router = APIRouter(tags=["stream"])

KEEPALIVE_SECONDS = 15.0


def _sse(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


def _change_payload(change: ChangeEvent) -> str:
    return json.dumps(
        {
            "collection": change.collection,
            "id": change.doc_id,
            "kind": change.kind.value,
            "version": change.version,
            "document": change.document,
        }
    )


async def event_stream(
    sub: Subscription,
    request: Optional[Request] = None,
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    try:
        yield _sse("snapshot", json.dumps(sub.snapshot))
        while True:
            try:
                change = await sub.next(timeout=keepalive)
            except asyncio.TimeoutError:
                if request is not None and await request.is_disconnected():
                    break
                yield ": keepalive\n\n"
                continue
            except StopAsyncIteration:
                break
            yield _sse("change", _change_payload(change))
    finally:
        sub.close()


def _parse_filter(
    trip_id: Optional[str],
    driver_id: Optional[str],
    admin_id: Optional[str],
    recipient_user_id: Optional[str],
) -> SubscriptionFilter:
    given = [
        (SubscriptionFilter.by_trip_id, trip_id),
        (SubscriptionFilter.by_driver_id, driver_id),
        (SubscriptionFilter.by_admin_id, admin_id),
        (SubscriptionFilter.by_recipient_user_id, recipient_user_id),
    ]
    chosen = [(factory, value) for factory, value in given if value]
    if len(chosen) != 1:
        raise HTTPException(status_code=400, detail="Exactly one filter is required")
    factory, value = chosen[0]
    return factory(value)


@router.get("/stream", summary="Subscribe to trip or notification changes (SSE)")
async def stream(
    request: Request,
    trip_id: Optional[str] = None,
    driver_id: Optional[str] = None,
    admin_id: Optional[str] = None,
    recipient_user_id: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    core: TrackingCore = Depends(get_core),
):
    filter = _parse_filter(trip_id, driver_id, admin_id, recipient_user_id)
    await authorize_subscription(core, actor, filter)
    sub = await core.subscriptions.subscribe(filter)
    return StreamingResponse(
        event_stream(sub, request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
