"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Header, HTTPException, Request

from schoolbus.core import TrackingCore
from schoolbus.domain.entities import Actor
from schoolbus.domain.enums import UserRole


def get_core(request: Request) -> TrackingCore:
    """The per-process ``TrackingCore`` built in the app lifespan."""
    return request.app.state.core


async def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """Identity resolved upstream and forwarded as headers."""
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="Missing identity headers")
    try:
        role = UserRole(x_user_role.upper())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role: {x_user_role}")
    return Actor(user_id=x_user_id, role=role)
