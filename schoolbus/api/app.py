"""
FastAPI application factory.

* Registers routes for trips, boarding, notifications, the SSE stream,
  device positions and admin.
* Builds the ``TrackingCore`` in the lifespan; stops samplers and the
  change relay on shutdown.
* Maps domain errors to HTTP status codes.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from schoolbus.api.middleware import limiter
from schoolbus.api.routes import admin, notifications, positions, stream, trips
from schoolbus.core import TrackingCore
from schoolbus.domain.errors import (
    InfrastructureError,
    InvalidStateTransition,
    NoRouteAssigned,
    NotificationNotFound,
    PermissionDenied,
    StudentNotFound,
    StudentNotOnRoute,
    TrackingError,
    TripAlreadyActive,
    TripNotActive,
    TripNotFound,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Most specific first; the first match wins.
ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (TripNotFound, 404),
    (StudentNotFound, 404),
    (NotificationNotFound, 404),
    (PermissionDenied, 403),
    (TripAlreadyActive, 409),
    (TripNotActive, 409),
    (InvalidStateTransition, 409),
    (NoRouteAssigned, 422),
    (StudentNotOnRoute, 422),
    (InfrastructureError, 503),
    (TrackingError, 400),
]


def status_for(exc: Exception) -> int:
    for exc_type, status in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status
    return 500


async def _tracking_error_handler(request: Request, exc: TrackingError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def create_app(core: Optional[TrackingCore] = None) -> FastAPI:
    """Build the app.  Pass *core* to reuse a pre-built core (tests)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = core is None
        app.state.core = core if core is not None else await TrackingCore.from_settings()
        if owned:
            await app.state.core.start()
        yield
        if owned:
            await app.state.core.shutdown()

    app = FastAPI(
        title="School Bus Trip Tracking API",
        description=(
            "Tracks school-bus trips in real time: trip lifecycle, periodic "
            "location sampling, student boarding, weather on the route, and "
            "push notifications for drivers, parents and admins."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    if core is not None:
        app.state.core = core

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(TrackingError, _tracking_error_handler)

    # Routers
    app.include_router(trips.router, prefix="/api/v1")
    app.include_router(notifications.router, prefix="/api/v1")
    app.include_router(stream.router, prefix="/api/v1")
    app.include_router(positions.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
