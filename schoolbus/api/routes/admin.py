"""
Admin / observability endpoints
===============================

GET /api/v1/admin/health -- liveness plus sampler and subscriber counts
"""

from fastapi import APIRouter, Depends

from schoolbus.api.dependencies import get_core
from schoolbus.api.schemas import HealthResponse
from schoolbus.core import TrackingCore

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(core: TrackingCore = Depends(get_core)):
    return HealthResponse(**core.health())
