"""Rate limiting (slowapi), keyed by caller identity when present."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from schoolbus.config import settings


def _identity_or_address(request: Request) -> str:
    return request.headers.get("x-user-id") or get_remote_address(request)


limiter = Limiter(key_func=_identity_or_address, default_limits=[settings.rate_limit])
