"""Shared rate limiter for keygate: slowapi.

Requests are bucketed by the caller's API key when one is sent, otherwise by
client IP, so one noisy key cannot starve other callers behind the same NAT.

  - DEFAULT_RATE_LIMIT applies to every route (SlowAPIMiddleware in main.py)
  - KEY_MANAGEMENT_RATE_LIMIT is stacked on the /api/keys endpoints

The Limiter instance is created here and shared between:
  - keygate/auth/router.py  (route decorators)
  - keygate/main.py         (app.state.limiter + SlowAPIMiddleware registration)
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from keygate.keys.models import mask
from keygate.utils.logger import get_logger

logger = get_logger(__name__)

# 100 requests per 15-minute window per caller
DEFAULT_RATE_LIMIT = "100/15minutes"
DEFAULT_RATE_LIMIT_WINDOW_MINUTES = 15

KEY_MANAGEMENT_RATE_LIMIT = "20/minute"


def rate_limit_key(request: Request) -> str:
    """Bucket by X-API-Key header if present, else by remote address."""
    return request.headers.get("X-API-Key") or get_remote_address(request)


limiter = Limiter(key_func=rate_limit_key, default_limits=[DEFAULT_RATE_LIMIT])


async def rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceeded
) -> JSONResponse:
    """Render HTTP 429 with a retry hint and log the offending caller."""
    logger.warning(
        "Rate limit exceeded",
        client_ip=get_remote_address(request),
        key=mask(request.headers.get("X-API-Key")),
        limit=str(exc.detail),
        path=request.url.path,
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests, please try again later.",
            "retry_after_minutes": DEFAULT_RATE_LIMIT_WINDOW_MINUTES,
        },
    )
