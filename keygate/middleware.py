"""Request logging middleware for keygate.

Every request gets a fresh ULID request_id bound into the logging context
(see keygate.utils.logger.add_request_id), so all log lines emitted while the
request is handled can be correlated. Two log lines per request:

  [REQUEST]  method, path, client_ip, masked API key
  [RESPONSE] method, path, status_code, duration_ms

The API key is only ever logged masked. The request_id is echoed back in the
X-Request-ID response header.
"""

from __future__ import annotations

import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from keygate.keys.models import mask
from keygate.utils.logger import clear_request_id, get_logger, set_request_id
from keygate.utils.ulid import generate_ulid

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request/response pair with a per-request correlation id."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        request_id = generate_ulid()
        set_request_id(request_id)
        start = time.perf_counter()

        logger.info(
            "[REQUEST]",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
            key=mask(request.headers.get("X-API-Key")) or "none",
        )

        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start) * 1000
            logger.info(
                "[RESPONSE]",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 3),
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_request_id()
