"""API key authentication dependency for keygate.

Provides ``require_api_key()``: a FastAPI Depends()-compatible async
dependency that extracts the caller's API key and validates it against the
KeyStore held in ``app.state.key_store``.

Header extraction precedence:
  1. X-API-Key: <secret>               (preferred)
  2. Authorization: Bearer <secret>    (fallback)

Outcomes:
  - no key present                     → HTTP 401 "API key is required"
  - key present, check() != VALID      → HTTP 403 "Invalid API key"
  - key storage unreadable             → HTTP 503
  - valid                              → returns the key (protected handler runs)

Auth control:
  - KEYGATE_AUTH_REQUIRED=true  → key validation enforced (default: production mode)
  - KEYGATE_AUTH_REQUIRED=false → auth bypassed, returns 'anonymous' (testing/dev only)
"""

from __future__ import annotations

import os
import re

from fastapi import HTTPException, Request

from keygate.keys.models import mask
from keygate.keys.store import KeyStore, ValidationOutcome
from keygate.storage.protocol import StorageUnavailableError
from keygate.utils.logger import get_logger

logger = get_logger(__name__)

_BEARER_RE = re.compile(r"^Bearer\s+(\S+)$", re.IGNORECASE)


def _is_auth_required() -> bool:
    """Read KEYGATE_AUTH_REQUIRED per request so tests can monkeypatch it."""
    return os.environ.get("KEYGATE_AUTH_REQUIRED", "true").lower() == "true"


def _extract_bearer(authorization: str) -> str | None:
    """Return the token of an 'Authorization: Bearer <token>' header, else None."""
    if not authorization:
        return None
    m = _BEARER_RE.match(authorization.strip())
    return m.group(1) if m else None


def extract_api_key(request: Request) -> str | None:
    """Pull the caller's API key from X-API-Key or a Bearer Authorization header."""
    return request.headers.get("X-API-Key") or _extract_bearer(
        request.headers.get("Authorization", "")
    )


def get_key_store(request: Request) -> KeyStore:
    """FastAPI dependency: the KeyStore built by the lifespan.

    Raises:
        HTTPException(503): The store is not wired yet (startup in progress).
    """
    store = getattr(request.app.state, "key_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Key store is not ready")
    return store


async def require_api_key(request: Request) -> str:
    """FastAPI dependency: reject the request unless it carries a valid API key.

    Runs before any protected handler logic; FastAPI short-circuits the
    handler when this raises.

    Returns:
        The validated API key, or 'anonymous' when KEYGATE_AUTH_REQUIRED=false.

    Raises:
        HTTPException(401): No API key present.
        HTTPException(403): API key unknown, revoked, or expired.
        HTTPException(503): Key storage unavailable.
    """
    key = extract_api_key(request)

    if not _is_auth_required():
        return "anonymous"

    if not key:
        logger.warning(
            "Authentication failed: no API key",
            path=str(request.url.path),
            method=request.method,
        )
        raise HTTPException(status_code=401, detail="API key is required")

    store = get_key_store(request)
    try:
        outcome = await store.check(key)
    except StorageUnavailableError as exc:
        logger.error(
            "Authentication unavailable: key storage error",
            path=str(request.url.path),
            error=exc.message,
        )
        raise HTTPException(status_code=503, detail="Key storage unavailable") from exc

    if outcome is not ValidationOutcome.VALID:
        logger.warning(
            "Authentication failed: invalid key",
            path=str(request.url.path),
            method=request.method,
            key=mask(key),
            reason=outcome.value,
        )
        raise HTTPException(status_code=403, detail="Invalid API key")

    return key
