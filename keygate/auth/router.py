"""Administrative API endpoints for key management.

Provides (mounted under /api in main.py):
  POST   /keys/create-master    : mint a master key, gated by the setup secret
  POST   /keys/generate         : issue a new key (plaintext shown once)
  GET    /keys                  : list keys (masked); ?includeInactive=true
  GET    /keys/expiring         : active keys expiring within ?days=7 (masked)
  DELETE /keys/{key_id}         : revoke a key
  POST   /keys/rotate/{key_id}  : rotate a key (new plaintext shown once)

All endpoints except create-master require Depends(require_api_key).
Plaintext secrets are returned ONLY by create-master, generate and rotate.
Key storage failures surface as HTTP 503, never as 404.
"""

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from keygate.auth.limiter import KEY_MANAGEMENT_RATE_LIMIT, limiter
from keygate.auth.middleware import get_key_store, require_api_key
from keygate.constants import (
    DEFAULT_EXPIRING_WINDOW_DAYS,
    MASTER_EXPIRES_IN_DAYS,
    MASTER_KEY_NAME,
)
from keygate.keys.store import KeyStore
from keygate.storage.protocol import StorageUnavailableError
from keygate.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["api-keys"])


# ─── Request Models ───────────────────────────────────────────────────────────


class CreateMasterRequest(BaseModel):
    """Request body for POST /api/keys/create-master."""

    model_config = ConfigDict(populate_by_name=True)

    setup_secret: Optional[str] = Field(default=None, alias="setupSecret")


class GenerateKeyRequest(BaseModel):
    """Request body for POST /api/keys/generate."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    expires_in_days: Optional[int] = Field(default=None, alias="expiresInDays", gt=0)


class RotateKeyRequest(BaseModel):
    """Request body for POST /api/keys/rotate/{key_id} (optional)."""

    model_config = ConfigDict(populate_by_name=True)

    expires_in_days: Optional[int] = Field(default=None, alias="expiresInDays", gt=0)


def _storage_error(operation: str, exc: StorageUnavailableError) -> HTTPException:
    logger.error("Key storage unavailable", operation=operation, error=exc.message)
    return HTTPException(status_code=503, detail="Key storage unavailable")


# ─── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/keys/create-master")
@limiter.limit(KEY_MANAGEMENT_RATE_LIMIT)
async def create_master_key(
    body: CreateMasterRequest,
    request: Request,
    store: KeyStore = Depends(get_key_store),
) -> dict:
    """Mint a master API key. The only unauthenticated key endpoint.

    The caller proves it is the operator by presenting the setup secret
    (KEYGATE_SETUP_SECRET), which is distinct from any issued key. With no
    setup secret configured this endpoint always refuses.

    Raises:
        HTTP 403: Setup secret missing, wrong, or not configured.
    """
    config = getattr(request.app.state, "config", None)
    expected = getattr(config, "setup_secret", None)
    provided = body.setup_secret

    if not expected or not provided or not secrets.compare_digest(
        provided.encode(), expected.encode()
    ):
        logger.warning("Master key creation refused: invalid setup secret")
        raise HTTPException(status_code=403, detail="Invalid setup secret")

    expires_in_days = (
        config.keys.master_expires_in_days
        if getattr(config, "keys", None) is not None
        else MASTER_EXPIRES_IN_DAYS
    )
    try:
        record = await store.generate(MASTER_KEY_NAME, expires_in_days)
    except StorageUnavailableError as exc:
        raise _storage_error("create-master", exc) from exc

    logger.info("Master API key created", key_id=record.id)
    return {
        "message": "Master API key created. Store this key: it will not be shown again.",
        "key": record.to_dict(),
    }


@router.post("/keys/generate")
@limiter.limit(KEY_MANAGEMENT_RATE_LIMIT)
async def generate_key(
    body: GenerateKeyRequest,
    request: Request,
    _caller: str = Depends(require_api_key),
    store: KeyStore = Depends(get_key_store),
) -> dict:
    """Issue a new API key. Returns the plaintext key ONCE.

    Raises:
        HTTP 400: ``name`` missing or blank.
    """
    name = (body.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Key name is required")

    try:
        record = await store.generate(name, body.expires_in_days)
    except StorageUnavailableError as exc:
        raise _storage_error("generate", exc) from exc

    return {
        "message": "API key generated. Store this key: it will not be shown again.",
        "key": record.to_dict(),
    }


@router.get("/keys")
@limiter.limit(KEY_MANAGEMENT_RATE_LIMIT)
async def list_keys(
    request: Request,
    include_inactive: bool = Query(False, alias="includeInactive"),
    _caller: str = Depends(require_api_key),
    store: KeyStore = Depends(get_key_store),
) -> dict:
    """List API keys with secrets masked to their 8-character prefix."""
    try:
        views = await store.list(include_inactive=include_inactive)
    except StorageUnavailableError as exc:
        raise _storage_error("list", exc) from exc

    return {"count": len(views), "keys": [v.to_dict() for v in views]}


@router.get("/keys/expiring")
@limiter.limit(KEY_MANAGEMENT_RATE_LIMIT)
async def expiring_keys(
    request: Request,
    days: int = Query(DEFAULT_EXPIRING_WINDOW_DAYS, ge=0),
    _caller: str = Depends(require_api_key),
    store: KeyStore = Depends(get_key_store),
) -> dict:
    """Active keys expiring within ``days`` (masked)."""
    try:
        views = await store.expiring_within(days)
    except StorageUnavailableError as exc:
        raise _storage_error("expiring", exc) from exc

    return {"count": len(views), "keys": [v.to_dict() for v in views]}


@router.delete("/keys/{key_id}")
@limiter.limit(KEY_MANAGEMENT_RATE_LIMIT)
async def revoke_key(
    key_id: str,
    request: Request,
    _caller: str = Depends(require_api_key),
    store: KeyStore = Depends(get_key_store),
) -> dict:
    """Revoke an API key by id. Revoking an already revoked key succeeds.

    Raises:
        HTTP 404: No key with this id.
    """
    try:
        revoked = await store.revoke(key_id)
    except StorageUnavailableError as exc:
        raise _storage_error("revoke", exc) from exc

    if not revoked:
        raise HTTPException(status_code=404, detail=f"API key '{key_id}' not found")

    return {"message": "API key revoked successfully.", "revoked_id": key_id}


@router.post("/keys/rotate/{key_id}")
@limiter.limit(KEY_MANAGEMENT_RATE_LIMIT)
async def rotate_key(
    key_id: str,
    request: Request,
    body: Optional[RotateKeyRequest] = None,
    _caller: str = Depends(require_api_key),
    store: KeyStore = Depends(get_key_store),
) -> dict:
    """Rotate an API key. Returns the replacement plaintext key ONCE.

    The old key stops validating immediately.

    Raises:
        HTTP 404: No key with this id.
    """
    expires_in_days = body.expires_in_days if body is not None else None
    try:
        new_record = await store.rotate(key_id, expires_in_days)
    except StorageUnavailableError as exc:
        raise _storage_error("rotate", exc) from exc

    if new_record is None:
        raise HTTPException(status_code=404, detail=f"API key '{key_id}' not found")

    return {
        "message": "API key rotated. Store this key: it will not be shown again.",
        "key": new_record.to_dict(),
    }
