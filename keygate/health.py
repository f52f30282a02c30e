"""Health endpoint for keygate.

  GET /health: 503 before ``app.state.ready`` is set by the lifespan,
                503 when the key storage health check fails,
                200 otherwise.

Polled by container/cloud health probes.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Primary health check endpoint.

    Response body (200):
        {"status": "ok", "storage": "healthy", "storage_backend": "JsonFileStorage"}

    Response body (503):
        {"error": {"status": "starting" | "degraded", ...}}
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "message": "keygate is starting up.",
            },
        )

    storage = request.app.state.key_storage
    storage_ok = await storage.health_check()
    body = {
        "status": "ok" if storage_ok else "degraded",
        "storage": "healthy" if storage_ok else "unavailable",
        "storage_backend": type(storage).__name__,
    }
    if not storage_ok:
        raise HTTPException(status_code=503, detail=body)
    return body
