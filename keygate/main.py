"""keygate FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app(): testable application factory
  - lifespan: @asynccontextmanager startup/shutdown sequence
  - /       route: service discovery root
  - app = create_app(): module-level instance for uvicorn

Startup sequence:
  1. load_config()            → app.state.config
  2. create_key_storage()     → app.state.key_storage
  3. KeyStore(storage)        → app.state.key_store
  4. ensure_seed_key()        → only when KEYGATE_SEED_KEY is set (idempotent)
  5. app.state.ready = True

Shutdown (reverse):
  app.state.ready = False → close key storage
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from keygate import __version__
from keygate.auth.limiter import limiter, rate_limit_exceeded_handler
from keygate.auth.router import router as keys_router
from keygate.config import Config, load_config
from keygate.health import router as health_router
from keygate.keys.store import KeyStore
from keygate.middleware import RequestLoggingMiddleware
from keygate.storage.factory import create_key_storage
from keygate.storage.protocol import KeyStorage
from keygate.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
# Configure logging at module import time (before any other imports that may log).
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


root_router = APIRouter(tags=["root"])


@root_router.get("/")
async def root() -> dict[str, str]:
    """Root endpoint: service identity / discovery."""
    return {
        "service": "keygate",
        "version": __version__,
        "health": "/health",
        "keys": "/api/keys",
    }


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown sequence.

    Any startup failure (bad config → SystemExit, unusable storage →
    StorageUnavailableError / RuntimeError, too-short seed key → ValueError)
    propagates and refuses startup before ready=True is ever set.
    """
    logger.info("keygate starting up...")

    # ── Step 1: Load configuration ────────────────────────────────────────────
    config: Config = load_config()
    app.state.config = config

    # ── Step 2: Key storage backend ───────────────────────────────────────────
    storage: KeyStorage = await create_key_storage(config)
    app.state.key_storage = storage

    # ── Step 3: Key store (shared by the auth filter and admin router) ───────
    key_store = KeyStore(
        storage,
        default_expires_in_days=config.keys.default_expires_in_days,
    )
    app.state.key_store = key_store

    # ── Step 4: Environment-seeded bootstrap key ──────────────────────────────
    if config.seed_key:
        added = await key_store.ensure_seed_key(
            config.seed_key,
            expires_in_days=config.keys.seed_expires_in_days,
        )
        logger.info("Seed key checked", added=added)

    if not config.setup_secret:
        logger.warning(
            "KEYGATE_SETUP_SECRET not set: POST /api/keys/create-master is disabled"
        )

    # ── Step 5: Mark as ready ─────────────────────────────────────────────────
    app.state.ready = True
    logger.info(
        "keygate ready",
        host=config.server.host,
        port=config.server.port,
        storage_backend=type(storage).__name__,
    )

    yield

    # ── Shutdown (reverse order) ──────────────────────────────────────────────
    logger.info("keygate shutting down...")
    app.state.ready = False

    await storage.close()

    logger.info("keygate shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the keygate FastAPI application.

    Call this function directly in unit tests to get an isolated app instance:
        app = create_app()

    Returns:
        Configured FastAPI application with lifespan, routers, and middleware.
    """
    # Swagger UI / ReDoc only with DEBUG=true: they expose the full API schema.
    _debug = os.getenv("DEBUG", "false").lower() == "true"

    application = FastAPI(
        title="keygate",
        description="API key issuance and validation gateway",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if _debug else None,
        redoc_url="/redoc" if _debug else None,
        openapi_url="/openapi.json" if _debug else None,
    )

    # /health returns 503 on any request that arrives before startup completes.
    application.state.ready = False

    # Rate limiter: attached to app state as required by slowapi.
    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    application.add_middleware(SlowAPIMiddleware)

    # In Starlette the LAST-added middleware is OUTERMOST: request logging wraps
    # everything, including rate-limit rejections.
    application.add_middleware(RequestLoggingMiddleware)

    application.include_router(root_router)
    application.include_router(health_router)
    application.include_router(keys_router, prefix="/api")

    @application.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500, content={"error": "Internal server error"}
        )

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────
#   uvicorn keygate.main:app --host 127.0.0.1 --port 3000

app = create_app()
