"""Unit tests for keygate/main.py: application factory + lifespan lifecycle.

Covers:
  - create_app() returns independent FastAPI instances with ready=False
  - /health: 503 before ready, 200 after startup, 503 when storage is unhealthy
  - Lifespan wires config, key storage and key store onto app.state
  - KEYGATE_SEED_KEY is registered once and validates
  - Startup refuses to complete on bad config / short seed key
  - Request logging middleware echoes X-Request-ID
"""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from starlette.testclient import TestClient

from keygate import __version__
from keygate.config import Config
from keygate.keys.models import parse_timestamp
from keygate.keys.store import KeyStore
from keygate.main import create_app, lifespan
from keygate.storage.json_backend import JsonFileStorage
from keygate.storage.protocol import InMemoryStorage

# ─── Helpers ──────────────────────────────────────────────────────────────────


def _stub_config(**overrides: Any) -> Config:
    """Return a Config backed by in-memory storage (no file I/O)."""
    config = Config.defaults()
    config.storage.backend = "memory"
    for name, value in overrides.items():
        setattr(config, name, value)
    return config


def _patch_load_config(monkeypatch: pytest.MonkeyPatch, config: Config) -> None:
    monkeypatch.setattr("keygate.main.load_config", lambda: config)


# ─── Factory ──────────────────────────────────────────────────────────────────


class TestCreateAppFactory:

    def test_returns_fastapi_instance(self) -> None:
        assert isinstance(create_app(), FastAPI)

    def test_independent_instances(self) -> None:
        assert create_app() is not create_app()

    def test_ready_false_before_lifespan(self) -> None:
        assert create_app().state.ready is False

    def test_docs_disabled_by_default(self) -> None:
        assert create_app().docs_url is None


# ─── /health before startup ───────────────────────────────────────────────────


class TestHealthBeforeReady:

    @pytest.mark.asyncio
    async def test_health_503_before_ready(self) -> None:
        application = create_app()
        transport = ASGITransport(app=application)  # type: ignore[arg-type]
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["error"]["status"] == "starting"

    @pytest.mark.asyncio
    async def test_key_endpoints_503_before_ready(self) -> None:
        application = create_app()
        transport = ASGITransport(app=application)  # type: ignore[arg-type]
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/keys")

        assert response.status_code == 503
        assert response.json() == {"error": "Key store is not ready"}


# ─── Lifespan ─────────────────────────────────────────────────────────────────


class TestLifespan:

    def test_startup_wires_state(self, monkeypatch: pytest.MonkeyPatch) -> None:
        config = _stub_config()
        _patch_load_config(monkeypatch, config)
        application = create_app()

        with TestClient(application) as client:
            assert application.state.ready is True
            assert application.state.config is config
            assert isinstance(application.state.key_storage, InMemoryStorage)
            assert isinstance(application.state.key_store, KeyStore)

            response = client.get("/health")
            assert response.status_code == 200
            assert response.json() == {
                "status": "ok",
                "storage": "healthy",
                "storage_backend": "InMemoryStorage",
            }

        assert application.state.ready is False

    def test_shutdown_closes_storage(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _patch_load_config(monkeypatch, _stub_config())
        close = AsyncMock()
        monkeypatch.setattr(InMemoryStorage, "close", close)

        with TestClient(create_app()):
            close.assert_not_awaited()
        close.assert_awaited_once()

    def test_json_backend_from_config(self, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
        config = Config.defaults()
        config.storage.path = str(tmp_path / "api-keys.json")
        _patch_load_config(monkeypatch, config)
        application = create_app()

        with TestClient(application):
            assert isinstance(application.state.key_storage, JsonFileStorage)
        assert (tmp_path / "api-keys.json").exists()

    def test_default_validity_from_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        config = _stub_config()
        config.keys.default_expires_in_days = 10
        _patch_load_config(monkeypatch, config)

        with TestClient(create_app()) as client:
            response = client.post("/api/keys/generate", json={"name": "ci"})

        key = response.json()["key"]
        delta = parse_timestamp(key["expiresAt"]) - parse_timestamp(key["createdAt"])
        assert delta.days == 10

    @pytest.mark.asyncio
    async def test_bad_config_refuses_startup(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def _fail() -> Config:
            raise SystemExit(1)

        monkeypatch.setattr("keygate.main.load_config", _fail)
        application = create_app()
        with pytest.raises(SystemExit):
            async with lifespan(application):
                pass
        assert application.state.ready is False


# ─── Seed key ─────────────────────────────────────────────────────────────────


class TestSeedKey:

    def test_seed_key_registered_and_validates(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KEYGATE_AUTH_REQUIRED", "true")
        seed = "environment-seed-key-0001"
        _patch_load_config(monkeypatch, _stub_config(seed_key=seed))
        application = create_app()

        with TestClient(application) as client:
            response = client.get("/api/keys", headers={"X-API-Key": seed})
            assert response.status_code == 200
            [key] = response.json()["keys"]
            assert key["name"] == "Environment API Key"
            assert key["key"] == seed[:8] + "..."

    @pytest.mark.asyncio
    async def test_seed_key_idempotent_across_restarts(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        seed = "environment-seed-key-0002"
        storage = InMemoryStorage()
        _patch_load_config(monkeypatch, _stub_config(seed_key=seed))
        monkeypatch.setattr(
            "keygate.main.create_key_storage", AsyncMock(return_value=storage)
        )

        for _ in range(2):
            async with lifespan(create_app()):
                pass

        records = await storage.load()
        assert [r.secret for r in records] == [seed]
        assert storage.save_count == 1

    @pytest.mark.asyncio
    async def test_short_seed_key_refuses_startup(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _patch_load_config(monkeypatch, _stub_config(seed_key="short"))
        application = create_app()
        with pytest.raises(ValueError):
            async with lifespan(application):
                pass
        assert application.state.ready is False


# ─── Root + request logging ───────────────────────────────────────────────────


class TestRootAndRequestId:

    def test_root(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _patch_load_config(monkeypatch, _stub_config())
        with TestClient(create_app()) as client:
            response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {
            "service": "keygate",
            "version": __version__,
            "health": "/health",
            "keys": "/api/keys",
        }

    def test_request_id_header(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _patch_load_config(monkeypatch, _stub_config())
        with TestClient(create_app()) as client:
            first = client.get("/health")
            second = client.get("/health")
        assert len(first.headers["X-Request-ID"]) == 26
        assert first.headers["X-Request-ID"] != second.headers["X-Request-ID"]

    def test_request_id_on_error_responses(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _patch_load_config(monkeypatch, _stub_config())
        with TestClient(create_app()) as client:
            response = client.delete("/api/keys/missing")
        assert response.status_code == 404
        assert "X-Request-ID" in response.headers

    def test_unhealthy_storage_is_503(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _patch_load_config(monkeypatch, _stub_config())
        monkeypatch.setattr(InMemoryStorage, "health_check", AsyncMock(return_value=False))
        with TestClient(create_app()) as client:
            response = client.get("/health")
        assert response.status_code == 503
        assert response.json()["error"]["status"] == "degraded"
