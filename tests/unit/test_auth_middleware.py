"""Unit tests for keygate/auth/middleware.py.

Verifies:
  - require_api_key() raises 401 on a missing key, 403 on a bad one
  - Header extraction precedence (X-API-Key > Authorization: Bearer)
  - Expired keys are rejected with 403 and deactivated by the check
  - Key storage failures surface as 503, never as 403
  - KEYGATE_AUTH_REQUIRED=false bypasses validation
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi import HTTPException

from keygate.auth.middleware import (
    _extract_bearer,
    extract_api_key,
    get_key_store,
    require_api_key,
)
from keygate.keys.store import KeyStore
from keygate.storage.protocol import StorageUnavailableError

pytestmark = pytest.mark.asyncio


@pytest.fixture(autouse=True)
def require_auth(monkeypatch: pytest.MonkeyPatch):
    """Set KEYGATE_AUTH_REQUIRED=true for all tests in this module."""
    monkeypatch.setenv("KEYGATE_AUTH_REQUIRED", "true")


class MockRequest:
    """Minimal mock for FastAPI Request."""

    def __init__(
        self,
        headers: dict[str, str] | None = None,
        key_store: KeyStore | None = None,
        path: str = "/api/keys",
        method: str = "GET",
    ) -> None:
        self.headers = headers or {}
        self.url = SimpleNamespace(path=path)
        self.method = method
        self.app = SimpleNamespace(state=SimpleNamespace(key_store=key_store))


# ─── Header extraction ────────────────────────────────────────────────────────


class TestExtractBearer:

    def test_extracts_token(self) -> None:
        assert _extract_bearer("Bearer abc123") == "abc123"

    def test_case_insensitive(self) -> None:
        assert _extract_bearer("BEARER abc123") == "abc123"

    def test_empty_returns_none(self) -> None:
        assert _extract_bearer("") is None

    def test_other_scheme_returns_none(self) -> None:
        assert _extract_bearer("Basic dXNlcjpwYXNz") is None

    def test_missing_token_returns_none(self) -> None:
        assert _extract_bearer("Bearer ") is None


class TestExtractApiKey:

    def test_x_api_key(self) -> None:
        assert extract_api_key(MockRequest({"X-API-Key": "k1"})) == "k1"

    def test_bearer_fallback(self) -> None:
        assert extract_api_key(MockRequest({"Authorization": "Bearer k2"})) == "k2"

    def test_x_api_key_wins(self) -> None:
        request = MockRequest({"X-API-Key": "k1", "Authorization": "Bearer k2"})
        assert extract_api_key(request) == "k1"

    def test_none_present(self) -> None:
        assert extract_api_key(MockRequest()) is None


# ─── get_key_store ────────────────────────────────────────────────────────────


class TestGetKeyStore:

    def test_returns_store(self, store: KeyStore) -> None:
        assert get_key_store(MockRequest(key_store=store)) is store

    def test_missing_store_is_503(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            get_key_store(MockRequest())
        assert exc_info.value.status_code == 503


# ─── require_api_key ──────────────────────────────────────────────────────────


class TestRequireApiKey:

    async def test_missing_key_is_401(self, store: KeyStore) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await require_api_key(MockRequest(key_store=store))
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "API key is required"

    async def test_unknown_key_is_403(self, store: KeyStore) -> None:
        request = MockRequest({"X-API-Key": "f" * 72}, key_store=store)
        with pytest.raises(HTTPException) as exc_info:
            await require_api_key(request)
        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == "Invalid API key"

    async def test_valid_key_returns_key(self, store: KeyStore) -> None:
        record = await store.generate("caller")
        request = MockRequest({"X-API-Key": record.secret}, key_store=store)
        assert await require_api_key(request) == record.secret

    async def test_valid_bearer_key(self, store: KeyStore) -> None:
        record = await store.generate("caller")
        request = MockRequest({"Authorization": f"Bearer {record.secret}"}, key_store=store)
        assert await require_api_key(request) == record.secret

    async def test_valid_key_touches_last_used(self, store: KeyStore, memory_storage) -> None:
        record = await store.generate("caller")
        await require_api_key(MockRequest({"X-API-Key": record.secret}, key_store=store))
        [stored] = await memory_storage.load()
        assert stored.last_used_at is not None

    async def test_revoked_key_is_403(self, store: KeyStore) -> None:
        record = await store.generate("caller")
        await store.revoke(record.id)
        request = MockRequest({"X-API-Key": record.secret}, key_store=store)
        with pytest.raises(HTTPException) as exc_info:
            await require_api_key(request)
        assert exc_info.value.status_code == 403

    async def test_expired_key_is_403_and_deactivated(self, store: KeyStore, clock) -> None:
        record = await store.generate("caller", expires_in_days=1)
        clock.advance(days=3)
        request = MockRequest({"X-API-Key": record.secret}, key_store=store)
        with pytest.raises(HTTPException) as exc_info:
            await require_api_key(request)
        assert exc_info.value.status_code == 403
        [view] = await store.list(include_inactive=True)
        assert view.active is False

    async def test_storage_failure_is_503(self) -> None:
        broken = AsyncMock(spec=KeyStore)
        broken.check.side_effect = StorageUnavailableError("boom")
        request = MockRequest({"X-API-Key": "a" * 72}, key_store=broken)
        with pytest.raises(HTTPException) as exc_info:
            await require_api_key(request)
        assert exc_info.value.status_code == 503

    async def test_auth_not_required_returns_anonymous(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("KEYGATE_AUTH_REQUIRED", "false")
        assert await require_api_key(MockRequest()) == "anonymous"
