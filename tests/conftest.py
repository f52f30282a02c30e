"""Root test configuration for keygate.

Sets KEYGATE_AUTH_REQUIRED=false for the entire test suite so router and
lifespan tests do not need to provision API keys. Tests that verify auth
enforcement (test_auth_middleware.py, tests/integration/) override this with
their own autouse fixture that sets KEYGATE_AUTH_REQUIRED=true.

Production default is KEYGATE_AUTH_REQUIRED=true: see keygate/auth/middleware.py.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from keygate.keys.store import KeyStore
from keygate.storage.protocol import InMemoryStorage


class FakeClock:
    """Controllable replacement for keygate.keys.store.utcnow."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def disable_auth_for_tests(monkeypatch: pytest.MonkeyPatch) -> None:
    """Disable auth enforcement and clear KEYGATE_* env vars for every test."""
    monkeypatch.setenv("KEYGATE_AUTH_REQUIRED", "false")
    for name in (
        "KEYGATE_CONFIG",
        "KEYGATE_PORT",
        "KEYGATE_STORAGE_BACKEND",
        "KEYGATE_KEYS_PATH",
        "KEYGATE_SETUP_SECRET",
        "KEYGATE_SEED_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Reset the in-memory rate limiter storage between tests.

    Prevents test-to-test rate limit bleed where multiple tests hitting the
    same endpoint within the same minute would trigger a 429.
    """
    from keygate.auth.limiter import limiter

    limiter.reset()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def store(memory_storage: InMemoryStorage, clock: FakeClock) -> KeyStore:
    return KeyStore(memory_storage, clock=clock)
