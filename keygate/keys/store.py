"""KeyStore: API key lifecycle over a pluggable KeyStorage.

Implements:
  - generate()        : new record, fresh ULID id + 288-bit hex secret
  - check()           : explicit validation outcome, touch-to-expire side effect
  - validate()        : boolean form of check()
  - revoke()          : soft-delete by id (idempotent)
  - rotate()          : replacement record + deactivate original, one write
  - list()            : masked views, insertion order
  - expiring_within() : masked views of active keys expiring in (now, now+days)
  - ensure_seed_key() : idempotent bootstrap of an externally supplied secret

Every operation re-reads the whole collection from storage; mutating
operations write the whole collection back. One asyncio.Lock per store
serializes the load → mutate → save sequence so concurrent requests never
lose each other's updates.

Plaintext secrets leave this module only from generate() and rotate().
"""

from __future__ import annotations

import asyncio
import enum
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from keygate.constants import (
    DEFAULT_EXPIRES_IN_DAYS,
    DEFAULT_EXPIRING_WINDOW_DAYS,
    DEFAULT_KEY_NAME,
    MIN_SEED_SECRET_LENGTH,
    ROTATED_NAME_SUFFIX,
    SECRET_BYTES,
    SEED_EXPIRES_IN_DAYS,
    SEED_KEY_NAME,
)
from keygate.keys.models import KeyRecord, KeyRecordView, mask
from keygate.storage.protocol import KeyStorage
from keygate.utils.logger import get_logger
from keygate.utils.ulid import generate_ulid

logger = get_logger(__name__)


class ValidationOutcome(enum.Enum):
    """Result of KeyStore.check().

    INVALID and INACTIVE and EXPIRED all mean "reject"; EXPIRED is kept
    separate because it is the call that deactivated the key.
    """

    VALID = "valid"
    INVALID = "invalid"
    """No secret given, or no record carries it."""
    INACTIVE = "inactive"
    """Record found but already revoked or expired."""
    EXPIRED = "expired"
    """Record found active but past expires_at; deactivated by this call."""


def utcnow() -> datetime:
    """Current UTC time truncated to millisecond precision.

    Timestamps are persisted with millisecond precision, so truncating here
    keeps in-memory records equal to their reloaded form.
    """
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def generate_secret() -> str:
    """Return a fresh high-entropy bearer secret (hex, SECRET_BYTES * 8 bits)."""
    return secrets.token_hex(SECRET_BYTES)


class KeyStore:
    """API key lifecycle manager.

    Args:
        storage:                 Initialized KeyStorage backend.
        default_expires_in_days: Validity window when generate()/rotate() get none.
        clock:                   Returns "now" as an aware UTC datetime.

    Raises (every operation that touches storage):
        StorageUnavailableError: The collection could not be read or written.
                                 Never collapsed into a not-found result here.
    """

    def __init__(
        self,
        storage: KeyStorage,
        default_expires_in_days: int = DEFAULT_EXPIRES_IN_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if default_expires_in_days <= 0:
            raise ValueError("default_expires_in_days must be positive")
        self._storage = storage
        self._default_expires_in_days = default_expires_in_days
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def storage(self) -> KeyStorage:
        return self._storage

    def _new_record(
        self,
        name: str,
        expires_in_days: Optional[int],
        now: datetime,
        secret: Optional[str] = None,
        rotated_from: Optional[str] = None,
    ) -> KeyRecord:
        days = self._default_expires_in_days if expires_in_days is None else expires_in_days
        if days <= 0:
            raise ValueError(f"expires_in_days must be positive, got {days}")
        return KeyRecord(
            id=generate_ulid(),
            secret=secret if secret is not None else generate_secret(),
            name=name,
            created_at=now,
            expires_at=now + timedelta(days=days),
            rotated_from=rotated_from,
        )

    # ── Creation ──────────────────────────────────────────────────────────────

    async def generate(
        self,
        name: str = DEFAULT_KEY_NAME,
        expires_in_days: Optional[int] = None,
    ) -> KeyRecord:
        """Issue a new key and persist it.

        Returns the full record: the only time the plaintext secret is
        handed out. The caller must show it once and never again.

        Raises:
            ValueError: ``expires_in_days`` is zero or negative.
        """
        async with self._lock:
            record = self._new_record(name, expires_in_days, self._clock())
            records = await self._storage.load()
            records.append(record)
            await self._storage.save(records)

        logger.info(
            "API key generated",
            key_id=record.id,
            name=record.name,
            expires_at=record.expires_at.isoformat(),
        )
        return record

    async def ensure_seed_key(
        self,
        secret: str,
        name: str = SEED_KEY_NAME,
        expires_in_days: int = SEED_EXPIRES_IN_DAYS,
    ) -> bool:
        """Register an externally supplied secret once.

        Returns True if a record was added, False if any record (active or
        not) already carries ``secret``. A revoked or expired seed key is
        therefore never resurrected.

        Raises:
            ValueError: ``secret`` is shorter than MIN_SEED_SECRET_LENGTH.
        """
        if len(secret) < MIN_SEED_SECRET_LENGTH:
            raise ValueError(
                f"Seed key must be at least {MIN_SEED_SECRET_LENGTH} characters"
            )

        async with self._lock:
            records = await self._storage.load()
            if any(r.secret == secret for r in records):
                logger.debug("Seed key already present", key=mask(secret))
                return False
            record = self._new_record(name, expires_in_days, self._clock(), secret=secret)
            records.append(record)
            await self._storage.save(records)

        logger.info("Seed API key added to managed keys", key_id=record.id, key=mask(secret))
        return True

    # ── Validation ────────────────────────────────────────────────────────────

    async def check(self, secret: Optional[str]) -> ValidationOutcome:
        """Validate ``secret`` and report why it was accepted or rejected.

        Side effects:
          - VALID   → last_used_at = now, persisted
          - EXPIRED → active = False, persisted; logged as "API key expired"
          - INVALID / INACTIVE → nothing written
        """
        if not secret:
            return ValidationOutcome.INVALID

        async with self._lock:
            records = await self._storage.load()
            record = next((r for r in records if r.secret == secret), None)

            if record is None:
                return ValidationOutcome.INVALID
            if not record.active:
                return ValidationOutcome.INACTIVE

            now = self._clock()
            if record.is_expired(now):
                record.active = False
                await self._storage.save(records)
                logger.warning("API key expired", key_id=record.id, key=mask(secret))
                return ValidationOutcome.EXPIRED

            record.last_used_at = now
            await self._storage.save(records)

        return ValidationOutcome.VALID

    async def validate(self, secret: Optional[str]) -> bool:
        """True iff ``secret`` belongs to an active, unexpired key."""
        return await self.check(secret) is ValidationOutcome.VALID

    # ── Revocation / rotation ─────────────────────────────────────────────────

    async def revoke(self, key_id: str) -> bool:
        """Deactivate a key by id.

        Returns True whenever the id exists: revoking an already inactive key
        is a successful no-op. Returns False (without writing) for unknown ids.
        """
        async with self._lock:
            records = await self._storage.load()
            record = next((r for r in records if r.id == key_id), None)
            if record is None:
                logger.debug("revoke: no matching key", key_id=key_id)
                return False
            record.active = False
            await self._storage.save(records)

        logger.info("API key revoked", key_id=key_id)
        return True

    async def rotate(
        self,
        key_id: str,
        expires_in_days: Optional[int] = None,
    ) -> Optional[KeyRecord]:
        """Replace a key: issue "<name> (Rotated)" and deactivate the original.

        Both changes land in a single save(). Returns the new record with its
        plaintext secret, or None if ``key_id`` is unknown.

        Raises:
            ValueError: ``expires_in_days`` is zero or negative.
        """
        async with self._lock:
            records = await self._storage.load()
            old = next((r for r in records if r.id == key_id), None)
            if old is None:
                logger.debug("rotate: no matching key", key_id=key_id)
                return None

            new = self._new_record(
                f"{old.name}{ROTATED_NAME_SUFFIX}",
                expires_in_days,
                self._clock(),
                rotated_from=old.id,
            )
            records.append(new)
            old.active = False
            await self._storage.save(records)

        logger.info("API key rotated", old_key_id=old.id, new_key_id=new.id)
        return new

    # ── Queries ───────────────────────────────────────────────────────────────

    async def list(self, include_inactive: bool = False) -> list[KeyRecordView]:
        """Masked views of all (or only active) keys, in insertion order."""
        async with self._lock:
            records = await self._storage.load()
        return [r.view() for r in records if include_inactive or r.active]

    async def expiring_within(
        self,
        days: int = DEFAULT_EXPIRING_WINDOW_DAYS,
    ) -> list[KeyRecordView]:
        """Masked views of active keys with now < expires_at < now + days.

        Keys already past expires_at but not yet deactivated by check() are
        excluded.
        """
        async with self._lock:
            records = await self._storage.load()
        now = self._clock()
        threshold = now + timedelta(days=days)
        return [
            r.view()
            for r in records
            if r.active and now < r.expires_at < threshold
        ]
