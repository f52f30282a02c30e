"""Key record data model + masking.

KeyRecord is the sole persisted entity. Its serialised form uses the field
names of the legacy ``api-keys.json`` layout so existing key files load
unchanged::

    {"keys": [{"id": ..., "key": ..., "name": ..., "createdAt": ...,
               "expiresAt": ..., "lastUsed": ..., "isActive": ...,
               "rotatedFrom": ...}]}

KeyRecordView is the masked projection handed out by every read path other
than generate/rotate.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from keygate.constants import MASK_PREFIX_LENGTH, MASK_SUFFIX


def mask(secret: Optional[str]) -> Optional[str]:
    """Render a secret as its fixed-width visible prefix plus '...'.

    The single masking implementation: list views, log lines and the request
    logger all go through here. ``None`` passes through unchanged. Secrets
    shorter than twice the prefix width show at most half their length.
    """
    if secret is None:
        return None
    visible = min(MASK_PREFIX_LENGTH, len(secret) // 2)
    return f"{secret[:visible]}{MASK_SUFFIX}"


def is_masked(value: str) -> bool:
    """True if ``value`` has the shape mask() produces."""
    return value.endswith(MASK_SUFFIX) and len(value) <= MASK_PREFIX_LENGTH + len(MASK_SUFFIX)


def format_timestamp(value: datetime) -> str:
    """Serialise an aware datetime as ISO 8601 UTC with millisecond precision."""
    return (
        value.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class KeyRecord:
    """One issued credential plus its metadata."""

    id: str
    secret: str
    name: str
    created_at: datetime
    expires_at: datetime
    last_used_at: Optional[datetime] = None
    active: bool = True
    rotated_from: Optional[str] = None
    """Id of the record this one replaced via rotate(), if any."""

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now

    def view(self) -> "KeyRecordView":
        return KeyRecordView(
            id=self.id,
            secret=mask(self.secret),
            name=self.name,
            created_at=self.created_at,
            expires_at=self.expires_at,
            last_used_at=self.last_used_at,
            active=self.active,
            rotated_from=self.rotated_from,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the on-disk / API JSON shape (plaintext secret included)."""
        return _serialise(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "KeyRecord":
        """Build a record from its serialised form.

        Raises:
            KeyError:   A required field is missing.
            ValueError: A timestamp is malformed.
            TypeError:  ``raw`` is not a mapping, or ``key`` is not a string.
        """
        secret = raw["key"]
        if not isinstance(secret, str) or not secret:
            raise TypeError(f"record {raw.get('id')!r} has no usable key: {type(secret).__name__}")
        last_used = raw.get("lastUsed")
        return cls(
            id=str(raw["id"]),
            secret=secret,
            name=str(raw.get("name") or ""),
            created_at=parse_timestamp(raw["createdAt"]),
            expires_at=parse_timestamp(raw["expiresAt"]),
            last_used_at=parse_timestamp(last_used) if last_used else None,
            active=bool(raw.get("isActive", True)),
            rotated_from=raw.get("rotatedFrom"),
        )


@dataclass(frozen=True)
class KeyRecordView:
    """Read-only KeyRecord projection with ``secret`` masked."""

    id: str
    secret: Optional[str]
    name: str
    created_at: datetime
    expires_at: datetime
    last_used_at: Optional[datetime]
    active: bool
    rotated_from: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return _serialise(self)


def _serialise(record: KeyRecord | KeyRecordView) -> dict[str, Any]:
    return {
        "id": record.id,
        "key": record.secret,
        "name": record.name,
        "createdAt": format_timestamp(record.created_at),
        "expiresAt": format_timestamp(record.expires_at),
        "lastUsed": (
            format_timestamp(record.last_used_at)
            if record.last_used_at is not None
            else None
        ),
        "isActive": record.active,
        "rotatedFrom": record.rotated_from,
    }
