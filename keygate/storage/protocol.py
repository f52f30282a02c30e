"""KeyStorage Protocol + StorageUnavailableError + InMemoryStorage.

Every backend persists the whole key collection at once:
    load() : read the entire collection (insertion order preserved)
    save() : replace the entire collection atomically

Layout:
    protocol.py      : KeyStorage Protocol + StorageUnavailableError + InMemoryStorage
    json_backend.py  : JsonFileStorage (flat file, atomic replace-on-write)
    sqlite_backend.py: SQLiteStorage (aiosqlite, single transaction per save)
    factory.py       : create_key_storage(), backend selection from config
"""

from __future__ import annotations

import copy
from typing import Protocol, runtime_checkable

from keygate.keys.models import KeyRecord
from keygate.utils.logger import get_logger

logger = get_logger(__name__)


class StorageUnavailableError(Exception):
    """Raised when the durable key collection cannot be read or written.

    Distinct from "record not found": a Key Store operation that hits this
    error has NOT observed the collection and must not report a negative
    lookup result.

    HTTP mapping: 503 Service Unavailable
    """

    def __init__(self, message: str = "Key storage unavailable") -> None:
        super().__init__(message)
        self.message = message


@runtime_checkable
class KeyStorage(Protocol):
    """Pluggable read-all / write-all persistence for KeyRecord collections.

    Implementations: JsonFileStorage (default), SQLiteStorage, InMemoryStorage.
    Selection via create_key_storage() factory (storage/factory.py).

    load() and save() raise StorageUnavailableError on any I/O or decoding
    failure. save() must be atomic: a crash mid-write leaves either the old or
    the new collection, never a truncated one.
    """

    async def initialize(self) -> None:
        """Create the underlying medium if absent. Idempotent."""
        ...

    async def load(self) -> list[KeyRecord]:
        """Return every stored record in insertion order."""
        ...

    async def save(self, records: list[KeyRecord]) -> None:
        """Atomically replace the stored collection with ``records``."""
        ...

    async def health_check(self) -> bool:
        """Returns True if the backend is operational. Must not raise."""
        ...

    async def close(self) -> None:
        """Release connections and resources. Called during graceful shutdown."""
        ...


class InMemoryStorage:
    """Process-local KeyStorage: used in tests and with ``storage.backend: memory``.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the "stored" collection, matching the isolation a real
    backend gives.
    """

    def __init__(self, records: list[KeyRecord] | None = None) -> None:
        self._records: list[KeyRecord] = copy.deepcopy(records or [])
        self.save_count: int = 0

    async def initialize(self) -> None:
        logger.debug("InMemoryStorage initialized", records=len(self._records))

    async def load(self) -> list[KeyRecord]:
        return copy.deepcopy(self._records)

    async def save(self, records: list[KeyRecord]) -> None:
        self._records = copy.deepcopy(records)
        self.save_count += 1

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        logger.debug("InMemoryStorage closed")


assert isinstance(InMemoryStorage(), KeyStorage), (
    "InMemoryStorage does not satisfy KeyStorage protocol: implementation error"
)
