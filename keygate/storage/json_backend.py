"""JsonFileStorage: flat JSON file key collection.

File layout (compatible with legacy data/api-keys.json files)::

    {"keys": [ {...KeyRecord.to_dict()...}, ... ]}

Guarantees:
  - Missing file → initialize() writes an empty collection ({"keys": []})
  - Atomic replace-on-write: temp file in the same directory, fsync, os.replace()
  - os.chmod(path, 0o600) after every write: secrets are stored in plaintext
  - Corrupt / unreadable file → StorageUnavailableError (never read as empty)
  - Blocking file I/O runs in a worker thread (asyncio.to_thread)
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from keygate.keys.models import KeyRecord
from keygate.storage.protocol import StorageUnavailableError
from keygate.utils.logger import PerformanceLogger, get_logger

logger = get_logger(__name__)

_FILE_MODE = 0o600


class JsonFileStorage:
    """Read-all / write-all KeyStorage over a single JSON file.

    Usage:
        storage = JsonFileStorage("~/.keygate/api-keys.json")
        await storage.initialize()
        records = await storage.load()
        await storage.save(records)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(os.path.expanduser(str(path)))

    @property
    def path(self) -> Path:
        return self._path

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Create parent directories and an empty collection if the file is absent."""
        try:
            await asyncio.to_thread(self._initialize_sync)
        except OSError as exc:
            raise StorageUnavailableError(
                f"Cannot initialise key file {self._path}: {exc}"
            ) from exc
        logger.debug("JSON key storage initialized", path=str(self._path))

    def _initialize_sync(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            self._write_sync({"keys": []})

    async def close(self) -> None:
        """Nothing to release: every call opens and closes the file."""

    async def health_check(self) -> bool:
        try:
            await self.load()
        except StorageUnavailableError:
            return False
        return True

    # ── Read / write ──────────────────────────────────────────────────────────

    async def load(self) -> list[KeyRecord]:
        """Read and decode the whole collection.

        A file that does not exist reads as an empty collection; the next
        save() recreates it.

        Raises:
            StorageUnavailableError: On read failure, invalid JSON, or a record
                                     that does not decode.
        """
        with PerformanceLogger("key file load", logger):
            try:
                raw = await asyncio.to_thread(self._read_sync)
            except FileNotFoundError:
                return []
            except OSError as exc:
                raise StorageUnavailableError(
                    f"Cannot read key file {self._path}: {exc}"
                ) from exc
            except ValueError as exc:
                # JSONDecodeError and UnicodeDecodeError
                raise StorageUnavailableError(
                    f"Key file {self._path} is not valid UTF-8 JSON: {exc}"
                ) from exc

        if not isinstance(raw, dict) or not isinstance(raw.get("keys", []), list):
            raise StorageUnavailableError(
                f"Key file {self._path} must contain a 'keys' list"
            )

        try:
            return [KeyRecord.from_dict(item) for item in raw.get("keys", [])]
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageUnavailableError(
                f"Key file {self._path} holds a malformed record: {exc!r}"
            ) from exc

    async def save(self, records: list[KeyRecord]) -> None:
        """Atomically replace the file with ``records``.

        Raises:
            StorageUnavailableError: On any write failure. The previous file
                                     content is left intact.
        """
        payload = {"keys": [record.to_dict() for record in records]}
        with PerformanceLogger("key file save", logger):
            try:
                await asyncio.to_thread(self._write_sync, payload)
            except OSError as exc:
                raise StorageUnavailableError(
                    f"Cannot write key file {self._path}: {exc}"
                ) from exc

    def _read_sync(self) -> Any:
        with open(self._path, encoding="utf-8") as fh:
            return json.load(fh)

    def _write_sync(self, payload: dict[str, Any]) -> None:
        fd, tmp_name = tempfile.mkstemp(
            dir=str(self._path.parent),
            prefix=f".{self._path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, _FILE_MODE)
            os.replace(tmp_name, self._path)
        except BaseException:
            # Leave the live file untouched; drop the partial temp file.
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
