"""SQLiteStorage: aiosqlite-backed key collection.

Keeps the read-all / write-all contract of the JSON backend but gets
transactional atomicity from SQLite instead of file replacement:

  - WAL mode: PRAGMA journal_mode=WAL
  - Schema version guard: PRAGMA user_version=1, RuntimeError on mismatch
  - Long-lived connection: opened in initialize(), closed in close()
  - save(): DELETE + INSERT of the whole collection inside one transaction;
    a failure rolls back and leaves the previous collection in place
  - ``position`` column preserves insertion order across saves
  - os.chmod(db_path, 0o600) on every initialize() call
"""

from __future__ import annotations

import os
from typing import Optional

import aiosqlite

from keygate.keys.models import KeyRecord, format_timestamp, parse_timestamp
from keygate.storage.protocol import StorageUnavailableError
from keygate.utils.logger import PerformanceLogger, get_logger

logger = get_logger(__name__)

# ─── Schema DDL ───────────────────────────────────────────────────────────────

_CREATE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS api_keys (
    id              TEXT PRIMARY KEY,
    position        INTEGER NOT NULL,
    secret          TEXT NOT NULL,
    name            TEXT NOT NULL,
    created_at      TEXT NOT NULL,
    expires_at      TEXT NOT NULL,
    last_used_at    TEXT,
    active          INTEGER NOT NULL DEFAULT 1,
    rotated_from    TEXT
);

CREATE INDEX IF NOT EXISTS idx_api_keys_secret ON api_keys (secret);
"""

_SCHEMA_VERSION = 1

_INSERT_SQL = (
    "INSERT INTO api_keys (id, position, secret, name, created_at, expires_at, "
    "last_used_at, active, rotated_from) VALUES (?,?,?,?,?,?,?,?,?)"
)


def _row_to_record(row: aiosqlite.Row) -> KeyRecord:
    last_used: Optional[str] = row["last_used_at"]
    return KeyRecord(
        id=row["id"],
        secret=row["secret"],
        name=row["name"],
        created_at=parse_timestamp(row["created_at"]),
        expires_at=parse_timestamp(row["expires_at"]),
        last_used_at=parse_timestamp(last_used) if last_used else None,
        active=bool(row["active"]),
        rotated_from=row["rotated_from"],
    )


def _record_to_row(position: int, record: KeyRecord) -> tuple:
    return (
        record.id,
        position,
        record.secret,
        record.name,
        format_timestamp(record.created_at),
        format_timestamp(record.expires_at),
        format_timestamp(record.last_used_at) if record.last_used_at else None,
        int(record.active),
        record.rotated_from,
    )


class SQLiteStorage:
    """Async SQLite KeyStorage using aiosqlite exclusively.

    Usage:
        storage = SQLiteStorage("~/.keygate/keys.db")
        await storage.initialize()   # raises RuntimeError on schema version mismatch
        records = await storage.load()
        await storage.save(records)
        await storage.close()
    """

    def __init__(self, db_path: str = "~/.keygate/keys.db") -> None:
        self._db_path: str = os.path.expanduser(db_path)
        self._db: Optional[aiosqlite.Connection] = None

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Open the connection, enable WAL mode, and create/verify the schema.

        Raises:
            RuntimeError:            PRAGMA user_version is neither 0 nor 1.
            StorageUnavailableError: The database cannot be opened.
        """
        parent_dir = os.path.dirname(self._db_path)
        try:
            if parent_dir:
                os.makedirs(parent_dir, exist_ok=True)
            self._db = await aiosqlite.connect(self._db_path)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL;")

            cursor = await self._db.execute("PRAGMA user_version;")
            row = await cursor.fetchone()
            current_version: int = row[0] if row else 0

            if current_version == 0:
                await self._db.executescript(_CREATE_SCHEMA_SQL)
                await self._db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION};")
                await self._db.commit()
                logger.info(
                    "key_db_schema_created",
                    db_path=self._db_path,
                    schema_version=_SCHEMA_VERSION,
                )
            elif current_version != _SCHEMA_VERSION:
                await self._db.close()
                self._db = None
                raise RuntimeError(
                    f"Unsupported key database schema version: {current_version}. "
                    f"Delete {self._db_path} or point storage.path elsewhere."
                )
            os.chmod(self._db_path, 0o600)
        except (aiosqlite.Error, OSError) as exc:
            raise StorageUnavailableError(
                f"Cannot open key database {self._db_path}: {exc}"
            ) from exc

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.debug("key_db_closed", db_path=self._db_path)

    async def health_check(self) -> bool:
        try:
            if self._db is None:
                return False
            async with self._db.execute("SELECT 1") as cursor:
                await cursor.fetchone()
            return True
        except aiosqlite.Error:
            return False

    # ── Read / write ──────────────────────────────────────────────────────────

    def _connection(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageUnavailableError(
                "Key database not initialized: call initialize() first"
            )
        return self._db

    async def load(self) -> list[KeyRecord]:
        db = self._connection()
        with PerformanceLogger("key db load", logger):
            try:
                async with db.execute(
                    "SELECT * FROM api_keys ORDER BY position ASC"
                ) as cursor:
                    rows = await cursor.fetchall()
            except aiosqlite.Error as exc:
                raise StorageUnavailableError(f"Key database read failed: {exc}") from exc
        try:
            return [_row_to_record(row) for row in rows]
        except ValueError as exc:
            raise StorageUnavailableError(
                f"Key database holds a malformed record: {exc}"
            ) from exc

    async def save(self, records: list[KeyRecord]) -> None:
        db = self._connection()
        with PerformanceLogger("key db save", logger):
            try:
                await db.execute("DELETE FROM api_keys")
                await db.executemany(
                    _INSERT_SQL,
                    [_record_to_row(i, record) for i, record in enumerate(records)],
                )
                await db.commit()
            except aiosqlite.Error as exc:
                await db.rollback()
                raise StorageUnavailableError(f"Key database write failed: {exc}") from exc
