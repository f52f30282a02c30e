"""Key storage factory: backend selection and initialization.

Backend selection (config ``storage.backend``, env override
``KEYGATE_STORAGE_BACKEND``):
  - "json"   → JsonFileStorage (default)
  - "sqlite" → SQLiteStorage
  - "memory" → InMemoryStorage (tests / throwaway instances only)

Path: ``storage.path`` (env override ``KEYGATE_KEYS_PATH``). When unset, each
backend gets its own default under ~/.keygate/.
"""

from __future__ import annotations

from keygate.config import Config
from keygate.storage.protocol import InMemoryStorage, KeyStorage
from keygate.utils.logger import get_logger

logger = get_logger(__name__)

_DEFAULT_JSON_PATH = "~/.keygate/api-keys.json"
_DEFAULT_SQLITE_PATH = "~/.keygate/keys.db"


async def create_key_storage(config: Config) -> KeyStorage:
    """Create and initialize the configured key storage backend.

    Raises:
        ValueError:              Unknown ``storage.backend`` value.
        RuntimeError:            SQLite schema version guard tripped.
        StorageUnavailableError: The backing file/database cannot be created.
    """
    backend = config.storage.backend

    if backend == "json":
        from keygate.storage.json_backend import JsonFileStorage

        path = config.storage.path or _DEFAULT_JSON_PATH
        storage: KeyStorage = JsonFileStorage(path)
    elif backend == "sqlite":
        from keygate.storage.sqlite_backend import SQLiteStorage

        path = config.storage.path or _DEFAULT_SQLITE_PATH
        storage = SQLiteStorage(db_path=path)
    elif backend == "memory":
        path = None
        storage = InMemoryStorage()
        logger.warning("In-memory key storage selected: keys are lost on restart")
    else:
        raise ValueError(f"Unknown storage backend: {backend!r}")

    await storage.initialize()
    logger.info("key_storage_selected", backend=type(storage).__name__, path=path)
    return storage
