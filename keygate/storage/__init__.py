"""keygate key storage package.

Re-exports the public API for ergonomic imports:

    from keygate.storage import KeyStorage, StorageUnavailableError

Backends live in json_backend.py / sqlite_backend.py and are imported lazily
by factory.create_key_storage().
"""

from keygate.storage.protocol import (
    InMemoryStorage,
    KeyStorage,
    StorageUnavailableError,
)

__all__ = [
    "InMemoryStorage",
    "KeyStorage",
    "StorageUnavailableError",
]
