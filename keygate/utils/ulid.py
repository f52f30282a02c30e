"""ULID generation utility for keygate.

``generate_ulid()`` returns a 26-character ULID used as:
  - the ``id`` of every key record (the external handle for revoke/rotate)
  - the per-request correlation id bound into structured log entries

ULIDs are Crockford Base32, 48-bit millisecond timestamp + 80 random bits, so
ids sort by creation time and never collide in practice.

Uses the ``python-ulid`` library (see pyproject.toml).
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Example::

        key_id = generate_ulid()
        # "01KJ0JRVHYA7KX32VPN5ZSCTMV"
        assert len(key_id) == 26
    """
    return str(ULID())
