"""keygate HTTP authentication + key administration package.

Public API:
  - require_api_key()  : FastAPI Depends() auth filter (401 / 403 / 503)
  - get_key_store()    : FastAPI Depends() returning app.state.key_store
  - router             : /api/keys administrative endpoints
  - limiter            : shared slowapi Limiter
"""

from __future__ import annotations

from keygate.auth.limiter import limiter
from keygate.auth.middleware import get_key_store, require_api_key
from keygate.auth.router import router

__all__ = [
    "get_key_store",
    "limiter",
    "require_api_key",
    "router",
]
