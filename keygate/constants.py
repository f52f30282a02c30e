"""Shared constants for keygate.

Validity windows, secret sizing and masking widths used across modules are
defined here. No magic numbers in other modules: import from here.
"""

# ─── Key Validity Windows (days) ─────────────────────────────────────────────

# Validity window applied by generate()/rotate() when the caller gives none.
DEFAULT_EXPIRES_IN_DAYS: int = 90

# Validity window of the master key minted via POST /api/keys/create-master.
MASTER_EXPIRES_IN_DAYS: int = 365

# Validity window of the environment-seeded bootstrap key.
SEED_EXPIRES_IN_DAYS: int = 365

# Default look-ahead for expiring_within() and GET /api/keys/expiring.
DEFAULT_EXPIRING_WINDOW_DAYS: int = 7

# ─── Secrets ──────────────────────────────────────────────────────────────────

# Random bytes per generated secret. 36 bytes = 288 bits = 72 hex chars.
SECRET_BYTES: int = 36

# Shortest secret accepted by ensure_seed_key(). Shorter values would be
# almost fully exposed by the masked prefix.
MIN_SEED_SECRET_LENGTH: int = 16

# ─── Masking ──────────────────────────────────────────────────────────────────

# Visible prefix width of a masked secret ("0123abcd...").
MASK_PREFIX_LENGTH: int = 8
MASK_SUFFIX: str = "..."

# ─── Record Names ─────────────────────────────────────────────────────────────

DEFAULT_KEY_NAME: str = "API Key"
MASTER_KEY_NAME: str = "Master API Key"
SEED_KEY_NAME: str = "Environment API Key"
ROTATED_NAME_SUFFIX: str = " (Rotated)"
