"""Config loading for keygate.

Reads `.keygate/config.yaml` (or `~/.keygate/config.yaml`).
Raises SystemExit on parse errors or missing `version` field.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided: for testing or explicit override)
  2. KEYGATE_CONFIG environment variable (if set)
  3. `.keygate/config.yaml` (working directory: for development)
  4. `~/.keygate/config.yaml` (home directory: for production deployments)

Environment variable overrides (applied after the file, always win):
  KEYGATE_PORT            : server.port
  KEYGATE_STORAGE_BACKEND : storage.backend
  KEYGATE_KEYS_PATH       : storage.path
  KEYGATE_SETUP_SECRET    : setup secret for POST /api/keys/create-master
  KEYGATE_SEED_KEY        : API key registered once at startup

The setup secret and seed key are secrets: they are read from the environment
only, never from the YAML file.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import NoReturn, Optional

import yaml

from keygate.constants import (
    DEFAULT_EXPIRES_IN_DAYS,
    MASTER_EXPIRES_IN_DAYS,
    SEED_EXPIRES_IN_DAYS,
)
from keygate.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# ─── Validation sets ─────────────────────────────────────────────────────────

VALID_STORAGE_BACKENDS: frozenset[str] = frozenset({"json", "sqlite", "memory"})

DEFAULT_CONFIG_PATHS = [
    ".keygate/config.yaml",
    os.path.expanduser("~/.keygate/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class ServerConfig:
    """HTTP binding configuration."""

    host: str = "127.0.0.1"
    port: int = 3000


@dataclass
class StorageConfig:
    """Key storage backend configuration.

    backend: "json" | "sqlite" | "memory"
    path:    File path for json/sqlite; None → backend default under ~/.keygate/
    """

    backend: str = "json"
    path: Optional[str] = None


@dataclass
class KeysConfig:
    """Validity windows (days) for issued keys."""

    default_expires_in_days: int = DEFAULT_EXPIRES_IN_DAYS
    master_expires_in_days: int = MASTER_EXPIRES_IN_DAYS
    seed_expires_in_days: int = SEED_EXPIRES_IN_DAYS


@dataclass
class Config:
    """Root configuration object populated from .keygate/config.yaml + env.

    All fields have safe defaults: keygate can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    keys: KeysConfig = field(default_factory=KeysConfig)
    setup_secret: Optional[str] = field(default=None, repr=False)
    seed_key: Optional[str] = field(default=None, repr=False)
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.

        Raises:
            SystemExit(1): On invalid storage.backend or non-positive validity window.
        """
        # ── Storage ───────────────────────────────────────────────────────────
        storage_raw = raw.get("storage") or {}
        storage = StorageConfig(
            backend=storage_raw.get("backend", "json"),
            path=storage_raw.get("path"),
        )
        _validate_backend(storage.backend)

        # ── Keys ──────────────────────────────────────────────────────────────
        keys_raw = raw.get("keys") or {}
        keys = KeysConfig(
            default_expires_in_days=keys_raw.get(
                "default_expires_in_days", DEFAULT_EXPIRES_IN_DAYS
            ),
            master_expires_in_days=keys_raw.get(
                "master_expires_in_days", MASTER_EXPIRES_IN_DAYS
            ),
            seed_expires_in_days=keys_raw.get(
                "seed_expires_in_days", SEED_EXPIRES_IN_DAYS
            ),
        )
        for name in ("default_expires_in_days", "master_expires_in_days", "seed_expires_in_days"):
            value = getattr(keys, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                _fail(f"CONFIG ERROR: keys.{name} must be a positive integer, got {value!r}.")

        # ── Server ────────────────────────────────────────────────────────────
        server_raw = raw.get("server") or {}
        server = ServerConfig(
            host=server_raw.get("host", "127.0.0.1"),
            port=server_raw.get("port", 3000),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            server=server,
            storage=storage,
            keys=keys,
            path=path,
        )


def _fail(msg: str) -> NoReturn:
    print(msg, file=sys.stderr)
    raise SystemExit(1)


def _validate_backend(backend: str) -> None:
    if backend not in VALID_STORAGE_BACKENDS:
        _fail(
            f"CONFIG ERROR: Invalid storage.backend: '{backend}'. "
            f"Supported values: {sorted(VALID_STORAGE_BACKENDS)}."
        )


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate keygate configuration.

    If no file is found at any of the search paths, returns default Config
    (not an error). If a file is found but invalid, writes the error to stderr
    and raises SystemExit(1).

    Environment overrides are applied whether or not a file was found.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field,
                       unsupported version, invalid ``storage.backend``, or
                       invalid ``KEYGATE_PORT``.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("KEYGATE_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("No config file found: using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"CONFIG ERROR: Failed to parse {found_path}: {exc}\n"
            "keygate refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _fail(f"CONFIG ERROR: Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        _fail(
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)

    if config.server.host == "0.0.0.0":
        logger.warning(
            "SECURITY WARNING: keygate is configured to bind on 0.0.0.0 (all interfaces). "
            "Recommended: use server.host: '127.0.0.1' behind a reverse proxy."
        )

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        storage_backend=config.storage.backend,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply KEYGATE_* environment variable overrides to a Config in-place.

    Raises:
        SystemExit(1): If KEYGATE_PORT is set but not a valid integer, or
                       KEYGATE_STORAGE_BACKEND names an unknown backend.
    """
    env_port = os.environ.get("KEYGATE_PORT")
    if env_port is not None:
        try:
            config.server.port = int(env_port)
        except ValueError:
            _fail(
                f"CONFIG ERROR: KEYGATE_PORT environment variable is not a valid "
                f"integer: '{env_port}'"
            )

    env_backend = os.environ.get("KEYGATE_STORAGE_BACKEND")
    if env_backend:
        _validate_backend(env_backend)
        config.storage.backend = env_backend

    env_path = os.environ.get("KEYGATE_KEYS_PATH")
    if env_path:
        config.storage.path = env_path

    config.setup_secret = os.environ.get("KEYGATE_SETUP_SECRET") or None
    config.seed_key = os.environ.get("KEYGATE_SEED_KEY") or None
