"""Structured logging utilities for keygate.

structlog configuration shared by every module. Each entry carries:
  - request_id when emitted while a request is in flight
  - an ISO 8601 UTC timestamp
  - secrets masked: any event field named in SECRET_FIELDS is rendered
    through keygate.keys.models.mask() before it reaches the renderer
"""

import logging
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

from keygate.keys.models import is_masked, mask

# Context variable for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Event fields that may carry a plaintext API key or setup secret.
SECRET_FIELDS: frozenset[str] = frozenset(
    {"key", "secret", "api_key", "setup_secret", "seed_key"}
)


def add_request_id(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add request_id to log context if available."""
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO UTC timestamp to log entries."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return event_dict


def mask_secrets(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask SECRET_FIELDS values that are not already masked."""
    for field in SECRET_FIELDS.intersection(event_dict):
        value = event_dict[field]
        if isinstance(value, str) and not is_masked(value) and value != "none":
            event_dict[field] = mask(value)
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True
) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON format. If False, use console format.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_request_id,
        add_timestamp,
        mask_secrets,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "keygate") -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance (typically ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


class PerformanceLogger:
    """Times a storage round trip.

    Durations above ``warn_ms`` are logged at WARNING, everything else at DEBUG;
    a block that raises is logged at ERROR and the exception propagates.
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
        warn_ms: float = 50.0,
    ):
        self.operation = operation
        self.logger = logger or get_logger()
        self.warn_ms = warn_ms
        self.start_time: float = 0
        self.end_time: float = 0

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.end_time = time.perf_counter()
        duration_ms = round((self.end_time - self.start_time) * 1000, 3)

        if exc_type is not None:
            self.logger.error(
                f"{self.operation} failed",
                operation=self.operation,
                duration_ms=duration_ms,
                error=str(exc_val),
            )
            return

        log_method = self.logger.warning if duration_ms > self.warn_ms else self.logger.debug
        log_method(
            f"{self.operation} completed",
            operation=self.operation,
            duration_ms=duration_ms,
        )


def set_request_id(request_id: str) -> None:
    """Bind ``request_id`` to every log line emitted in the current context."""
    request_id_var.set(request_id)


def clear_request_id() -> None:
    request_id_var.set(None)


# Defaults until keygate.main reconfigures from DEBUG / LOG_LEVEL / JSON_LOGS.
configure_logging()
