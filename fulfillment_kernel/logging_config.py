"""Structured JSON logging for the fulfillment kernel."""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------


class LogContext:
    """
    Request-scoped log fields for one kernel operation.

    The fields live in a single ContextVar holding an immutable snapshot,
    so a thread or task that binds an order never sees another's fields.
    Only the names in FIELDS are carried; anything else passed to set()
    or bind() is dropped.
    """

    FIELDS = ("correlation_id", "order_id", "actor_id", "exception_id", "trace_id")

    _fields: ContextVar[Mapping[str, str]] = ContextVar(
        "fulfillment_log_context", default=MappingProxyType({})
    )

    @classmethod
    def _merged(cls, values: dict[str, str | None]) -> Mapping[str, str]:
        merged = dict(cls._fields.get())
        merged.update(
            (name, val) for name, val in values.items()
            if val is not None and name in cls.FIELDS
        )
        return MappingProxyType(merged)

    @classmethod
    def set(cls, **values: str | None) -> None:
        """Set context fields. Only non-None values are updated."""
        cls._fields.set(cls._merged(values))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Return all bound context fields as a plain dict."""
        return dict(cls._fields.get())

    @classmethod
    def clear(cls) -> None:
        cls._fields.set(MappingProxyType({}))

    @classmethod
    @contextmanager
    def bind(cls, **values: str | None) -> Iterator[type["LogContext"]]:
        """Bind fields for the duration of the block, restoring the outer ones on exit."""
        token = cls._fields.set(cls._merged(values))
        try:
            yield cls
        finally:
            cls._fields.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


class _JSONEncoder(json.JSONEncoder):
    """Handle UUID, datetime, Decimal and enums in log payloads."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (set, frozenset)):
            return sorted(str(v) for v in obj)
        return super().default(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        payload.update(LogContext.get_all())

        # Structured extra data (skip stdlib internal keys)
        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            if hasattr(exc, "code"):
                payload["exc_code"] = exc.code
            # Structured fields from FulfillmentKernelError subclasses
            for k, v in vars(exc).items():
                if not k.startswith("_") and k not in ("args", "code"):
                    payload[f"exc_{k}"] = v
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, cls=_JSONEncoder, default=str)


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "fulfillment_kernel"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the fulfillment_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Configure the fulfillment_kernel logger hierarchy (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Reset logging configuration. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
