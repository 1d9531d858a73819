"""Structured JSON logging for the OA kernel and its HTTP edge."""

__all__ = [
    "StructuredFormatter",
    "ConsoleFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_context: ContextVar[dict[str, str] | None] = ContextVar("oa_log_context", default=None)


class LogContext:
    """Request-scoped log fields, carried per thread and per asyncio task.

    Values are stored as strings.  Field names outside ``FIELDS`` are
    ignored, so a caller can splat a wider mapping into ``bind``.
    """

    FIELDS = ("correlation_id", "actor_id", "instance_id", "request_path")

    @classmethod
    def _updated(cls, **fields: Any) -> dict[str, str]:
        current = dict(_context.get() or {})
        for name, value in fields.items():
            if name in cls.FIELDS and value is not None:
                current[name] = str(value)
        return current

    @classmethod
    def set(
        cls,
        *,
        correlation_id: str | None = None,
        actor_id: int | str | None = None,
        instance_id: int | str | None = None,
        request_path: str | None = None,
    ) -> None:
        """Set context fields. Only non-None values are updated."""
        _context.set(cls._updated(
            correlation_id=correlation_id,
            actor_id=actor_id,
            instance_id=instance_id,
            request_path=request_path,
        ))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get() or {})

    @classmethod
    def clear(cls) -> None:
        _context.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block."""
        token = _context.set(cls._updated(**fields))
        try:
            yield cls
        finally:
            _context.reset(token)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return str(obj)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields: dict[str, Any] = LogContext.get_all()
    for key, value in vars(record).items():
        if key not in _STDLIB_KEYS and key not in fields:
            fields[key] = value
    return fields


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # Kernel errors carry their identifiers as public attributes.
    for key, value in vars(exc).items():
        if not key.startswith("_") and key not in ("args", "code", "message"):
            fields[f"exc_{key}"] = value
    return fields


def _timestamp(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=UTC)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": _timestamp(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_extra_fields(record))
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_default)


class ConsoleFormatter(logging.Formatter):
    """``HH:MM:SS.mmm LEVEL logger event key=value ...`` for debug mode."""

    def format(self, record: logging.LogRecord) -> str:
        ts = _timestamp(record).strftime("%H:%M:%S.%f")[:-3]
        line = f"{ts} {record.levelname:<7} {record.name} {record.getMessage()}"
        fields = _extra_fields(record)
        if fields:
            line += " " + " ".join(
                f"{k}={_json_default(v) if isinstance(v, (Enum, date)) else v}"
                for k, v in fields.items()
            )
        if record.exc_info and record.exc_info[1] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "oa_kernel"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the oa_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
    human_readable: bool = False,
) -> None:
    """Attach one handler to the ``oa_kernel`` logger (idempotent).

    A supplied ``handler`` keeps its own formatter if it has one.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    if handler.formatter is None:
        handler.setFormatter(
            ConsoleFormatter() if human_readable else StructuredFormatter()
        )

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False
    root_logger.addHandler(handler)


def reset_logging() -> None:
    """Drop handlers and forget configuration. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
