"""
Structured JSON logging for payables code.

Every module logs through ``get_logger(__name__-ish)`` under the
``payables`` namespace and passes structured fields via ``extra=``. The
formatter renders one JSON object per line, merging in the ambient
payment context (budget line, payment, actor, month) bound by services
through ``LogContext``.
"""

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
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

_NAMESPACE = "payables"

_CONTEXT_FIELDS = (
    "correlation_id",
    "budget_line_id",
    "payment_id",
    "actor_id",
    "month_key",
)

_context: ContextVar[dict[str, str]] = ContextVar("payables_log_context", default={})


class LogContext:
    """
    Request-scoped log fields carried in a single context variable.

    The stored mapping is replaced, never mutated, so each thread and each
    asyncio task sees its own snapshot.
    """

    @staticmethod
    def _merged(fields: dict[str, str | None]) -> dict[str, str]:
        unknown = set(fields) - set(_CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
        merged = dict(_context.get())
        merged.update({k: v for k, v in fields.items() if v is not None})
        return merged

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set context fields. ``None`` leaves a field untouched."""
        _context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        current = _context.get()
        return {name: current[name] for name in _CONTEXT_FIELDS if name in current}

    @classmethod
    def clear(cls) -> None:
        _context.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block."""
        token = _context.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _context.reset(token)


_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    return repr(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if name.startswith("_") or name == "code":
            continue
        fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON line per record: envelope, context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """Logger named ``payables.<name>``."""
    return logging.getLogger(f"{_NAMESPACE}.{name}")


_install_lock = threading.Lock()
_installed: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``payables`` logger.

    Only the first call has an effect until ``reset_logging`` runs.
    """
    global _installed
    with _install_lock:
        if _installed is not None:
            return
        target = handler or logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())

        namespace = logging.getLogger(_NAMESPACE)
        namespace.setLevel(level)
        namespace.propagate = False
        namespace.addHandler(target)
        _installed = target


def reset_logging() -> None:
    """Detach handlers and restore the namespace to stdlib defaults. Tests only."""
    global _installed
    with _install_lock:
        _installed = None
        namespace = logging.getLogger(_NAMESPACE)
        namespace.handlers.clear()
        namespace.setLevel(logging.NOTSET)
        namespace.propagate = True
