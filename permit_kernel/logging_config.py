"""
Structured JSON logging for the permit workflow.

Every record under the ``permit_kernel`` logger tree is emitted as one
JSON object per line.  Request-scoped identifiers (correlation id, the
permission request, the acting approver, the requesting student) live in
context variables so they follow a workflow operation across services
and into executor threads started with ``contextvars.copy_context()``.

Usage::

    with LogContext.bind(correlation_id=uuid4(), request_id=request_id):
        logger.info("permission_decision_recorded", extra={"decision": "approve"})
"""

__all__ = [
    "CONTEXT_FIELDS",
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
from contextvars import ContextVar, Token
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "request_id",
    "actor_id",
    "student_id",
)

_ROOT = "permit_kernel"

_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"permit_log_{name}", default=None) for name in CONTEXT_FIELDS
}


def _context_var(name: str) -> ContextVar[str | None]:
    try:
        return _vars[name]
    except KeyError:
        raise TypeError(f"unknown log context field: {name!r}") from None


class LogContext:
    """Request-scoped log fields backed by context variables.

    Values are stored as strings; UUIDs and other identifiers are
    converted on the way in.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Set the given fields; ``None`` values are ignored."""
        for name, value in fields.items():
            if value is not None:
                _context_var(name).set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: value
            for name, var in _vars.items()
            if (value := var.get()) is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _vars.values():
            var.set(None)

    @staticmethod
    def bind(**fields: Any) -> "_Binding":
        """Set fields for the duration of a ``with`` block."""
        return _Binding(fields)


class _Binding:
    def __init__(self, fields: dict[str, Any]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar[str | None], Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            if value is None:
                continue
            var = _context_var(name)
            self._tokens.append((var, var.set(str(value))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: core fields, context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                entry.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            entry.update(self._exception_fields(record.exc_info[1]))
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_json_default)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        # PermitKernelError subclasses carry a code and structured attributes.
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        for key, value in vars(exc).items():
            if not key.startswith("_") and key != "code":
                fields[f"exc_{key}"] = value
        return fields


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name`` under the ``permit_kernel`` tree."""
    return logging.getLogger(f"{_ROOT}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach the JSON handler to the ``permit_kernel`` tree once per process.

    ``level`` accepts a level number or name (``"DEBUG"``).  Later calls
    are no-ops until ``reset_logging()``.
    """
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

        root = logging.getLogger(_ROOT)
        root.setLevel(level.upper() if isinstance(level, str) else level)
        root.propagate = False

        target = handler or logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())
        root.addHandler(target)


def reset_logging() -> None:
    """Undo ``configure_logging()``. For tests."""
    global _configured
    with _configure_lock:
        _configured = False
        root = logging.getLogger(_ROOT)
        for existing in list(root.handlers):
            root.removeHandler(existing)
        root.setLevel(logging.WARNING)
