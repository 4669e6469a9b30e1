"""
Structured JSON logging for the campaign kernel.

Every record is one JSON line::

    {"ts": ..., "level": "INFO", "logger": "campaign_kernel.services.lifecycle",
     "message": "lifecycle_transition_applied", "run_id": ..., "actor": ...,
     "submission_id": ..., "previous_status": "minted", "new_status": "closed"}

Messages are snake_case event names; details travel in ``extra={...}``.
Request-scoped fields (run, actor, submission, action) come from LogContext
so that deep call sites do not need to pass them along.  Exceptions from
the kernel hierarchy are flattened into ``exc_*`` fields, including their
``code`` and structured attributes (campaign_id, tx_id, expected, ...).
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
from contextvars import ContextVar
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "campaign_kernel"

CONTEXT_FIELDS = ("correlation_id", "run_id", "actor", "submission_id", "action")

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"campaign_log_{name}", default=None) for name in CONTEXT_FIELDS
}


class LogContext:
    """Request-scoped log fields, safe across threads and tasks."""

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set the given fields; None values leave a field unchanged."""
        for name, value in fields.items():
            if name not in _context_vars:
                raise TypeError(f"unknown log context field {name!r}")
            if value is not None:
                _context_vars[name].set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: value
            for name, var in _context_vars.items()
            if (value := var.get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _context_vars.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: Any) -> "_Binding":
        """
        Scope fields to a ``with`` block, restoring prior values on exit.

        None values and names outside CONTEXT_FIELDS are ignored, so callers
        can pass optional ids straight through.
        """
        return _Binding(fields)


class _Binding:

    def __init__(self, fields: dict[str, Any]):
        self._fields = {
            k: str(v) for k, v in fields.items() if v is not None and k in _context_vars
        }
        self._tokens: list = []

    def __enter__(self) -> type[LogContext]:
        self._tokens = [
            (_context_vars[name], _context_vars[name].set(value))
            for name, value in self._fields.items()
        ]
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []


# Attributes every LogRecord has; anything else came from ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_jsonable(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (tuple, set, frozenset)):
        return list(obj)
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, context, extras, exception."""

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

        return json.dumps(payload, default=_to_jsonable)


def get_logger(name: str) -> logging.Logger:
    """Logger under the campaign_kernel namespace, e.g. ``get_logger("cli")``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the campaign_kernel logger.

    Only the first call has an effect; later calls (the engine and the CLI
    both call this) are no-ops.  Records do not propagate to the root
    logger.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False

    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root.addHandler(target)


def reset_logging() -> None:
    """Drop handlers and allow configure_logging() again. For tests."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
