"""
Structured JSON logging for the reimbursement kernel.

Every record leaves the ``reimbursement_kernel`` logger hierarchy as one
JSON object per line::

    {"ts": "...", "level": "INFO", "logger": "reimbursement_kernel.services.claim",
     "message": "claim_transitioned", "claim_id": "...", "actor_id": "...",
     "version": 3}

Request-scoped identifiers (correlation, claim, actor, trace) live in
context variables so they follow the call across threads started with a
copied context and across ``asyncio`` tasks. Anything passed through
``extra=`` is merged after them; a context field is never overwritten by
an extra of the same name.

Kernel exceptions are flattened into ``exc_*`` keys: ``exc_code`` from the
class code, plus one ``exc_<attr>`` per public attribute (``exc_claim_id``,
``exc_expected_version``...).
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
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

ROOT_LOGGER_NAME = "reimbursement_kernel"

CONTEXT_FIELDS = ("correlation_id", "claim_id", "actor_id", "trace_id")

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"reimbursement_log_{name}", default=None)
    for name in CONTEXT_FIELDS
}


class LogContext:
    """Request-scoped log fields backed by context variables."""

    @staticmethod
    def set(**fields: str | None) -> None:
        """Update the named fields; ``None`` values leave a field untouched."""
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
        for name, value in fields.items():
            if value is not None:
                _context_vars[name].set(value)

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: value
            for name in CONTEXT_FIELDS
            if (value := _context_vars[name].get()) is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block.

        Unknown names and ``None`` values are skipped. On exit every bound
        field goes back to whatever it held before, including "unset".
        """
        tokens = [
            (_context_vars[name], _context_vars[name].set(value))
            for name, value in fields.items()
            if name in _context_vars and value is not None
        ]
        try:
            yield LogContext
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord carries; anything else on a record came from extra=.
_RECORD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for attr, value in vars(exc).items():
        if attr.startswith("_") or attr in ("args", "code"):
            continue
        fields[f"exc_{attr}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS:
                continue
            payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """Return ``reimbursement_kernel.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class _Setup:
    lock = threading.Lock()
    done = False


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the kernel's root logger.

    Only the first call has any effect until :func:`reset_logging` runs.
    The hierarchy does not propagate to the process root logger, so host
    applications keep their own formatting.
    """
    with _Setup.lock:
        if _Setup.done:
            return
        _Setup.done = True

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(handler)


def reset_logging() -> None:
    """Drop kernel handlers and allow configure_logging() to run again. Tests only."""
    with _Setup.lock:
        _Setup.done = False
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
