"""
Engine invocation tracing.

``@traced_engine`` wraps a pure engine function and, when the tracer logger
is enabled for DEBUG, emits one ``REIMBURSEMENT_ENGINE_TRACE`` record per
call carrying the engine name and version, a fingerprint of selected
arguments, the duration and whether the call raised.  Engines stay
free of I/O; the record goes through the kernel's logging hierarchy.

Usage::

    @traced_engine("sla_clock", "1.0", fingerprint_fields=("now",))
    def evaluate(claim, policy, now):
        ...

Arguments are bound to the engine's signature first, so a field passed
positionally fingerprints the same as one passed by keyword, and an omitted
field contributes its default.  Naming a field the engine does not accept
is an error at decoration time.
"""

from __future__ import annotations

import functools
import inspect
import logging
import time
from collections.abc import Callable
from typing import Any

from reimbursement_kernel.logging_config import get_logger
from reimbursement_kernel.utils.hashing import canonicalize_json, sha256_hex

TRACE_MESSAGE = "REIMBURSEMENT_ENGINE_TRACE"
FINGERPRINT_LENGTH = 16

_logger = get_logger("engines.tracer")


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    selected = {name: kwargs.get(name) for name in fingerprint_fields}
    return sha256_hex(canonicalize_json(selected))[:FINGERPRINT_LENGTH]


def _call_arguments(
    signature: inspect.Signature,
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
) -> dict[str, Any]:
    try:
        bound = signature.bind(*args, **kwargs)
    except TypeError:
        # the call itself raises; fingerprint what was named
        return dict(kwargs)
    bound.apply_defaults()
    return dict(bound.arguments)


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)
        unknown = [f for f in fingerprint_fields if f not in signature.parameters]
        if unknown:
            raise ValueError(
                f"{func.__qualname__} has no parameter(s) {', '.join(unknown)} to fingerprint"
            )

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            if not _logger.isEnabledFor(logging.DEBUG):
                return func(*args, **kwargs)

            fingerprint = (
                compute_input_fingerprint(
                    fingerprint_fields, _call_arguments(signature, args, kwargs),
                )
                if fingerprint_fields else ""
            )
            started = time.monotonic()
            outcome = "error"
            try:
                result = func(*args, **kwargs)
                outcome = "ok"
                return result
            finally:
                _logger.debug(TRACE_MESSAGE, extra={
                    "trace_type": TRACE_MESSAGE,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint,
                    "duration_ms": round((time.monotonic() - started) * 1000, 2),
                    "outcome": outcome,
                    "function": func.__qualname__,
                })

        return wrapper

    return decorator
