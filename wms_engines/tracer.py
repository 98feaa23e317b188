"""
Engine call tracing.

``@traced_engine`` wraps a pure engine entry point and logs one
``WMS_ENGINE_TRACE`` record per call:

    engine_name, engine_version, function, input_fingerprint,
    duration_ms, outcome ("ok" or the exception class name)

The fingerprint is the first 16 hex chars of a SHA-256 over a canonical
rendering of the chosen keyword arguments.  Two allocation runs over equal
costs and lines log the same fingerprint, which is how a stored allocation
can be matched to the inputs that produced it.

Canonical rendering:
    Money / UnitCost   -> "<cents><currency>"
    Decimal            -> normalized string ("2.50" and "2.5" agree)
    dataclass          -> its fields in declaration order
    mapping            -> items sorted by key
    list / tuple       -> items in order
    Enum               -> its value
    anything else      -> str(value)

Usage::

    @traced_engine("landed_cost", "1.0", fingerprint_fields=("costs", "lines"))
    def allocate(self, *, costs, lines, currency):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import time
from collections.abc import Callable, Mapping
from decimal import Decimal
from enum import Enum
from typing import Any

from wms_kernel.domain.values import Money, UnitCost
from wms_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

TRACE_MESSAGE = "WMS_ENGINE_TRACE"


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, (Money, UnitCost)):
        cents = value.cents.normalize() if isinstance(value.cents, Decimal) else value.cents
        return f"{cents}{value.currency.code}"
    if isinstance(value, Decimal):
        return str(value.normalize())
    if isinstance(value, Enum):
        return str(value.value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        body = ",".join(
            f"{f.name}={_canonicalize(getattr(value, f.name))}" for f in dataclasses.fields(value)
        )
        return f"{type(value).__name__}({body})"
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: Mapping[str, Any],
) -> str:
    """16-hex-char SHA-256 of the named kwargs; absent ones count as null."""
    canonical = "|".join(f"{name}={_canonicalize(kwargs.get(name))}" for name in fingerprint_fields)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = (
                compute_input_fingerprint(fingerprint_fields, kwargs) if fingerprint_fields else ""
            )
            outcome = "ok"
            started = time.monotonic()
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                outcome = type(exc).__name__
                raise
            finally:
                _logger.info(
                    TRACE_MESSAGE,
                    extra={
                        "trace_type": TRACE_MESSAGE,
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "function": func.__qualname__,
                        "input_fingerprint": fingerprint,
                        "duration_ms": round((time.monotonic() - started) * 1000, 2),
                        "outcome": outcome,
                    },
                )

        return wrapper

    return decorator
