"""
payables_engines.tracer -- PAYABLES_ENGINE_TRACE records for engine calls.

Responsibility:
    ``@traced_engine`` wraps a pure engine method and logs one trace record
    per call: which engine and version ran, a fingerprint of the inputs
    that determine its result, how long it took, and whether it raised.

Architecture position:
    Engines. The decorator reads arguments and writes a log line; it does
    not touch inputs or results.

Invariants:
    - Equal inputs give equal fingerprints across processes. Inputs are
      reduced to plain JSON (dataclasses to sorted field maps, Decimals to
      their string form, enums to their value) before hashing.
    - Exceptions from the engine propagate unchanged after the trace is
      written with ``outcome="error"``.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import json
import time
from collections.abc import Callable, Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar

from payables_kernel.logging_config import get_logger

logger = get_logger("engines.tracer")

TRACE_TYPE = "PAYABLES_ENGINE_TRACE"
FINGERPRINT_LENGTH = 16

F = TypeVar("F", bound=Callable[..., Any])


def _plain(value: Any) -> Any:
    """Reduce a value to JSON-native types for fingerprinting."""
    if isinstance(value, Enum):
        return _plain(value.value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_plain(v) for v in value]
        return sorted(items, key=repr) if isinstance(value, (set, frozenset)) else items
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """Hex SHA-256 prefix over the named arguments (missing ones count as null)."""
    selected = {name: _plain(arguments.get(name)) for name in fingerprint_fields}
    canonical = json.dumps(selected, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable[[F], F]:
    """
    Trace every call of the decorated engine function.

    ``fingerprint_fields`` names parameters of the wrapped function; they
    may be passed positionally or by keyword.
    """

    def decorator(func: F) -> F:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                arguments = signature.bind_partial(*args, **kwargs).arguments
                fingerprint = compute_input_fingerprint(fingerprint_fields, arguments)

            outcome = "error"
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                outcome = "ok"
                return result
            finally:
                logger.info(
                    TRACE_TYPE,
                    extra={
                        "trace_type": TRACE_TYPE,
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fingerprint,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 3),
                        "outcome": outcome,
                        "function": func.__qualname__,
                    },
                )

        return wrapper  # type: ignore[return-value]

    return decorator
