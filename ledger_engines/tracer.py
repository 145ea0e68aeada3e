"""
ledger_engines.tracer -- LEDGER_ENGINE_TRACE records for the ledger engines.

Responsibility:
    ``@traced_engine`` wraps the projector, synchronizer and coverage
    engines and logs one record per call: engine_name, engine_version,
    input_fingerprint, duration_ms and result_rows.

    The fingerprint is a SHA-256 prefix over the chosen keyword arguments,
    e.g. the ``ProjectionFilters`` of a balance projection or the
    ``SyncRoute`` of a sync plan, so two passes over the same route or the
    same filter set can be matched in the log.  ``result_rows`` is the
    number of balances / coverage rows returned, or upserts plus removals
    for a sync plan.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.  Emits
    a log record only; the facility, actor and route of the calling service
    come from ``LogContext``.

Failure modes:
    - Fingerprint fields absent from kwargs are recorded as "null".
    - Dataclass arguments are canonicalized field by field; other unknown
      types fall back to ``str(value)``.

Usage:
    from ledger_engines.tracer import traced_engine

    @traced_engine("projector", "1.0", fingerprint_fields=("filters",))
    def project(movements, *, filters, registry):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import logging
import time
from collections.abc import Callable
from decimal import Decimal
from enum import Enum
from typing import Any

from ledger_kernel.logging_config import get_logger

_logger: logging.Logger = get_logger("engines.tracer")


def _canonicalize(value: Any) -> str:
    """Stable string form of an engine argument for fingerprinting."""
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, Decimal):
        return str(value.normalize())
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        return type(value).__name__ + _canonicalize(fields)
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda item: str(item[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """
    Deterministic 16-character SHA-256 prefix of the selected kwargs.

    Missing fields are recorded as "null".
    """
    parts = [f"{field}={_canonicalize(kwargs.get(field))}" for field in fingerprint_fields]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:16]


def _result_rows(result: Any) -> int | None:
    if isinstance(result, (list, tuple)):
        return len(result)
    upserts = getattr(result, "upserts", None)
    removals = getattr(result, "removals", None)
    if upserts is not None and removals is not None:
        return len(upserts) + len(removals)
    return None


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits LEDGER_ENGINE_TRACE for a ledger engine call."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = ""
            if fingerprint_fields:
                fp = compute_input_fingerprint(fingerprint_fields, kwargs)

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.info(
                "LEDGER_ENGINE_TRACE",
                extra={
                    "trace_type": "LEDGER_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": duration_ms,
                    "result_rows": _result_rows(result),
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
