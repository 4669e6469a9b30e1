"""
Invocation tracing for pure engines.

``@traced_engine`` logs one ``engine_invoked`` record (DEBUG) per call with
the engine name and version, the size of each fingerprinted input, the
duration, and a 16-hex-char SHA-256 fingerprint of those inputs.  Two runs
over the same submissions produce the same fingerprint, which makes it
possible to tell from logs alone whether a reconciliation saw new input.

Fingerprinted arguments must be passed by keyword.  Missing ones hash as
``null``.  The decorator never touches its inputs or the result.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import logging
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from campaign_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")


def _canonical(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _canonical({f.name: getattr(value, f.name) for f in dataclasses.fields(value)})
    if isinstance(value, Mapping):
        return "{" + ",".join(
            f"{k}:{_canonical(v)}" for k, v in sorted(value.items(), key=lambda kv: str(kv[0]))
        ) + "}"
    if isinstance(value, (set, frozenset)):
        return "[" + ",".join(sorted(_canonical(v) for v in value)) + "]"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonical(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(fields: tuple[str, ...], kwargs: Mapping[str, Any]) -> str:
    canonical = "|".join(f"{name}={_canonical(kwargs.get(name))}" for name in fields)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.monotonic()
            result = func(*args, **kwargs)
            elapsed_ms = round((time.monotonic() - started) * 1000, 2)

            if _logger.isEnabledFor(logging.DEBUG):
                _logger.debug(
                    "engine_invoked",
                    extra={
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "function": func.__qualname__,
                        "input_fingerprint": compute_input_fingerprint(
                            fingerprint_fields, kwargs
                        ),
                        "input_sizes": {
                            name: len(kwargs[name])
                            for name in fingerprint_fields
                            if hasattr(kwargs.get(name), "__len__")
                        },
                        "duration_ms": elapsed_ms,
                    },
                )
            return result

        return wrapper

    return decorator
