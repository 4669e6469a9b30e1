"""
SHA-256 helpers for audit payload hashes and configuration checksums.

Payload hashes must come out identical in any process, so dicts are
rendered as canonical JSON first: sorted keys, no whitespace, enums by
value, UUIDs and datetimes as strings.
"""

import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


def _encode(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"cannot canonicalize {type(obj).__name__}")


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def hash_payload(payload: dict) -> str:
    """Hex SHA-256 of the canonical JSON rendering of ``payload``."""
    return hash_bytes(canonicalize_json(payload).encode("utf-8"))


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
