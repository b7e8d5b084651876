"""Content hashing and TTL expiry helpers."""
from __future__ import annotations

import hashlib
import json
from typing import Any, Union

from . import timeutils


def sha256(payload: Union[str, bytes]) -> str:
    """Compute the hex SHA-256 digest of a payload."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def hash_payload(payload: Any) -> str:
    """Hash a string as-is, anything else by its canonical JSON form."""
    if isinstance(payload, (str, bytes)):
        return sha256(payload)
    return sha256(canonical_json(payload))


def compute_expiry(ttl_ms: int) -> int:
    return timeutils.now_ms() + ttl_ms


def is_expired(expires_at_ms: int) -> bool:
    return expires_at_ms <= timeutils.now_ms()
