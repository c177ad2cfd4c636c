"""
Deterministic hashing and signing utilities.

Credential tokens and the configuration checksum are both computed over
canonical JSON so that the same claims always produce the same bytes.
"""

import base64
import hashlib
import hmac
import json
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of special types (datetime, UUID, enums)
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def sign_payload(payload: dict, key: bytes) -> tuple[str, str]:
    """
    Sign the canonical form of ``payload`` with HMAC-SHA256.

    Returns:
        (base64url body, base64url signature)
    """
    body = canonicalize_json(payload).encode("utf-8")
    signature = hmac.new(key, body, hashlib.sha256).digest()
    return b64url_encode(body), b64url_encode(signature)


def verify_signature(body: bytes, signature: bytes, key: bytes) -> bool:
    expected = hmac.new(key, body, hashlib.sha256).digest()
    return hmac.compare_digest(expected, signature)
