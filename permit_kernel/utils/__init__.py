"""Utility modules for the permit kernel."""

from permit_kernel.utils.hashing import (
    canonicalize_json,
    hash_payload,
    sign_payload,
    verify_signature,
)

__all__ = [
    "canonicalize_json",
    "hash_payload",
    "sign_payload",
    "verify_signature",
]
