"""
Credential token codec.

A credential token is ``<body>.<signature>`` where ``body`` is the base64url
canonical JSON of the claims and ``signature`` is HMAC-SHA256 over those
bytes.  The gate flow verifies a token with ``decode_credential_token`` and
the shared key alone; it never queries the workflow.

Token ids are derived from (request id, direction), so a token is unique per
request and per direction and re-deriving it yields the same id.
"""

from __future__ import annotations

import binascii
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID, uuid5

from permit_kernel.domain.permission import (
    Credential,
    CredentialDirection,
    CredentialPair,
    PermissionRequest,
)
from permit_kernel.exceptions import CredentialTokenError
from permit_kernel.utils.hashing import b64url_decode, sign_payload, verify_signature

_TOKEN_NAMESPACE = UUID("6f1c1d0e-8a8e-4c55-9a4f-2b6a2b7f9d10")


@dataclass(frozen=True)
class CredentialClaims:
    """Everything the gate needs to validate a scan offline."""

    token_id: UUID
    request_id: UUID
    student_id: UUID
    kind: str
    direction: CredentialDirection
    valid_from: datetime
    valid_until: datetime

    def to_dict(self) -> dict:
        return {
            "jti": str(self.token_id),
            "rid": str(self.request_id),
            "sid": str(self.student_id),
            "kind": self.kind,
            "dir": self.direction.value,
            "nbf": self.valid_from.isoformat(),
            "exp": self.valid_until.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> CredentialClaims:
        return cls(
            token_id=UUID(data["jti"]),
            request_id=UUID(data["rid"]),
            student_id=UUID(data["sid"]),
            kind=data["kind"],
            direction=CredentialDirection(data["dir"]),
            valid_from=datetime.fromisoformat(data["nbf"]),
            valid_until=datetime.fromisoformat(data["exp"]),
        )


def token_id_for(request_id: UUID, direction: CredentialDirection) -> UUID:
    return uuid5(_TOKEN_NAMESPACE, f"{request_id}:{direction.value}")


def encode_credential_token(claims: CredentialClaims, key: bytes) -> str:
    body, signature = sign_payload(claims.to_dict(), key)
    return f"{body}.{signature}"


def decode_credential_token(token: str, key: bytes) -> CredentialClaims:
    """
    Verify ``token`` and return its claims.

    Raises:
        CredentialTokenError: malformed token, bad signature or bad claims.
    """
    try:
        body_part, signature_part = token.split(".")
        body = b64url_decode(body_part)
        signature = b64url_decode(signature_part)
    except (ValueError, binascii.Error):
        raise CredentialTokenError("malformed token") from None

    if not verify_signature(body, signature, key):
        raise CredentialTokenError("signature mismatch")

    try:
        return CredentialClaims.from_dict(json.loads(body))
    except (KeyError, TypeError, ValueError) as exc:
        raise CredentialTokenError(f"bad claims: {exc}") from None


def build_credential_pair(
    request: PermissionRequest,
    issued_at: datetime,
    key: bytes,
    *,
    outgoing_hours: int = 24,
    return_hours: int = 24,
) -> CredentialPair:
    """
    Build the outgoing/return pair for a completed request.

    Outgoing is valid from ``issued_at`` for ``outgoing_hours``; return is
    valid from the declared return time for ``return_hours``.
    """
    if not request.is_completed:
        raise ValueError(f"request {request.request_id} is not approved and completed")

    windows = {
        CredentialDirection.OUTGOING: (
            issued_at, issued_at + timedelta(hours=outgoing_hours),
        ),
        CredentialDirection.RETURN: (
            request.details.return_at(),
            request.details.return_at() + timedelta(hours=return_hours),
        ),
    }

    credentials = {}
    for direction, (valid_from, valid_until) in windows.items():
        claims = CredentialClaims(
            token_id=token_id_for(request.request_id, direction),
            request_id=request.request_id,
            student_id=request.student_id,
            kind=request.kind.value,
            direction=direction,
            valid_from=valid_from,
            valid_until=valid_until,
        )
        credentials[direction] = Credential(
            direction=direction,
            token=encode_credential_token(claims, key),
            issued_at=issued_at,
            valid_from=valid_from,
            valid_until=valid_until,
        )

    return CredentialPair(
        outgoing=credentials[CredentialDirection.OUTGOING],
        returning=credentials[CredentialDirection.RETURN],
    )


def render_payload(request: PermissionRequest, credential: Credential) -> dict:
    """Data encoded into a credential image."""
    return {
        "token": credential.token,
        "request_id": str(request.request_id),
        "student_id": str(request.student_id),
        "type": credential.direction.value,
        "valid_until": credential.valid_until.isoformat(),
    }
