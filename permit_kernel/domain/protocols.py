"""
Collaborator contracts consumed by the permission workflow.

The kernel depends on these protocols only; concrete implementations live
in ``permit_kernel.services`` (SQL-backed) and ``permit_services`` (SMS,
real-time, rendering).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, Sequence
from uuid import UUID

from permit_kernel.domain.permission import (
    ApproverProfile,
    ApproverRole,
    FirstLineRoute,
    PermissionRequest,
    StudentProfile,
)


class IdentityProvider(Protocol):
    """Resolves an acting principal to role and assigned scope."""

    def get_approver(self, approver_id: UUID) -> ApproverProfile | None:
        ...


class StudentDirectory(Protocol):
    """Read-only student context."""

    def get_student(self, student_id: UUID) -> StudentProfile | None:
        ...


class CohortMapper(Protocol):
    """(semester, block) -> year band and first-line approver identity."""

    def map(self, semester: int, block: str) -> FirstLineRoute:
        ...


class RequestRepository(Protocol):
    """Persistence of permission requests with compare-and-swap saves."""

    def find(self, request_id: UUID) -> PermissionRequest | None:
        ...

    def find_active(self, student_id: UUID) -> PermissionRequest | None:
        ...

    def add(self, request: PermissionRequest) -> PermissionRequest:
        ...

    def save(self, request: PermissionRequest, expected_version: int) -> PermissionRequest:
        ...

    def find_by_scope(
        self,
        role: ApproverRole,
        blocks: Sequence[str],
        floors: Sequence[str] | None = None,
    ) -> list[PermissionRequest]:
        ...


class SmsOutcome(str, Enum):
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class SmsResult:
    outcome: SmsOutcome
    to_number: str | None = None
    message_sid: str | None = None
    reason: str | None = None

    @property
    def delivered(self) -> bool:
        return self.outcome == SmsOutcome.DELIVERED


class SmsGateway(Protocol):
    def send(self, phone_number: str | None, text: str) -> SmsResult:
        ...


class CredentialRenderer(Protocol):
    """Turns a credential payload into image bytes (e.g. a QR code PNG)."""

    def render(self, payload: dict[str, Any]) -> bytes:
        ...


class RealtimePublisher(Protocol):
    def publish(self, scope_key: str, event_name: str, payload: dict[str, Any]) -> None:
        ...


class NoticeStore(Protocol):
    """Persists student-facing notices."""

    def record(
        self,
        *,
        student_id: UUID,
        request_id: UUID,
        title: str,
        message: str,
        category: str,
    ) -> UUID:
        ...
