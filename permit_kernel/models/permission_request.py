"""
Module: permit_kernel.models.permission_request
Responsibility: ORM persistence for permission requests and their approval
    log.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Status and current_level values are limited by check constraints.
    - ``version`` is the compare-and-swap counter; every accepted save
      bumps it by exactly one (see services/permission_repository.py).
    - At most one pending request per student (partial unique index).
    - Approval actions are append-only: UNIQUE(request_id, sequence) and
      UNIQUE(request_id, role) make a double append fail at the database,
      and ORM listeners forbid UPDATE/DELETE.

Failure modes:
    - IntegrityError on a duplicate approval log entry.
    - IntegrityError on a second pending request for one student.
    - ImmutabilityViolationError on approval action UPDATE/DELETE.
"""

from __future__ import annotations

import base64
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from permit_kernel.db.base import Base, UUIDString
from permit_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from permit_kernel.domain.permission import (
        ApprovalAction,
        Credential,
        CredentialPair,
        PermissionRequest,
    )


class PermissionRequestModel(Base):
    """Persistent permission request (outing or home).

    Contract:
        ``path``, ``category``, the block/floor snapshot and the routed
        first-line approver are written once at creation.  Terminal rows
        change only to receive credentials.
    """

    __tablename__ = "permission_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'denied')",
            name="ck_permission_requests_valid_status",
        ),
        CheckConstraint(
            "current_level IN ('floor-incharge', 'hostel-incharge', 'warden', 'completed')",
            name="ck_permission_requests_valid_level",
        ),
        CheckConstraint(
            "category IN ('normal', 'emergency')",
            name="ck_permission_requests_valid_category",
        ),
        CheckConstraint("version >= 1", name="ck_permission_requests_version"),
        Index("ix_permission_requests_student_status", "student_id", "status"),
        Index(
            "uq_permission_requests_one_pending",
            "student_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index(
            "ix_permission_requests_scope",
            "status", "current_level", "block", "floor",
        ),
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    student_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("students.id"), nullable=False,
    )
    block: Mapped[str] = mapped_column(String(50), nullable=False)
    floor: Mapped[str] = mapped_column(String(20), nullable=False)
    path: Mapped[list[Any]] = mapped_column(JSON, nullable=False)
    current_level: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    year_band: Mapped[str] = mapped_column(String(10), nullable=False)
    routed_approver_email: Mapped[str] = mapped_column(String(200), nullable=False)
    parent_contact: Mapped[str] = mapped_column(String(20), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    credentials: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    actions: Mapped[list["ApprovalActionModel"]] = relationship(
        "ApprovalActionModel",
        back_populates="request",
        order_by="ApprovalActionModel.sequence",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<PermissionRequest {self.id} {self.kind}/{self.category} "
            f"status={self.status} level={self.current_level} v{self.version}>"
        )

    def to_dto(self) -> PermissionRequest:
        """Convert ORM model to frozen domain DTO."""
        from permit_kernel.domain.payloads import details_from_dict
        from permit_kernel.domain.permission import (
            COMPLETED,
            ApproverRole,
            Category,
            FirstLineRoute,
            PermissionRequest,
            RequestKind,
            RequestStatus,
        )

        kind = RequestKind(self.kind)
        current_level = (
            COMPLETED if self.current_level == COMPLETED
            else ApproverRole(self.current_level)
        )
        return PermissionRequest(
            request_id=self.id,
            kind=kind,
            category=Category(self.category),
            student_id=self.student_id,
            block=self.block,
            floor=self.floor,
            path=tuple(ApproverRole(r) for r in self.path),
            current_level=current_level,
            status=RequestStatus(self.status),
            details=details_from_dict(kind, self.details),
            routed_to=FirstLineRoute(
                year_band=self.year_band,
                approver_email=self.routed_approver_email,
            ),
            created_at=self.created_at,
            actions=tuple(a.to_dto() for a in self.actions),
            credentials=credentials_from_json(self.credentials),
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: PermissionRequest) -> PermissionRequestModel:
        """Create ORM model from domain DTO (without its approval log)."""
        return cls(
            id=dto.request_id,
            kind=dto.kind.value,
            category=dto.category.value,
            student_id=dto.student_id,
            block=dto.block,
            floor=dto.floor,
            path=[r.value for r in dto.path],
            current_level=dto.current_level_label,
            status=dto.status.value,
            year_band=dto.routed_to.year_band,
            routed_approver_email=dto.routed_to.approver_email,
            parent_contact=dto.parent_contact,
            details=dto.details.to_dict(),
            credentials=credentials_to_json(dto.credentials),
            created_at=dto.created_at,
            version=dto.version,
        )


class ApprovalActionModel(Base):
    """Persistent approval log entry. Append-only.

    Contract:
        Entries are immutable once created -- no UPDATE, no DELETE.
    """

    __tablename__ = "approval_actions"

    __table_args__ = (
        Index("ix_approval_actions_request_id", "request_id"),
        UniqueConstraint(
            "request_id", "sequence",
            name="uq_approval_actions_sequence",
        ),
        UniqueConstraint(
            "request_id", "role",
            name="uq_approval_actions_role",
        ),
        CheckConstraint(
            "decision IN ('approve', 'deny')",
            name="ck_approval_actions_valid_decision",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("permission_requests.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(30), nullable=False)
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    decision: Mapped[str] = mapped_column(String(10), nullable=False)
    remarks: Mapped[str] = mapped_column(Text, default="", nullable=False)
    decided_at: Mapped[datetime] = mapped_column(nullable=False)

    request: Mapped["PermissionRequestModel"] = relationship(
        "PermissionRequestModel",
        back_populates="actions",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalAction request={self.request_id} #{self.sequence} "
            f"{self.role} {self.decision}>"
        )

    def to_dto(self) -> ApprovalAction:
        """Convert ORM model to frozen domain DTO."""
        from permit_kernel.domain.permission import (
            ApprovalAction,
            ApproverRole,
            Decision,
        )

        return ApprovalAction(
            sequence=self.sequence,
            role=ApproverRole(self.role),
            approver_id=self.approver_id,
            decision=Decision(self.decision),
            decided_at=self.decided_at,
            remarks=self.remarks,
        )

    @classmethod
    def from_dto(cls, request_id: UUID, dto: ApprovalAction) -> ApprovalActionModel:
        """Create ORM model from domain DTO."""
        return cls(
            request_id=request_id,
            sequence=dto.sequence,
            role=dto.role.value,
            approver_id=dto.approver_id,
            decision=dto.decision.value,
            remarks=dto.remarks,
            decided_at=dto.decided_at,
        )


# =============================================================================
# Credential JSON column
# =============================================================================


def _credential_to_json(credential: Credential) -> dict[str, Any]:
    return {
        "direction": credential.direction.value,
        "token": credential.token,
        "issued_at": credential.issued_at.isoformat(),
        "valid_from": credential.valid_from.isoformat(),
        "valid_until": credential.valid_until.isoformat(),
        "consumed_at": (
            credential.consumed_at.isoformat() if credential.consumed_at else None
        ),
        "image": (
            base64.b64encode(credential.image).decode("ascii")
            if credential.image is not None else None
        ),
    }


def _credential_from_json(data: dict[str, Any]) -> Credential:
    from permit_kernel.domain.permission import Credential, CredentialDirection

    return Credential(
        direction=CredentialDirection(data["direction"]),
        token=data["token"],
        issued_at=datetime.fromisoformat(data["issued_at"]),
        valid_from=datetime.fromisoformat(data["valid_from"]),
        valid_until=datetime.fromisoformat(data["valid_until"]),
        consumed_at=(
            datetime.fromisoformat(data["consumed_at"])
            if data.get("consumed_at") else None
        ),
        image=base64.b64decode(data["image"]) if data.get("image") else None,
    )


def credentials_to_json(pair: CredentialPair | None) -> dict[str, Any] | None:
    if pair is None:
        return None
    return {
        "outgoing": _credential_to_json(pair.outgoing),
        "return": _credential_to_json(pair.returning),
    }


def credentials_from_json(data: dict[str, Any] | None) -> CredentialPair | None:
    if not data:
        return None
    from permit_kernel.domain.permission import CredentialPair

    return CredentialPair(
        outgoing=_credential_from_json(data["outgoing"]),
        returning=_credential_from_json(data["return"]),
    )


# =============================================================================
# ORM-Level Immutability for the Approval Log (Append-Only)
# =============================================================================


@event.listens_for(ApprovalActionModel, "before_update")
def prevent_action_update(mapper, connection, target):
    """Prevent updates to approval log entries."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalAction",
        entity_id=str(target.id),
        reason="Approval log entries are immutable -- cannot modify",
    )


@event.listens_for(ApprovalActionModel, "before_delete")
def prevent_action_delete(mapper, connection, target):
    """Prevent deletion of approval log entries."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalAction",
        entity_id=str(target.id),
        reason="Approval log entries are immutable -- cannot delete",
    )
