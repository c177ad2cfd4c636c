"""
Permission request domain types (``permit_kernel.domain.permission``).

Responsibility
--------------
Pure value objects for the permission workflow: request kinds and
categories, approver roles, request status lifecycle, the append-only
approval log record, credentials, the student/approver context the
workflow reads, and the ``PermissionRequest`` snapshot itself.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/`` or outer layers.

Invariants enforced
-------------------
``PermissionRequest.__post_init__`` rejects any snapshot that breaks the
structural rules of the workflow:

* ``path`` is non-empty and has no duplicate role.
* Emergency paths never contain the floor-incharge role.
* ``current_level`` is a role in ``path`` or ``COMPLETED``.
* The approval log mirrors ``path``: entry *i* was made by role
  ``path[i]``, every entry before the last is an approval, and a denial
  can only be the last entry.
* ``status``/``current_level``/log length agree (pending at index *i*
  has *i* entries; approved has one entry per role; denied stops at the
  denying role).
* ``credentials`` may only be present on an approved, completed request.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Final, Literal, Union
from uuid import UUID

# =========================================================================
# Enumerations
# =========================================================================


class RequestKind(str, Enum):
    """Kind of permission; both kinds share one workflow shape."""

    OUTING = "outing"
    HOME = "home"


class Category(str, Enum):
    """Normal vs. emergency; fixed at creation, decides path length."""

    NORMAL = "normal"
    EMERGENCY = "emergency"


class ApproverRole(str, Enum):
    """Approver roles in escalation order."""

    FLOOR_INCHARGE = "floor-incharge"
    HOSTEL_INCHARGE = "hostel-incharge"
    WARDEN = "warden"

    @property
    def label(self) -> str:
        return self.value.replace("-", " ").title()


# Only block-and-floor scoped role; the others are block scoped.
FLOOR_SCOPED_ROLES: frozenset[ApproverRole] = frozenset({
    ApproverRole.FLOOR_INCHARGE,
})

COMPLETED: Final = "completed"

CurrentLevel = Union[ApproverRole, Literal["completed"]]


class RequestStatus(str, Enum):
    """Request lifecycle status."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.APPROVED,
    RequestStatus.DENIED,
})


class Decision(str, Enum):
    """Decision an approver records at their level."""

    APPROVE = "approve"
    DENY = "deny"


class StudentStatus(str, Enum):
    """Account status of a student."""

    ACTIVE = "Active"
    GRADUATED = "Graduated"
    INACTIVE = "Inactive"


ELIGIBLE_STUDENT_STATUSES: frozenset[StudentStatus] = frozenset({
    StudentStatus.ACTIVE,
})


class CredentialDirection(str, Enum):
    """Direction a gate credential authorizes."""

    OUTGOING = "outgoing"
    RETURN = "return"


# =========================================================================
# Context records (read-only to the workflow)
# =========================================================================


@dataclass(frozen=True)
class StudentCohort:
    """The part of a student record routing depends on."""

    block: str
    floor: str
    semester: int


@dataclass(frozen=True)
class StudentProfile:
    """Read-only student context."""

    student_id: UUID
    name: str
    roll_number: str
    block: str
    floor: str
    semester: int
    status: StudentStatus = StudentStatus.ACTIVE
    year: str | None = None
    parent_phone: str | None = None

    @property
    def cohort(self) -> StudentCohort:
        return StudentCohort(block=self.block, floor=self.floor, semester=self.semester)

    @property
    def can_submit(self) -> bool:
        return self.status in ELIGIBLE_STUDENT_STATUSES


@dataclass(frozen=True)
class ApproverProfile:
    """An acting principal resolved by the identity provider."""

    approver_id: UUID
    name: str
    email: str
    role: ApproverRole
    assigned_blocks: tuple[str, ...] = ()
    assigned_floors: tuple[str, ...] = ()


@dataclass(frozen=True)
class FirstLineRoute:
    """Year band and first-line approver identity resolved at submission."""

    year_band: str
    approver_email: str


# =========================================================================
# Payloads
# =========================================================================


@dataclass(frozen=True)
class OutingDetails:
    """Short outing on a single day."""

    outing_date: date
    out_time: time
    return_time: time
    purpose: str
    parent_contact: str

    def departure_at(self) -> datetime:
        return datetime.combine(self.outing_date, self.out_time, tzinfo=timezone.utc)

    def return_at(self) -> datetime:
        return datetime.combine(self.outing_date, self.return_time, tzinfo=timezone.utc)

    def to_dict(self) -> dict[str, str]:
        return {
            "outing_date": self.outing_date.isoformat(),
            "out_time": self.out_time.strftime("%H:%M"),
            "return_time": self.return_time.strftime("%H:%M"),
            "purpose": self.purpose,
            "parent_contact": self.parent_contact,
        }


@dataclass(frozen=True)
class HomeVisitDetails:
    """Travel home across one or more days."""

    going_date: date
    incoming_date: date
    home_town: str
    purpose: str
    parent_contact: str

    def departure_at(self) -> datetime:
        return datetime.combine(self.going_date, time.min, tzinfo=timezone.utc)

    def return_at(self) -> datetime:
        return datetime.combine(self.incoming_date, time.min, tzinfo=timezone.utc)

    def to_dict(self) -> dict[str, str]:
        return {
            "going_date": self.going_date.isoformat(),
            "incoming_date": self.incoming_date.isoformat(),
            "home_town": self.home_town,
            "purpose": self.purpose,
            "parent_contact": self.parent_contact,
        }


RequestDetails = Union[OutingDetails, HomeVisitDetails]


# =========================================================================
# Approval log and credentials
# =========================================================================


@dataclass(frozen=True)
class ApprovalAction:
    """One entry of the append-only approval log. Immutable."""

    sequence: int
    role: ApproverRole
    approver_id: UUID
    decision: Decision
    decided_at: datetime
    remarks: str = ""


@dataclass(frozen=True)
class Credential:
    """A time-boxed, single-use gate credential."""

    direction: CredentialDirection
    token: str
    issued_at: datetime
    valid_from: datetime
    valid_until: datetime
    consumed_at: datetime | None = None
    image: bytes | None = None

    def is_valid_at(self, when: datetime) -> bool:
        return (
            self.consumed_at is None
            and self.valid_from <= when <= self.valid_until
        )


@dataclass(frozen=True)
class CredentialPair:
    """Outgoing and return credentials issued together, exactly once."""

    outgoing: Credential
    returning: Credential

    def __iter__(self):
        yield self.outgoing
        yield self.returning

    @property
    def images_missing(self) -> bool:
        return self.outgoing.image is None or self.returning.image is None


# =========================================================================
# The request snapshot
# =========================================================================


@dataclass(frozen=True)
class PermissionRequest:
    """Immutable snapshot of a permission request.

    New states are produced by the transition engine as new snapshots;
    ``version`` is the persisted compare-and-swap counter the snapshot was
    read at.
    """

    request_id: UUID
    kind: RequestKind
    category: Category
    student_id: UUID
    block: str
    floor: str
    path: tuple[ApproverRole, ...]
    current_level: CurrentLevel
    status: RequestStatus
    details: RequestDetails
    routed_to: FirstLineRoute
    created_at: datetime
    actions: tuple[ApprovalAction, ...] = ()
    credentials: CredentialPair | None = None
    version: int = 1

    def __post_init__(self) -> None:
        if not self.path:
            raise ValueError("path must not be empty")
        if len(set(self.path)) != len(self.path):
            raise ValueError(f"path has duplicate roles: {self.path}")
        if (
            self.category == Category.EMERGENCY
            and ApproverRole.FLOOR_INCHARGE in self.path
        ):
            raise ValueError("emergency path must not include floor-incharge")
        if self.current_level != COMPLETED and self.current_level not in self.path:
            raise ValueError(
                f"current_level {self.current_level!r} is not in path {self.path}"
            )

        for index, action in enumerate(self.actions):
            if index >= len(self.path) or action.role != self.path[index]:
                raise ValueError(
                    f"approval log entry {index} ({action.role}) does not follow path"
                )
            if action.decision == Decision.DENY and index != len(self.actions) - 1:
                raise ValueError("no approval log entries may follow a denial")

        decided = len(self.actions)
        if self.status == RequestStatus.PENDING:
            if self.current_level == COMPLETED:
                raise ValueError("pending request cannot be completed")
            if decided != self.path.index(self.current_level):
                raise ValueError("pending request log length does not match level")
        elif self.status == RequestStatus.APPROVED:
            if self.current_level != COMPLETED or decided != len(self.path):
                raise ValueError("approved request must have cleared every level")
        else:
            if (
                not self.actions
                or self.actions[-1].decision != Decision.DENY
                or self.current_level != self.actions[-1].role
            ):
                raise ValueError("denied request must end with a denial at its level")

        if self.credentials is not None and not self.is_completed:
            raise ValueError("credentials exist only on approved, completed requests")

    # -- derived views -----------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_completed(self) -> bool:
        return (
            self.status == RequestStatus.APPROVED
            and self.current_level == COMPLETED
        )

    @property
    def awaiting_credentials(self) -> bool:
        return self.is_completed and self.credentials is None

    @property
    def parent_contact(self) -> str:
        return self.details.parent_contact

    @property
    def decided_roles(self) -> tuple[ApproverRole, ...]:
        return tuple(action.role for action in self.actions)

    @property
    def current_level_label(self) -> str:
        if self.current_level == COMPLETED:
            return COMPLETED
        return ApproverRole(self.current_level).value
