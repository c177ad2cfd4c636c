"""
Module: permit_kernel.models.student
Responsibility: ORM persistence for students (requesters) and staff members
    (approvers).  The workflow reads both as immutable context through
    ``to_dto()``; only student administration writes them.

Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, CheckConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from permit_kernel.db.base import Base

if TYPE_CHECKING:
    from permit_kernel.domain.permission import ApproverProfile, StudentProfile


class StudentModel(Base):
    """A hostel resident who may request permissions."""

    __tablename__ = "students"

    __table_args__ = (
        CheckConstraint(
            "status IN ('Active', 'Graduated', 'Inactive')",
            name="ck_students_valid_status",
        ),
        Index("ix_students_block_floor", "block", "floor"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    roll_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    block: Mapped[str] = mapped_column(String(50), nullable=False)
    floor: Mapped[str] = mapped_column(String(20), nullable=False)
    semester: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    year: Mapped[str | None] = mapped_column(String(10), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Active")
    parent_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    def __repr__(self) -> str:
        return f"<Student {self.roll_number} {self.block}/{self.floor} {self.status}>"

    def to_dto(self) -> StudentProfile:
        """Convert ORM model to frozen domain DTO."""
        from permit_kernel.domain.permission import StudentProfile, StudentStatus

        return StudentProfile(
            student_id=self.id,
            name=self.name,
            roll_number=self.roll_number,
            block=self.block,
            floor=self.floor,
            semester=self.semester,
            status=StudentStatus(self.status),
            year=self.year,
            parent_phone=self.parent_phone,
        )


class StaffMemberModel(Base):
    """An approver with a role and an assigned block/floor scope."""

    __tablename__ = "staff_members"

    __table_args__ = (
        CheckConstraint(
            "role IN ('floor-incharge', 'hostel-incharge', 'warden')",
            name="ck_staff_members_valid_role",
        ),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(30), nullable=False)
    assigned_blocks: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    assigned_floors: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        return f"<StaffMember {self.email} {self.role}>"

    def to_dto(self) -> ApproverProfile:
        """Convert ORM model to frozen domain DTO."""
        from permit_kernel.domain.permission import ApproverProfile, ApproverRole

        return ApproverProfile(
            approver_id=self.id,
            name=self.name,
            email=self.email,
            role=ApproverRole(self.role),
            assigned_blocks=tuple(self.assigned_blocks or ()),
            assigned_floors=tuple(str(f) for f in self.assigned_floors or ()),
        )
