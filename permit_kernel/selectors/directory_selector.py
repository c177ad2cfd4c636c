"""
DirectorySelector -- student and staff lookups.

Implements the ``StudentDirectory`` and ``IdentityProvider`` protocols over
the ``students`` and ``staff_members`` tables.
"""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

from sqlalchemy import select

from permit_kernel.domain.permission import ApproverProfile, StudentProfile, StudentStatus
from permit_kernel.domain.routing import block_variants
from permit_kernel.models.student import StaffMemberModel, StudentModel
from permit_kernel.selectors.base import BaseSelector


class DirectorySelector(BaseSelector[StudentModel]):
    """Read-only access to requesters and approvers."""

    def get_student(self, student_id: UUID) -> StudentProfile | None:
        model = self.session.get(StudentModel, student_id)
        return model.to_dto() if model is not None else None

    def get_approver(self, approver_id: UUID) -> ApproverProfile | None:
        model = self.session.get(StaffMemberModel, approver_id)
        return model.to_dto() if model is not None else None

    def get_approver_by_email(self, email: str) -> ApproverProfile | None:
        model = self.session.execute(
            select(StaffMemberModel).where(StaffMemberModel.email == email.lower())
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def students_in_blocks(
        self,
        blocks: Sequence[str],
        student_ids: Sequence[UUID] | None = None,
        status: StudentStatus | None = None,
    ) -> list[StudentProfile]:
        variants = [v for block in blocks for v in block_variants(block)]
        stmt = select(StudentModel).where(StudentModel.block.in_(variants))
        if student_ids is not None:
            stmt = stmt.where(StudentModel.id.in_(list(student_ids)))
        if status is not None:
            stmt = stmt.where(StudentModel.status == status.value)
        models = self.session.execute(
            stmt.order_by(StudentModel.roll_number)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def graduated_students(self, blocks: Sequence[str]) -> list[StudentProfile]:
        """Passed-out students of ``blocks``, by roll number."""
        return self.students_in_blocks(blocks, status=StudentStatus.GRADUATED)
