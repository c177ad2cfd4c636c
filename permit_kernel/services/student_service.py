"""
StudentService -- year promotion and graduation.

Responsibility:
    Lets a hostel-incharge move students in their blocks to the next year
    band or mark them graduated, and lists the graduated ones.  Graduated
    students can no longer submit requests.

Failure modes:
    - InsufficientRoleError if the actor is not a hostel-incharge.
    - InvalidPromotionError on an unknown target year or empty selection.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from permit_kernel.domain.permission import (
    ApproverProfile,
    ApproverRole,
    StudentProfile,
    StudentStatus,
)
from permit_kernel.exceptions import InsufficientRoleError, InvalidPromotionError
from permit_kernel.logging_config import get_logger
from permit_kernel.models.student import StudentModel
from permit_kernel.selectors.directory_selector import DirectorySelector
from permit_kernel.services.base import BaseService

logger = get_logger("services.student")

GRADUATED = "Graduated"

# target year -> first semester of that year
PROMOTION_SEMESTERS: dict[str, int] = {
    "2nd": 3,
    "3rd": 5,
    "4th": 7,
}


def _require_hostel_incharge(actor: ApproverProfile) -> None:
    if actor.role != ApproverRole.HOSTEL_INCHARGE:
        raise InsufficientRoleError(
            str(actor.approver_id), actor.role.value,
            ApproverRole.HOSTEL_INCHARGE.value,
        )


@dataclass(frozen=True)
class PromotionResult:
    target_year: str
    promoted: tuple[StudentProfile, ...]
    skipped: tuple[UUID, ...]


class StudentService(BaseService[StudentModel]):
    def graduated_students(self, actor: ApproverProfile) -> list[StudentProfile]:
        """Passed-out students in the hostel-incharge's blocks."""
        _require_hostel_incharge(actor)
        return DirectorySelector(self.session).graduated_students(actor.assigned_blocks)

    def promote_students(
        self,
        actor: ApproverProfile,
        student_ids: Sequence[UUID],
        target_year: str,
    ) -> PromotionResult:
        _require_hostel_incharge(actor)
        if not student_ids:
            raise InvalidPromotionError("no students selected")
        if target_year != GRADUATED and target_year not in PROMOTION_SEMESTERS:
            raise InvalidPromotionError(f"unknown target year {target_year!r}")

        directory = DirectorySelector(self.session)
        in_scope = directory.students_in_blocks(actor.assigned_blocks, student_ids)
        in_scope_ids = [s.student_id for s in in_scope]
        skipped = tuple(sid for sid in student_ids if sid not in set(in_scope_ids))

        if target_year == GRADUATED:
            values = {"status": StudentStatus.GRADUATED.value}
        else:
            values = {
                "year": target_year,
                "semester": PROMOTION_SEMESTERS[target_year],
                "status": StudentStatus.ACTIVE.value,
            }

        if in_scope_ids:
            self.session.execute(
                update(StudentModel)
                .where(StudentModel.id.in_(in_scope_ids))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.session.flush()
            self.session.expire_all()

        promoted = tuple(directory.get_student(sid) for sid in in_scope_ids)

        logger.info(
            "students_promoted",
            extra={
                "actor_id": str(actor.approver_id),
                "target_year": target_year,
                "promoted_count": len(promoted),
                "skipped_count": len(skipped),
            },
        )
        return PromotionResult(
            target_year=target_year, promoted=promoted, skipped=skipped,
        )
