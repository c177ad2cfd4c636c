"""
RequestSelector -- status counts for student and approver dashboards.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select

from permit_kernel.domain.permission import ApproverRole, Decision, RequestStatus
from permit_kernel.domain.routing import block_variants
from permit_kernel.models.permission_request import (
    ApprovalActionModel,
    PermissionRequestModel,
)
from permit_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class RequestStats:
    pending: int = 0
    approved: int = 0
    denied: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.approved + self.denied


class RequestSelector(BaseSelector[PermissionRequestModel]):
    """Aggregate counts; never returns ORM rows."""

    def stats_for_student(self, student_id: UUID) -> RequestStats:
        rows = self.session.execute(
            select(PermissionRequestModel.status, func.count())
            .where(PermissionRequestModel.student_id == student_id)
            .group_by(PermissionRequestModel.status)
        ).all()
        counts = {status: n for status, n in rows}
        return RequestStats(
            pending=counts.get(RequestStatus.PENDING.value, 0),
            approved=counts.get(RequestStatus.APPROVED.value, 0),
            denied=counts.get(RequestStatus.DENIED.value, 0),
        )

    def stats_for_scope(
        self,
        role: ApproverRole,
        blocks: Sequence[str],
        floors: Sequence[str] | None = None,
    ) -> RequestStats:
        """
        Pending = waiting on ``role`` in scope.  Approved/denied = decisions
        ``role`` has recorded on requests in scope.
        """
        variants = [v for block in blocks for v in block_variants(block)]

        in_scope = [PermissionRequestModel.block.in_(variants)]
        if floors:
            in_scope.append(PermissionRequestModel.floor.in_([str(f) for f in floors]))

        pending = self.session.execute(
            select(func.count())
            .select_from(PermissionRequestModel)
            .where(
                PermissionRequestModel.status == RequestStatus.PENDING.value,
                PermissionRequestModel.current_level == role.value,
                *in_scope,
            )
        ).scalar_one()

        rows = self.session.execute(
            select(ApprovalActionModel.decision, func.count())
            .join(
                PermissionRequestModel,
                PermissionRequestModel.id == ApprovalActionModel.request_id,
            )
            .where(ApprovalActionModel.role == role.value, *in_scope)
            .group_by(ApprovalActionModel.decision)
        ).all()
        decided = {decision: n for decision, n in rows}

        return RequestStats(
            pending=pending,
            approved=decided.get(Decision.APPROVE.value, 0),
            denied=decided.get(Decision.DENY.value, 0),
        )
