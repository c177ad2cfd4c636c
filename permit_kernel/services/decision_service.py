"""
DecisionService -- records approver decisions on permission requests.

Responsibility:
    Loads the request, resolves the acting approver, runs the transition
    engine, and saves the next snapshot with a compare-and-swap on the
    version it read.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/.
    Flushes only; the caller commits, then runs side effects.

Invariants enforced:
    - Exactly one approval log entry per accepted decision.
    - Two decisions racing on one request are linearized: the loser sees
      either ``DecisionAlreadyRecordedError``/``RequestAlreadyResolvedError``
      (it read after the winner committed) or ``OptimisticLockError`` (it
      read before), never a silent overwrite.

Failure modes:
    - RequestNotFoundError, ApproverNotFoundError.
    - ApproverOutOfScopeError, UnauthorizedApproverError.
    - RequestAlreadyResolvedError, DecisionAlreadyRecordedError,
      OptimisticLockError.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from permit_kernel.domain.clock import Clock, SystemClock
from permit_kernel.domain.permission import (
    ApproverProfile,
    Decision,
    PermissionRequest,
)
from permit_kernel.domain.protocols import IdentityProvider
from permit_kernel.domain.transitions import apply_decision
from permit_kernel.exceptions import ApproverNotFoundError, PermitKernelError
from permit_kernel.logging_config import get_logger
from permit_kernel.models.permission_request import PermissionRequestModel
from permit_kernel.selectors.directory_selector import DirectorySelector
from permit_kernel.services.base import BaseService
from permit_kernel.services.permission_repository import PermissionRepository

logger = get_logger("services.decision")


@dataclass(frozen=True)
class DecisionOutcome:
    """Snapshots on either side of one accepted decision."""

    before: PermissionRequest
    after: PermissionRequest
    approver: ApproverProfile
    decision: Decision

    @property
    def reached_approval(self) -> bool:
        return self.after.is_completed


class DecisionService(BaseService[PermissionRequestModel]):
    """Applies approve/deny decisions."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        identity: IdentityProvider | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._identity = identity or DirectorySelector(session)
        self._repository = PermissionRepository(session, self._clock)

    def decide(
        self,
        request_id: UUID,
        approver_id: UUID,
        decision: Decision,
        remarks: str | None = None,
    ) -> DecisionOutcome:
        request = self._repository.get(request_id)

        approver = self._identity.get_approver(approver_id)
        if approver is None:
            raise ApproverNotFoundError(str(approver_id))

        try:
            after = apply_decision(
                request, approver, decision, self._clock.now(), remarks,
            )
            saved = self._repository.save(after, expected_version=request.version)
        except PermitKernelError as exc:
            logger.info(
                "permission_decision_rejected",
                extra={
                    "request_id": str(request_id),
                    "approver_id": str(approver_id),
                    "approver_role": approver.role.value,
                    "decision": decision.value,
                    "reason_code": exc.code,
                },
            )
            raise

        logger.info(
            "permission_decision_recorded",
            extra={
                "request_id": str(request_id),
                "approver_id": str(approver_id),
                "approver_role": approver.role.value,
                "decision": decision.value,
                "status": saved.status.value,
                "current_level": saved.current_level_label,
                "version": saved.version,
            },
        )
        return DecisionOutcome(
            before=request, after=saved, approver=approver, decision=decision,
        )
