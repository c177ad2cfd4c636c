"""
DuplicateRequestGuard -- one in-flight request per student.

Responsibility:
    Admission check run before a request is created.  Any pending request
    of either kind blocks a new submission.

Architecture position:
    Kernel > Services.  Read-only against the repository; the partial
    unique index ``uq_permission_requests_one_pending`` backs it up when
    two submissions race past the check.
"""

from __future__ import annotations

from uuid import UUID

from permit_kernel.domain.protocols import RequestRepository
from permit_kernel.exceptions import ActiveRequestExistsError
from permit_kernel.logging_config import get_logger

logger = get_logger("services.duplicate_guard")


class DuplicateRequestGuard:
    """Rejects submissions from students who already have a pending request."""

    def __init__(self, repository: RequestRepository):
        self._repository = repository

    def check(self, student_id: UUID) -> None:
        active = self._repository.find_active(student_id)
        if active is None:
            return
        logger.info(
            "duplicate_request_rejected",
            extra={
                "student_id": str(student_id),
                "active_request_id": str(active.request_id),
                "active_kind": active.kind.value,
            },
        )
        raise ActiveRequestExistsError(str(student_id), str(active.request_id))
