"""
SubmissionService -- creates permission requests.

Responsibility:
    Validates the requester and payload, runs the duplicate-request guard,
    resolves the route, and inserts the initial snapshot
    (``pending@path[0]``, empty log).

Architecture position:
    Kernel > Services.  Flushes only; the caller commits.

Check order:
    1. StudentNotFoundError -- unknown requester.
    2. IneligibleRequesterError -- graduated/inactive account.
    3. InvalidPayloadError -- malformed payload.
    4. ActiveRequestExistsError -- a pending request is already in flight.
    Nothing is written unless every check passes.
"""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from permit_kernel.domain.clock import Clock, SystemClock
from permit_kernel.domain.payloads import parse_details
from permit_kernel.domain.permission import (
    Category,
    PermissionRequest,
    RequestDetails,
    RequestKind,
)
from permit_kernel.domain.protocols import CohortMapper, StudentDirectory
from permit_kernel.domain.routing import AcademicCohortMapper, resolve_route
from permit_kernel.domain.transitions import open_request
from permit_kernel.exceptions import (
    ActiveRequestExistsError,
    IneligibleRequesterError,
    StudentNotFoundError,
)
from permit_kernel.logging_config import get_logger
from permit_kernel.models.permission_request import PermissionRequestModel
from permit_kernel.selectors.directory_selector import DirectorySelector
from permit_kernel.services.base import BaseService
from permit_kernel.services.duplicate_guard import DuplicateRequestGuard
from permit_kernel.services.permission_repository import PermissionRepository

logger = get_logger("services.submission")


class SubmissionService(BaseService[PermissionRequestModel]):
    """Admits new permission requests."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        mapper: CohortMapper | None = None,
        directory: StudentDirectory | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._mapper = mapper or AcademicCohortMapper()
        self._directory = directory or DirectorySelector(session)
        self._repository = PermissionRepository(session, self._clock)
        self._guard = DuplicateRequestGuard(self._repository)

    def submit(
        self,
        student_id: UUID,
        kind: RequestKind,
        category: Category,
        payload: Mapping[str, Any] | RequestDetails,
        request_id: UUID | None = None,
    ) -> PermissionRequest:
        student = self._directory.get_student(student_id)
        if student is None:
            raise StudentNotFoundError(str(student_id))
        if not student.can_submit:
            raise IneligibleRequesterError(str(student_id), student.status.value)

        details = parse_details(kind, payload)

        self._guard.check(student_id)

        plan = resolve_route(student.cohort, category, self._mapper)
        request = open_request(
            request_id=request_id or uuid4(),
            kind=kind,
            category=category,
            student=student,
            details=details,
            plan=plan,
            created_at=self._clock.now(),
        )

        savepoint = self.session.begin_nested()
        try:
            request = self._repository.add(request)
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            active = self._repository.find_active(student_id)
            raise ActiveRequestExistsError(
                str(student_id), str(active.request_id) if active else "unknown",
            ) from None

        logger.info(
            "permission_request_submitted",
            extra={
                "request_id": str(request.request_id),
                "student_id": str(student_id),
                "kind": kind.value,
                "category": category.value,
                "path": [role.value for role in request.path],
                "current_level": request.current_level_label,
                "year_band": request.routed_to.year_band,
                "routed_to": request.routed_to.approver_email,
            },
        )
        return request
