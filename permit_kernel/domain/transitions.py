"""
Transition Engine -- the permission request state machine.

Responsibility:
    Validates a single approve/deny decision against a ``PermissionRequest``
    snapshot and produces the next snapshot.  Also builds the initial
    snapshot for a new submission.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Persistence of the
    resulting snapshot (and the compare-and-swap that linearizes decisions
    on one request) belongs to ``services/permission_repository``.

States:
    ``pending@role`` for every role in ``path``, then terminal ``approved``
    (``current_level == COMPLETED``) or terminal ``denied`` (``current_level``
    left at the denying role).  ``STATUS_TRANSITIONS`` lists the only legal
    status edges; terminal states have none.

Check order for ``authorize``:
    1. Scope: the approver's assigned block (and floor, for floor-scoped
       roles) must cover the request's block/floor snapshot.  -> Forbidden
    2. Role: the approver's role must appear in the request's path.
       -> Forbidden
    3. Terminal request.  -> Conflict
    4. Role already passed (the log holds its decision).  -> Conflict
    5. Role not reached yet.  -> Forbidden
    Failing any check leaves the snapshot untouched.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from uuid import UUID

from permit_kernel.domain.permission import (
    COMPLETED,
    ApprovalAction,
    ApproverProfile,
    ApproverRole,
    Category,
    Decision,
    PermissionRequest,
    RequestDetails,
    RequestKind,
    RequestStatus,
    StudentProfile,
)
from permit_kernel.domain.routing import RoutePlan, covers
from permit_kernel.exceptions import (
    ApproverOutOfScopeError,
    DecisionAlreadyRecordedError,
    RequestAlreadyResolvedError,
    UnauthorizedApproverError,
)

STATUS_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.PENDING,
        RequestStatus.APPROVED,
        RequestStatus.DENIED,
    }),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.DENIED: frozenset(),
}


def default_remarks(role: ApproverRole, decision: Decision) -> str:
    verb = "Approved" if decision == Decision.APPROVE else "Denied"
    return f"{verb} by {role.label}"


def open_request(
    *,
    request_id: UUID,
    kind: RequestKind,
    category: Category,
    student: StudentProfile,
    details: RequestDetails,
    plan: RoutePlan,
    created_at: datetime,
) -> PermissionRequest:
    """Initial snapshot: pending at the first role of the path, empty log."""
    return PermissionRequest(
        request_id=request_id,
        kind=kind,
        category=category,
        student_id=student.student_id,
        block=student.block,
        floor=student.floor,
        path=plan.path,
        current_level=plan.first_role,
        status=RequestStatus.PENDING,
        details=details,
        routed_to=plan.first_line,
        created_at=created_at,
    )


def authorize(request: PermissionRequest, approver: ApproverProfile) -> int:
    """
    Check that ``approver`` may decide ``request`` now.

    Returns:
        Index of the approver's role in ``request.path``.

    Raises:
        ApproverOutOfScopeError, UnauthorizedApproverError,
        RequestAlreadyResolvedError, DecisionAlreadyRecordedError.
    """
    rid = str(request.request_id)

    if not covers(approver, request.block, request.floor):
        raise ApproverOutOfScopeError(
            rid, str(approver.approver_id), request.block, request.floor,
        )

    if approver.role not in request.path:
        raise UnauthorizedApproverError(
            rid, approver.role.value, request.current_level_label,
        )

    if request.is_terminal:
        raise RequestAlreadyResolvedError(rid, request.status.value)

    role_index = request.path.index(approver.role)
    current_index = request.path.index(request.current_level)

    if role_index < current_index:
        raise DecisionAlreadyRecordedError(
            rid, approver.role.value, request.current_level_label,
        )
    if role_index > current_index:
        raise UnauthorizedApproverError(
            rid, approver.role.value, request.current_level_label,
        )
    return role_index


def apply_decision(
    request: PermissionRequest,
    approver: ApproverProfile,
    decision: Decision,
    decided_at: datetime,
    remarks: str | None = None,
) -> PermissionRequest:
    """
    Apply one decision and return the next snapshot.

    Approve advances to the next role, or to ``approved``/``COMPLETED`` from
    the last role.  Deny moves straight to ``denied`` and leaves
    ``current_level`` at the denying role.  The returned snapshot keeps the
    version it was read at; the repository bumps it on save.
    """
    index = authorize(request, approver)
    role = request.path[index]

    action = ApprovalAction(
        sequence=len(request.actions),
        role=role,
        approver_id=approver.approver_id,
        decision=decision,
        decided_at=decided_at,
        remarks=(remarks or "").strip() or default_remarks(role, decision),
    )

    if decision == Decision.DENY:
        status = RequestStatus.DENIED
        current_level = role
    elif index + 1 < len(request.path):
        status = RequestStatus.PENDING
        current_level = request.path[index + 1]
    else:
        status = RequestStatus.APPROVED
        current_level = COMPLETED

    assert status in STATUS_TRANSITIONS[request.status]

    return replace(
        request,
        status=status,
        current_level=current_level,
        actions=request.actions + (action,),
    )
