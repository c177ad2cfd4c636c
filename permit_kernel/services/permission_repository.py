"""
PermissionRepository -- SQL persistence for permission requests.

Responsibility:
    Loads and stores ``PermissionRequest`` snapshots.  ``save`` is a
    compare-and-swap on the ``version`` column: it applies only if the row
    is still at the version the caller read, so two writers racing on the
    same request are linearized and the loser gets ``OptimisticLockError``.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.
    Flushes only; the caller owns commit/rollback.  Reads always refresh
    from the database because ``save`` writes around the identity map.

Invariants enforced:
    - The approval log is append-only: a saved snapshot's log must extend
      the stored log, and new entries are inserted, never updated.
    - A terminal request may change only by receiving credentials, and
      credentials are written at most once.
    - Every accepted save bumps ``version`` by exactly one.

Failure modes:
    - RequestNotFoundError if the request row does not exist.
    - OptimisticLockError if the row moved past ``expected_version``.
    - ImmutabilityViolationError on any rewrite of history.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from permit_kernel.domain.clock import Clock, SystemClock
from permit_kernel.domain.permission import (
    ApproverRole,
    CredentialPair,
    PermissionRequest,
    RequestStatus,
)
from permit_kernel.domain.routing import block_variants
from permit_kernel.exceptions import (
    ImmutabilityViolationError,
    OptimisticLockError,
    RequestNotFoundError,
)
from permit_kernel.logging_config import get_logger
from permit_kernel.models.permission_request import (
    ApprovalActionModel,
    PermissionRequestModel,
    credentials_to_json,
)
from permit_kernel.services.base import BaseService

logger = get_logger("services.permission_repository")

_CREATION_FIELDS = (
    "kind",
    "category",
    "student_id",
    "block",
    "floor",
    "path",
    "details",
    "routed_to",
    "created_at",
)


def expand_blocks(blocks: Sequence[str]) -> list[str]:
    """Every stored spelling of the given blocks."""
    expanded: list[str] = []
    for block in blocks:
        for variant in block_variants(block):
            if variant not in expanded:
                expanded.append(variant)
    return expanded


class PermissionRepository(BaseService[PermissionRequestModel]):
    """SQL-backed request repository with optimistic concurrency."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(self, request_id: UUID) -> PermissionRequest | None:
        model = self.session.get(
            PermissionRequestModel, request_id, populate_existing=True,
        )
        return model.to_dto() if model is not None else None

    def get(self, request_id: UUID) -> PermissionRequest:
        request = self.find(request_id)
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return request

    def find_active(self, student_id: UUID) -> PermissionRequest | None:
        """The requester's non-terminal request of any kind, if one exists."""
        model = self.session.execute(
            select(PermissionRequestModel)
            .where(
                PermissionRequestModel.student_id == student_id,
                PermissionRequestModel.status == RequestStatus.PENDING.value,
            )
            .order_by(PermissionRequestModel.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def find_by_requester(self, student_id: UUID) -> list[PermissionRequest]:
        models = self.session.execute(
            select(PermissionRequestModel)
            .where(PermissionRequestModel.student_id == student_id)
            .order_by(PermissionRequestModel.created_at.desc())
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def find_by_scope(
        self,
        role: ApproverRole,
        blocks: Sequence[str],
        floors: Sequence[str] | None = None,
    ) -> list[PermissionRequest]:
        """Pending requests waiting on ``role`` inside the given scope."""
        stmt = select(PermissionRequestModel).where(
            PermissionRequestModel.status == RequestStatus.PENDING.value,
            PermissionRequestModel.current_level == role.value,
            PermissionRequestModel.block.in_(expand_blocks(blocks)),
        )
        if floors:
            stmt = stmt.where(
                PermissionRequestModel.floor.in_([str(f) for f in floors])
            )
        models = self.session.execute(
            stmt.order_by(PermissionRequestModel.created_at.desc())
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [m.to_dto() for m in models]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add(self, request: PermissionRequest) -> PermissionRequest:
        """Insert a new request at version 1 with an empty log."""
        if request.actions or request.status != RequestStatus.PENDING:
            raise ValueError("new requests start pending with an empty log")
        self.session.add(PermissionRequestModel.from_dto(replace(request, version=1)))
        self.session.flush()
        return replace(request, version=1)

    def save(self, request: PermissionRequest, expected_version: int) -> PermissionRequest:
        """
        Compare-and-swap ``request`` over the stored row.

        Returns:
            The saved snapshot carrying its new version.
        """
        stored = self.get(request.request_id)
        if stored.version != expected_version:
            raise OptimisticLockError(
                "PermissionRequest", str(request.request_id), expected_version,
            )
        self._check_history(stored, request)

        result = self.session.execute(
            update(PermissionRequestModel)
            .where(
                PermissionRequestModel.id == request.request_id,
                PermissionRequestModel.version == expected_version,
            )
            .values(
                status=request.status.value,
                current_level=request.current_level_label,
                credentials=credentials_to_json(request.credentials),
                updated_at=self._clock.now(),
                version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                "permission_request_cas_lost",
                extra={
                    "request_id": str(request.request_id),
                    "expected_version": expected_version,
                },
            )
            raise OptimisticLockError(
                "PermissionRequest", str(request.request_id), expected_version,
            )

        for action in request.actions[len(stored.actions):]:
            self.session.add(ApprovalActionModel.from_dto(request.request_id, action))
        self.session.flush()

        return replace(request, version=expected_version + 1)

    def _check_history(self, stored: PermissionRequest, request: PermissionRequest) -> None:
        rid = str(request.request_id)

        if request.actions[:len(stored.actions)] != stored.actions:
            raise ImmutabilityViolationError(
                "PermissionRequest", rid, "approval log entries cannot be rewritten",
            )
        if any(getattr(request, f) != getattr(stored, f) for f in _CREATION_FIELDS):
            raise ImmutabilityViolationError(
                "PermissionRequest", rid, "creation-time fields cannot change",
            )

        if stored.is_terminal:
            if (
                request.status != stored.status
                or request.current_level != stored.current_level
                or request.actions != stored.actions
            ):
                raise ImmutabilityViolationError(
                    "PermissionRequest", rid,
                    f"request is {stored.status.value}; only credentials may be added",
                )
        if stored.credentials is not None and not _same_credentials(
            stored.credentials, request.credentials,
        ):
            raise ImmutabilityViolationError(
                "PermissionRequest", rid, "credentials are issued at most once",
            )


def _same_credentials(stored: CredentialPair, saved: CredentialPair | None) -> bool:
    """Saved pair is the stored pair, optionally with missing images filled in."""
    if saved is None:
        return False
    for old, new in zip(stored, saved):
        if replace(new, image=old.image) != old:
            return False
        if old.image is not None and new.image != old.image:
            return False
    return True
