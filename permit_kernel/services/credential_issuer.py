"""
CredentialIssuer -- exactly-once gate credentials for approved requests.

Responsibility:
    Builds the outgoing/return credential pair for an approved, completed
    request, renders credential images when a renderer is configured, and
    stores the pair with a compare-and-swap.

Architecture position:
    Kernel > Services.  Runs in its own transaction AFTER the approving
    decision has committed, so an issuance failure can never revert the
    approval.

Invariants enforced:
    - Idempotent by construction: issuance proceeds only while
      ``request.credentials`` is unset.  A second call, or a call that
      loses the compare-and-swap to a concurrent issuer, is a no-op.
    - Render failures leave ``image`` empty; the pair is still stored and
      ``retry_renders`` fills the images in later.

Failure modes:
    - RequestNotFoundError if the request does not exist.
    - CredentialRenderError is logged, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from uuid import UUID

from sqlalchemy.orm import Session

from permit_kernel.domain.clock import Clock, SystemClock
from permit_kernel.domain.credentials import build_credential_pair, render_payload
from permit_kernel.domain.permission import (
    Credential,
    CredentialPair,
    PermissionRequest,
)
from permit_kernel.domain.protocols import CredentialRenderer
from permit_kernel.exceptions import CredentialRenderError, OptimisticLockError
from permit_kernel.logging_config import get_logger
from permit_kernel.models.permission_request import PermissionRequestModel
from permit_kernel.services.base import BaseService
from permit_kernel.services.permission_repository import PermissionRepository

logger = get_logger("services.credential_issuer")


@dataclass(frozen=True)
class IssueResult:
    request: PermissionRequest
    issued: bool

    @property
    def credentials(self) -> CredentialPair | None:
        return self.request.credentials


class CredentialIssuer(BaseService[PermissionRequestModel]):
    """Issues and re-renders credential pairs."""

    def __init__(
        self,
        session: Session,
        signing_key: bytes,
        clock: Clock | None = None,
        renderer: CredentialRenderer | None = None,
        outgoing_hours: int = 24,
        return_hours: int = 24,
    ):
        super().__init__(session)
        self._signing_key = signing_key
        self._clock = clock or SystemClock()
        self._renderer = renderer
        self._outgoing_hours = outgoing_hours
        self._return_hours = return_hours
        self._repository = PermissionRepository(session, self._clock)

    def issue(self, request_id: UUID) -> IssueResult:
        request = self._repository.get(request_id)

        if not request.awaiting_credentials:
            logger.info(
                "credential_issue_skipped",
                extra={
                    "request_id": str(request_id),
                    "status": request.status.value,
                    "already_issued": request.credentials is not None,
                },
            )
            return IssueResult(request=request, issued=False)

        pair = build_credential_pair(
            request,
            self._clock.now(),
            self._signing_key,
            outgoing_hours=self._outgoing_hours,
            return_hours=self._return_hours,
        )
        pair = self._render_missing(request, pair)

        try:
            saved = self._repository.save(
                replace(request, credentials=pair), expected_version=request.version,
            )
        except OptimisticLockError:
            current = self._repository.get(request_id)
            logger.info(
                "credential_issue_lost_race",
                extra={"request_id": str(request_id)},
            )
            return IssueResult(request=current, issued=False)

        logger.info(
            "credentials_issued",
            extra={
                "request_id": str(request_id),
                "outgoing_valid_until": pair.outgoing.valid_until,
                "return_valid_from": pair.returning.valid_from,
                "return_valid_until": pair.returning.valid_until,
                "images_missing": pair.images_missing,
            },
        )
        return IssueResult(request=saved, issued=True)

    def retry_renders(self, request_id: UUID) -> IssueResult:
        """Render any credential images a previous attempt failed to produce."""
        request = self._repository.get(request_id)
        if request.credentials is None:
            return self.issue(request_id)
        if self._renderer is None or not request.credentials.images_missing:
            return IssueResult(request=request, issued=False)

        pair = self._render_missing(request, request.credentials)
        if pair == request.credentials:
            return IssueResult(request=request, issued=False)

        saved = self._repository.save(
            replace(request, credentials=pair), expected_version=request.version,
        )
        logger.info(
            "credential_images_rendered",
            extra={
                "request_id": str(request_id),
                "images_missing": pair.images_missing,
            },
        )
        return IssueResult(request=saved, issued=False)

    def _render_missing(
        self, request: PermissionRequest, pair: CredentialPair,
    ) -> CredentialPair:
        if self._renderer is None:
            return pair
        return CredentialPair(
            outgoing=self._render(request, pair.outgoing),
            returning=self._render(request, pair.returning),
        )

    def _render(self, request: PermissionRequest, credential: Credential) -> Credential:
        if credential.image is not None:
            return credential
        try:
            image = self._renderer.render(render_payload(request, credential))
        except Exception as exc:
            error = CredentialRenderError(
                str(request.request_id), credential.direction.value, str(exc),
            )
            logger.error(
                "credential_render_failed",
                extra={
                    "request_id": str(request.request_id),
                    "direction": credential.direction.value,
                },
                exc_info=error,
            )
            return credential
        return replace(credential, image=image)
