"""
PermissionWorkflow -- composition root and transaction owner.

Responsibility:
    Exposes the workflow operations (submit, decide, listings, credential
    retry, promotion and graduate listing).  Each operation runs in exactly
    one transaction opened from the injected session factory.  Side
    effects run only after that transaction has committed, inline or on an
    injected executor: the transition is dispatched first, then a final
    approval gets its credentials, then a ``credentials_issued`` dispatch
    follows.

Architecture position:
    Services -- outermost layer.  Wires kernel services to the SMS,
    real-time and rendering adapters.

Invariants enforced:
    - A decision is committed before any side effect starts; a side-effect
      failure is logged and never reverts it.
    - Credential issuance runs in its own transaction, guarded by
      "credentials unset" and the repository compare-and-swap.
    - Issuance failure never suppresses the approval notifications or the
      parent SMS; the request stays awaiting credentials.
    - Built by ``from_config`` without an executor, the SMS gateway makes a
      single HTTP attempt so a slow provider cannot stall ``decide``.

Failure modes:
    - Typed ``PermitKernelError`` subclasses from the kernel services reach
      the caller unchanged, with the transaction rolled back.
"""

from __future__ import annotations

import contextvars
import threading
from concurrent.futures import Executor, Future, wait
from dataclasses import dataclass, replace
from typing import Any, Mapping, Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from permit_config.schema import PermitConfig
from permit_kernel.db.engine import session_scope
from permit_kernel.domain.clock import Clock, SystemClock
from permit_kernel.domain.permission import (
    FLOOR_SCOPED_ROLES,
    ApproverProfile,
    Category,
    Decision,
    PermissionRequest,
    RequestDetails,
    RequestKind,
    StudentProfile,
)
from permit_kernel.domain.protocols import (
    CohortMapper,
    CredentialRenderer,
    RealtimePublisher,
    SmsGateway,
)
from permit_kernel.domain.routing import AcademicCohortMapper
from permit_kernel.exceptions import ApproverNotFoundError, StudentNotFoundError
from permit_kernel.logging_config import LogContext, get_logger
from permit_kernel.selectors.directory_selector import DirectorySelector
from permit_kernel.selectors.request_selector import RequestSelector, RequestStats
from permit_kernel.services.credential_issuer import CredentialIssuer, IssueResult
from permit_kernel.services.decision_service import DecisionService
from permit_kernel.services.notice_service import Notice, NoticeService
from permit_kernel.services.notification_dispatcher import (
    DispatchReport,
    NotificationDispatcher,
    TransitionEvent,
)
from permit_kernel.services.permission_repository import PermissionRepository
from permit_kernel.services.student_service import PromotionResult, StudentService
from permit_kernel.services.submission_service import SubmissionService
from permit_services.messages import compose_final_approval_text
from permit_services.realtime import NullRealtimePublisher, build_realtime_publisher
from permit_services.sms_gateway import TwilioSmsGateway

logger = get_logger("services.workflow")


@dataclass(frozen=True)
class RequesterView:
    """A student's requests, newest first, with status counts."""

    requests: tuple[PermissionRequest, ...]
    stats: RequestStats


@dataclass(frozen=True)
class ApproverQueue:
    """Requests waiting on an approver inside their scope, with counts."""

    approver: ApproverProfile
    requests: tuple[PermissionRequest, ...]
    stats: RequestStats


class _TransactionalNoticeStore:
    """NoticeStore that commits each notice in its own transaction."""

    def __init__(self, session_factory: sessionmaker[Session], clock: Clock):
        self._session_factory = session_factory
        self._clock = clock

    def record(self, **kwargs: Any) -> UUID:
        with session_scope(self._session_factory) as session:
            return NoticeService(session, self._clock).record(**kwargs)


class PermissionWorkflow:
    """Entry point for every workflow operation."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        signing_key: bytes,
        clock: Clock | None = None,
        cohort_mapper: CohortMapper | None = None,
        realtime: RealtimePublisher | None = None,
        sms: SmsGateway | None = None,
        renderer: CredentialRenderer | None = None,
        executor: Executor | None = None,
        outgoing_hours: int = 24,
        return_hours: int = 24,
    ):
        self._session_factory = session_factory
        self._signing_key = signing_key
        self._clock = clock or SystemClock()
        self._mapper = cohort_mapper or AcademicCohortMapper()
        self._renderer = renderer
        self._executor = executor
        self._outgoing_hours = outgoing_hours
        self._return_hours = return_hours
        self._dispatcher = NotificationDispatcher(
            notices=_TransactionalNoticeStore(session_factory, self._clock),
            realtime=realtime or NullRealtimePublisher(),
            sms=sms,
            sms_composer=compose_final_approval_text,
        )
        self._futures: list[Future] = []
        self._futures_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: PermitConfig,
        session_factory: sessionmaker[Session],
        **overrides: Any,
    ) -> PermissionWorkflow:
        """Build a workflow from ``permit_config.get_active_config()`` output."""
        kwargs: dict[str, Any] = {
            "signing_key": config.credentials.signing_key,
            "cohort_mapper": AcademicCohortMapper(
                email_domain=config.routing.email_domain,
                default_suffix=config.routing.default_block_suffix,
            ),
            "outgoing_hours": config.credentials.outgoing_valid_hours,
            "return_hours": config.credentials.return_valid_hours,
        }
        if "realtime" not in overrides:
            kwargs["realtime"] = build_realtime_publisher(config.realtime)
        if "sms" not in overrides:
            sms_config = config.sms
            if overrides.get("executor") is None:
                # Inline side effects run inside the approver's decide(): no backoff.
                sms_config = replace(sms_config, max_attempts=1)
            kwargs["sms"] = TwilioSmsGateway(sms_config)
        kwargs.update(overrides)
        return cls(session_factory, **kwargs)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def submit(
        self,
        student_id: UUID,
        kind: RequestKind,
        category: Category,
        payload: Mapping[str, Any] | RequestDetails,
    ) -> PermissionRequest:
        with LogContext.bind(correlation_id=uuid4(), student_id=student_id):
            with session_scope(self._session_factory) as session:
                request = SubmissionService(
                    session, clock=self._clock, mapper=self._mapper,
                ).submit(student_id, kind, category, payload)
            with LogContext.bind(request_id=request.request_id):
                self._after_commit(request)
            return request

    def decide(
        self,
        request_id: UUID,
        approver_id: UUID,
        decision: Decision,
        remarks: str | None = None,
    ) -> PermissionRequest:
        """
        Record one decision and return the committed snapshot.

        With inline side effects, a final approval is returned with its
        credentials already issued.
        """
        with LogContext.bind(
            correlation_id=uuid4(), request_id=request_id, actor_id=approver_id,
        ):
            with session_scope(self._session_factory) as session:
                outcome = DecisionService(session, clock=self._clock).decide(
                    request_id, approver_id, decision, remarks,
                )
            final = self._after_commit(outcome.after)
            return final or outcome.after

    def issue_credentials(self, request_id: UUID) -> IssueResult:
        """Issue credentials if the request is approved and has none yet."""
        with session_scope(self._session_factory) as session:
            return self._issuer(session).issue(request_id)

    def retry_credentials(self, request_id: UUID) -> IssueResult:
        """Manual retry for a failed issuance or failed image rendering."""
        with LogContext.bind(correlation_id=uuid4(), request_id=request_id):
            with session_scope(self._session_factory) as session:
                result = self._issuer(session).retry_renders(request_id)
            logger.info(
                "credential_retry_completed",
                extra={
                    "issued": result.issued,
                    "images_missing": (
                        result.credentials.images_missing
                        if result.credentials else None
                    ),
                },
            )
            if result.issued:
                self._dispatch(
                    result.request,
                    self._student_for(result.request),
                    TransitionEvent.CREDENTIALS_ISSUED,
                )
            return result

    def promote_students(
        self,
        actor_id: UUID,
        student_ids: Sequence[UUID],
        target_year: str,
    ) -> PromotionResult:
        with LogContext.bind(correlation_id=uuid4(), actor_id=actor_id):
            with session_scope(self._session_factory) as session:
                actor = DirectorySelector(session).get_approver(actor_id)
                if actor is None:
                    raise ApproverNotFoundError(str(actor_id))
                return StudentService(session).promote_students(
                    actor, student_ids, target_year,
                )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> PermissionRequest:
        with session_scope(self._session_factory) as session:
            return PermissionRepository(session, self._clock).get(request_id)

    def get_by_requester(self, student_id: UUID) -> RequesterView:
        with session_scope(self._session_factory) as session:
            if DirectorySelector(session).get_student(student_id) is None:
                raise StudentNotFoundError(str(student_id))
            requests = PermissionRepository(session, self._clock).find_by_requester(
                student_id,
            )
            stats = RequestSelector(session).stats_for_student(student_id)
        return RequesterView(requests=tuple(requests), stats=stats)

    def get_by_approver_scope(self, approver_id: UUID) -> ApproverQueue:
        with session_scope(self._session_factory) as session:
            approver = DirectorySelector(session).get_approver(approver_id)
            if approver is None:
                raise ApproverNotFoundError(str(approver_id))
            floors = (
                approver.assigned_floors
                if approver.role in FLOOR_SCOPED_ROLES else None
            )
            requests = PermissionRepository(session, self._clock).find_by_scope(
                approver.role, approver.assigned_blocks, floors,
            )
            stats = RequestSelector(session).stats_for_scope(
                approver.role, approver.assigned_blocks, floors,
            )
        return ApproverQueue(approver=approver, requests=tuple(requests), stats=stats)

    def graduated_students(self, actor_id: UUID) -> list[StudentProfile]:
        with session_scope(self._session_factory) as session:
            actor = DirectorySelector(session).get_approver(actor_id)
            if actor is None:
                raise ApproverNotFoundError(str(actor_id))
            return StudentService(session).graduated_students(actor)

    def notices_for(self, student_id: UUID, unread_only: bool = False) -> list[Notice]:
        with session_scope(self._session_factory) as session:
            return NoticeService(session, self._clock).list_for_student(
                student_id, unread_only,
            )

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    def wait_for_side_effects(self, timeout: float | None = None) -> None:
        """Block until every scheduled side effect has finished."""
        with self._futures_lock:
            futures, self._futures = self._futures, []
        wait(futures, timeout=timeout)

    def _issuer(self, session: Session) -> CredentialIssuer:
        return CredentialIssuer(
            session,
            self._signing_key,
            clock=self._clock,
            renderer=self._renderer,
            outgoing_hours=self._outgoing_hours,
            return_hours=self._return_hours,
        )

    def _after_commit(self, request: PermissionRequest) -> PermissionRequest | None:
        if self._executor is None:
            return self._run_side_effects(request)
        context = contextvars.copy_context()
        future = self._executor.submit(context.run, self._run_side_effects, request)
        with self._futures_lock:
            self._futures.append(future)
        return None

    def _run_side_effects(self, request: PermissionRequest) -> PermissionRequest:
        """
        Notify the transition, then issue credentials on final approval.

        Issuance and each dispatch fail independently: an issuance failure
        leaves the request awaiting credentials for ``retry_credentials``
        after the approval itself has already been delivered.
        """
        student = self._student_for(request)
        self._dispatch(request, student)
        if not request.awaiting_credentials:
            return request

        try:
            result = self.issue_credentials(request.request_id)
        except Exception:
            logger.error(
                "post_commit_side_effect_failed",
                extra={
                    "request_id": str(request.request_id),
                    "status": request.status.value,
                    "stage": "credentials",
                },
                exc_info=True,
            )
            return request

        if result.issued:
            self._dispatch(result.request, student, TransitionEvent.CREDENTIALS_ISSUED)
        return result.request

    def _student_for(self, request: PermissionRequest) -> StudentProfile | None:
        try:
            with session_scope(self._session_factory) as session:
                return DirectorySelector(session).get_student(request.student_id)
        except Exception:
            logger.error(
                "post_commit_side_effect_failed",
                extra={"request_id": str(request.request_id), "stage": "student_lookup"},
                exc_info=True,
            )
            return None

    def _dispatch(
        self,
        request: PermissionRequest,
        student: StudentProfile | None,
        event: TransitionEvent | None = None,
    ) -> None:
        try:
            report: DispatchReport = self._dispatcher.dispatch(request, student, event)
        except Exception:
            logger.error(
                "post_commit_side_effect_failed",
                extra={
                    "request_id": str(request.request_id),
                    "status": request.status.value,
                    "stage": "dispatch",
                },
                exc_info=True,
            )
            return
        if not report.ok:
            logger.warning(
                "notification_partially_failed",
                extra={
                    "request_id": str(request.request_id),
                    "event": report.event.value,
                    "failed": [c.value for c in report.failed],
                },
            )
