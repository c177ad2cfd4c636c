"""
NotificationDispatcher -- best-effort fan-out of request state changes.

Responsibility:
    After a transition has committed, delivers it on three independent
    channels:

    (a) student: a persisted notice plus a live push on the student's own
        channel;
    (b) scope: an event on the ``{block}-{floor}`` channel watched by the
        approver consoles for that scope;
    (c) sms: on final approval only, a text to the parent contact.

    Final approval is delivered twice: ``request_approved`` right after the
    decision commits, then ``credentials_issued`` once the gate passes
    exist.  The parent SMS goes with the first, so it does not depend on
    credential issuance succeeding.

Architecture position:
    Kernel > Services.  Depends on collaborator protocols only; never runs
    inside the transaction that recorded the decision.

Invariants enforced:
    - Channels fail independently.  Every failure is logged as a
      ``NotificationDeliveryError`` and reported in ``DispatchReport``;
      none propagates to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from permit_kernel.domain.permission import (
    PermissionRequest,
    RequestKind,
    StudentProfile,
)
from permit_kernel.domain.protocols import (
    NoticeStore,
    RealtimePublisher,
    SmsGateway,
    SmsOutcome,
)
from permit_kernel.domain.routing import scope_key
from permit_kernel.exceptions import NotificationDeliveryError
from permit_kernel.logging_config import get_logger

logger = get_logger("services.notification_dispatcher")

SmsComposer = Callable[[PermissionRequest, StudentProfile], str]


class TransitionEvent(str, Enum):
    SUBMITTED = "request_submitted"
    ADVANCED = "request_advanced"
    APPROVED = "request_approved"
    DENIED = "request_denied"
    CREDENTIALS_ISSUED = "credentials_issued"


class Channel(str, Enum):
    STUDENT = "student"
    SCOPE = "scope"
    SMS = "sms"


@dataclass
class DispatchReport:
    event: TransitionEvent
    delivered: list[Channel] = field(default_factory=list)
    skipped: list[Channel] = field(default_factory=list)
    failed: dict[Channel, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def event_for(request: PermissionRequest) -> TransitionEvent:
    """Event describing the state ``request`` has just entered."""
    if request.is_completed:
        return TransitionEvent.APPROVED
    if request.is_terminal:
        return TransitionEvent.DENIED
    if request.actions:
        return TransitionEvent.ADVANCED
    return TransitionEvent.SUBMITTED


def student_channel(student_id: Any) -> str:
    return f"student-{student_id}"


def request_summary(request: PermissionRequest) -> dict[str, Any]:
    last = request.actions[-1] if request.actions else None
    return {
        "request_id": str(request.request_id),
        "student_id": str(request.student_id),
        "kind": request.kind.value,
        "category": request.category.value,
        "status": request.status.value,
        "current_level": request.current_level_label,
        "block": request.block,
        "floor": request.floor,
        "last_action": (
            {
                "role": last.role.value,
                "decision": last.decision.value,
                "remarks": last.remarks,
            }
            if last is not None else None
        ),
    }


def _kind_label(kind: RequestKind) -> str:
    return "Outing" if kind == RequestKind.OUTING else "Home permission"


def notice_text(event: TransitionEvent, request: PermissionRequest) -> tuple[str, str]:
    """(title, message) for the student's notice feed."""
    label = _kind_label(request.kind)
    if event == TransitionEvent.SUBMITTED:
        return (
            f"{label} request submitted",
            f"Your {label.lower()} request is awaiting "
            f"{request.path[0].label} approval.",
        )
    last = request.actions[-1]
    if event == TransitionEvent.ADVANCED:
        return (
            f"{label} request approved by {last.role.label}",
            f"{last.remarks.rstrip('.')}. Now awaiting {request.path[len(request.actions)].label}.",
        )
    if event == TransitionEvent.APPROVED:
        return (
            f"{label} request approved",
            f"Your {label.lower()} request has been fully approved. "
            "Gate passes are being issued.",
        )
    if event == TransitionEvent.CREDENTIALS_ISSUED:
        return (
            f"{label} gate passes ready",
            "Your outgoing and return gate passes have been issued.",
        )
    return (
        f"{label} request denied",
        f"Your {label.lower()} request was denied by {last.role.label}: {last.remarks}",
    )


class NotificationDispatcher:
    """Fans a committed transition out to the student, scope and SMS channels."""

    def __init__(
        self,
        notices: NoticeStore,
        realtime: RealtimePublisher,
        sms: SmsGateway | None = None,
        sms_composer: SmsComposer | None = None,
    ):
        self._notices = notices
        self._realtime = realtime
        self._sms = sms
        self._sms_composer = sms_composer

    def dispatch(
        self,
        request: PermissionRequest,
        student: StudentProfile,
        event: TransitionEvent | None = None,
    ) -> DispatchReport:
        """Deliver ``event`` (default: the state ``request`` has just entered)."""
        event = event or event_for(request)
        report = DispatchReport(event=event)
        summary = request_summary(request)

        self._deliver(report, Channel.STUDENT, request,
                      lambda: self._to_student(event, request, summary))
        self._deliver(report, Channel.SCOPE, request,
                      lambda: self._realtime.publish(
                          scope_key(request.block, request.floor), event.value, summary,
                      ))

        if event == TransitionEvent.APPROVED:
            self._deliver(report, Channel.SMS, request,
                          lambda: self._to_parent(request, student))
        else:
            report.skipped.append(Channel.SMS)

        logger.info(
            "notification_dispatched",
            extra={
                "request_id": str(request.request_id),
                "event": event.value,
                "delivered": [c.value for c in report.delivered],
                "skipped": [c.value for c in report.skipped],
                "failed": {c.value: reason for c, reason in report.failed.items()},
            },
        )
        return report

    def _deliver(
        self,
        report: DispatchReport,
        channel: Channel,
        request: PermissionRequest,
        send: Callable[[], bool | None],
    ) -> None:
        try:
            delivered = send()
        except NotificationDeliveryError as error:
            self._record_failure(report, channel, request, error)
            return
        except Exception as exc:
            error = NotificationDeliveryError(
                channel.value, str(request.request_id), str(exc),
            )
            self._record_failure(report, channel, request, error)
            return
        if delivered is False:
            report.skipped.append(channel)
        else:
            report.delivered.append(channel)

    def _record_failure(
        self,
        report: DispatchReport,
        channel: Channel,
        request: PermissionRequest,
        error: NotificationDeliveryError,
    ) -> None:
        report.failed[channel] = error.reason
        logger.warning(
            "notification_channel_failed",
            extra={"channel": channel.value, "request_id": str(request.request_id)},
            exc_info=error,
        )

    def _to_student(
        self,
        event: TransitionEvent,
        request: PermissionRequest,
        summary: dict[str, Any],
    ) -> None:
        title, message = notice_text(event, request)
        self._notices.record(
            student_id=request.student_id,
            request_id=request.request_id,
            title=title,
            message=message,
            category=event.value,
        )
        self._realtime.publish(
            student_channel(request.student_id), event.value,
            {**summary, "title": title, "message": message},
        )

    def _to_parent(self, request: PermissionRequest, student: StudentProfile) -> bool:
        if self._sms is None or self._sms_composer is None:
            return False
        result = self._sms.send(
            request.parent_contact, self._sms_composer(request, student),
        )
        if result.outcome == SmsOutcome.ERROR:
            raise NotificationDeliveryError(
                Channel.SMS.value, str(request.request_id), result.reason or "sms error",
            )
        return result.outcome == SmsOutcome.DELIVERED
