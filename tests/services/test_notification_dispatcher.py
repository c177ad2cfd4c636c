"""
Tests for NotificationDispatcher -- independent channel fan-out.

These run against in-memory collaborators; no database is involved.
"""

from datetime import date, datetime, time, timezone
from uuid import uuid4

import pytest

from permit_kernel.domain.permission import (
    ApproverProfile,
    ApproverRole,
    Category,
    Decision,
    OutingDetails,
    RequestKind,
    StudentProfile,
)
from permit_kernel.domain.protocols import SmsOutcome
from permit_kernel.domain.routing import AcademicCohortMapper, resolve_route
from permit_kernel.domain.transitions import apply_decision, open_request
from permit_kernel.services.notification_dispatcher import (
    Channel,
    NotificationDispatcher,
    TransitionEvent,
    event_for,
    notice_text,
    student_channel,
)
from permit_services.messages import compose_final_approval_text

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

STUDENT = StudentProfile(
    student_id=uuid4(),
    name="Asha Verma",
    roll_number="21CS001",
    block="D-Block",
    floor="1",
    semester=3,
    parent_phone="9876543210",
)


def _approver(role):
    return ApproverProfile(
        approver_id=uuid4(),
        name=role.label,
        email=f"{role.value}@kietgroup.com",
        role=role,
        assigned_blocks=("D-Block",),
        assigned_floors=("1",),
    )


@pytest.fixture
def submitted():
    return open_request(
        request_id=uuid4(),
        kind=RequestKind.OUTING,
        category=Category.NORMAL,
        student=STUDENT,
        details=OutingDetails(
            outing_date=date(2024, 1, 2),
            out_time=time(9, 0),
            return_time=time(18, 0),
            purpose="Medical appointment",
            parent_contact="9876543210",
        ),
        plan=resolve_route(STUDENT.cohort, Category.NORMAL, AcademicCohortMapper()),
        created_at=NOW,
    )


@pytest.fixture
def approved(submitted):
    request = submitted
    for role in request.path:
        request = apply_decision(request, _approver(role), Decision.APPROVE, NOW)
    return request


@pytest.fixture
def dispatcher(notice_store, realtime, sms_gateway):
    return NotificationDispatcher(
        notices=notice_store,
        realtime=realtime,
        sms=sms_gateway,
        sms_composer=compose_final_approval_text,
    )


class TestEvents:
    def test_event_for_each_state(self, submitted, approved):
        assert event_for(submitted) == TransitionEvent.SUBMITTED
        advanced = apply_decision(
            submitted, _approver(ApproverRole.FLOOR_INCHARGE), Decision.APPROVE, NOW,
        )
        assert event_for(advanced) == TransitionEvent.ADVANCED
        denied = apply_decision(
            submitted, _approver(ApproverRole.FLOOR_INCHARGE), Decision.DENY, NOW,
        )
        assert event_for(denied) == TransitionEvent.DENIED
        assert event_for(approved) == TransitionEvent.APPROVED

    def test_advanced_notice_names_next_level(self, submitted):
        advanced = apply_decision(
            submitted, _approver(ApproverRole.FLOOR_INCHARGE), Decision.APPROVE, NOW,
        )
        title, message = notice_text(TransitionEvent.ADVANCED, advanced)
        assert title == "Outing request approved by Floor Incharge"
        assert message.endswith("Now awaiting Hostel Incharge.")


class TestDispatch:
    def test_submission_reaches_student_and_scope_but_not_sms(
        self, dispatcher, submitted, notice_store, realtime, sms_gateway,
    ):
        report = dispatcher.dispatch(submitted, STUDENT)

        assert report.ok
        assert report.delivered == [Channel.STUDENT, Channel.SCOPE]
        assert report.skipped == [Channel.SMS]
        assert notice_store.notices[0]["category"] == "request_submitted"
        assert realtime.events_for("D-Block-1") == ["request_submitted"]
        assert realtime.events_for(student_channel(STUDENT.student_id)) == ["request_submitted"]
        assert sms_gateway.sent == []

    def test_final_approval_texts_parent(self, dispatcher, approved, sms_gateway):
        report = dispatcher.dispatch(approved, STUDENT)

        assert Channel.SMS in report.delivered
        (number, text), = sms_gateway.sent
        assert number == "9876543210"
        assert "Asha Verma (21CS001)" in text
        assert "fully approved" in text

    def test_credentials_issued_reaches_student_and_scope_only(
        self, dispatcher, approved, notice_store, realtime, sms_gateway,
    ):
        report = dispatcher.dispatch(approved, STUDENT, TransitionEvent.CREDENTIALS_ISSUED)

        assert report.event == TransitionEvent.CREDENTIALS_ISSUED
        assert report.delivered == [Channel.STUDENT, Channel.SCOPE]
        assert report.skipped == [Channel.SMS]
        assert sms_gateway.sent == []
        assert notice_store.notices[0]["title"] == "Outing gate passes ready"
        assert realtime.events_for("D-Block-1") == ["credentials_issued"]

    def test_approval_notice_does_not_claim_passes_exist(self, approved):
        _, message = notice_text(TransitionEvent.APPROVED, approved)
        assert message.endswith("Gate passes are being issued.")

    def test_denial_does_not_text_parent(self, dispatcher, submitted, sms_gateway):
        denied = apply_decision(
            submitted, _approver(ApproverRole.FLOOR_INCHARGE), Decision.DENY, NOW,
        )
        report = dispatcher.dispatch(denied, STUDENT)
        assert report.skipped == [Channel.SMS]
        assert sms_gateway.sent == []


class TestFailureIndependence:
    def test_scope_failure_does_not_block_other_channels(
        self, dispatcher, approved, realtime, notice_store, sms_gateway, captured_logs,
    ):
        realtime.failing_keys.add("D-Block-1")

        report = dispatcher.dispatch(approved, STUDENT)

        assert set(report.failed) == {Channel.SCOPE}
        assert Channel.STUDENT in report.delivered
        assert Channel.SMS in report.delivered
        assert len(notice_store.notices) == 1
        assert len(sms_gateway.sent) == 1

        failures = [r for r in captured_logs() if r["message"] == "notification_channel_failed"]
        assert failures[0]["channel"] == "scope"
        assert failures[0]["exc_code"] == "NOTIFICATION_DELIVERY_FAILED"

    def test_notice_store_failure_does_not_block_sms(
        self, dispatcher, approved, notice_store, sms_gateway,
    ):
        notice_store.fail = True
        report = dispatcher.dispatch(approved, STUDENT)
        assert set(report.failed) == {Channel.STUDENT}
        assert len(sms_gateway.sent) == 1

    def test_sms_error_outcome_is_a_failure(self, dispatcher, approved, sms_gateway):
        sms_gateway.outcome = SmsOutcome.ERROR
        report = dispatcher.dispatch(approved, STUDENT)
        assert report.failed[Channel.SMS] == "rejected"
        assert Channel.SCOPE in report.delivered

    def test_sms_gateway_exception_is_contained(self, dispatcher, approved, sms_gateway):
        sms_gateway.raise_error = TimeoutError("twilio timeout")
        report = dispatcher.dispatch(approved, STUDENT)
        assert set(report.failed) == {Channel.SMS}

    def test_skipped_sms_is_not_a_failure(self, dispatcher, approved, sms_gateway):
        sms_gateway.outcome = SmsOutcome.SKIPPED
        report = dispatcher.dispatch(approved, STUDENT)
        assert report.ok
        assert Channel.SMS in report.skipped

    def test_no_gateway_configured(self, notice_store, realtime, approved):
        report = NotificationDispatcher(notice_store, realtime).dispatch(approved, STUDENT)
        assert report.ok
        assert Channel.SMS in report.skipped
