"""
End-to-end tests for PermissionWorkflow.

Covers the main user journeys with real commits and recording adapters:
- normal outing through three levels, credentials and parent SMS
- emergency home permission, denial, resubmission
- approver queues and student views with counts
- side-effect failures never revert a committed decision
- side effects on an executor, and a single inline SMS attempt
- the graduated-student listing
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import httpx
import pytest

from permit_config import get_active_config
from permit_kernel.domain.credentials import decode_credential_token
from permit_kernel.domain.permission import (
    COMPLETED,
    ApproverRole,
    Category,
    CredentialDirection,
    Decision,
    RequestKind,
    RequestStatus,
)
from permit_kernel.exceptions import (
    ActiveRequestExistsError,
    ApproverNotFoundError,
    ConflictError,
    IneligibleRequesterError,
    InsufficientRoleError,
    RequestAlreadyResolvedError,
)
from permit_kernel.services.notification_dispatcher import student_channel
from permit_services.workflow import PermissionWorkflow

DEV_ENV = {"PERMIT_ALLOW_DEVELOPMENT_SIGNING_KEY": "1"}


class TestNormalOuting:
    def test_three_level_approval_issues_credentials(
        self, workflow, directory, outing_payload, deterministic_clock, signing_key,
        sms_gateway, realtime,
    ):
        request = workflow.submit(
            directory.asha.student_id, RequestKind.OUTING, Category.NORMAL, outing_payload,
        )
        assert request.path == (
            ApproverRole.FLOOR_INCHARGE, ApproverRole.HOSTEL_INCHARGE, ApproverRole.WARDEN,
        )
        assert request.routed_to.year_band == "2nd"

        after = workflow.decide(
            request.request_id, directory.floor_d1.approver_id, Decision.APPROVE,
        )
        assert after.current_level == ApproverRole.HOSTEL_INCHARGE
        assert len(after.actions) == 1

        after = workflow.decide(
            request.request_id, directory.hostel_d.approver_id, Decision.APPROVE,
        )
        assert after.current_level == ApproverRole.WARDEN

        final = workflow.decide(
            request.request_id, directory.warden.approver_id, Decision.APPROVE,
        )
        assert final.status == RequestStatus.APPROVED
        assert final.current_level == COMPLETED

        now = deterministic_clock.now()
        pair = final.credentials
        assert pair.outgoing.valid_from == now
        assert pair.outgoing.valid_until == now + timedelta(hours=24)
        returns_at = datetime(2024, 1, 2, 18, 0, tzinfo=timezone.utc)
        assert pair.returning.valid_from == returns_at
        assert pair.returning.valid_until == returns_at + timedelta(hours=24)
        assert not pair.images_missing

        claims = decode_credential_token(pair.returning.token, signing_key)
        assert claims.direction == CredentialDirection.RETURN
        assert claims.request_id == request.request_id

        assert len(sms_gateway.sent) == 1
        assert realtime.events_for("D-Block-1") == [
            "request_submitted", "request_advanced", "request_advanced",
            "request_approved", "credentials_issued",
        ]

    def test_student_notices_follow_each_transition(
        self, workflow, directory, outing_payload, deterministic_clock,
    ):
        request = workflow.submit(
            directory.asha.student_id, RequestKind.OUTING, Category.NORMAL, outing_payload,
        )
        deterministic_clock.advance(60)
        workflow.decide(request.request_id, directory.floor_d1.approver_id, Decision.APPROVE)

        notices = workflow.notices_for(directory.asha.student_id)
        assert [n.category for n in notices] == ["request_advanced", "request_submitted"]
        assert all(n.request_id == request.request_id for n in notices)
        assert not any(n.is_read for n in notices)


class TestEmergencyHome:
    def test_floor_incharge_never_sees_emergency(
        self, workflow, directory, home_payload,
    ):
        request = workflow.submit(
            directory.meera.student_id, RequestKind.HOME, Category.EMERGENCY, home_payload,
        )
        assert request.current_level == ApproverRole.HOSTEL_INCHARGE

        queue = workflow.get_by_approver_scope(directory.hostel_w.approver_id)
        assert [r.request_id for r in queue.requests] == [request.request_id]
        assert queue.stats.pending == 1

    def test_denial_is_final_and_allows_resubmission(
        self, workflow, directory, home_payload, sms_gateway, realtime,
    ):
        request = workflow.submit(
            directory.meera.student_id, RequestKind.HOME, Category.EMERGENCY, home_payload,
        )
        with pytest.raises(ActiveRequestExistsError):
            workflow.submit(
                directory.meera.student_id, RequestKind.HOME, Category.EMERGENCY, home_payload,
            )

        denied = workflow.decide(
            request.request_id, directory.hostel_w.approver_id, Decision.DENY, "No reason given",
        )
        assert denied.status == RequestStatus.DENIED
        assert denied.current_level == ApproverRole.HOSTEL_INCHARGE
        assert denied.actions[0].decision == Decision.DENY
        assert denied.credentials is None

        with pytest.raises(RequestAlreadyResolvedError) as exc_info:
            workflow.decide(request.request_id, directory.warden.approver_id, Decision.APPROVE)
        assert isinstance(exc_info.value, ConflictError)

        assert sms_gateway.sent == []
        assert "request_denied" in realtime.events_for(
            student_channel(directory.meera.student_id),
        )

        again = workflow.submit(
            directory.meera.student_id, RequestKind.HOME, Category.EMERGENCY, home_payload,
        )
        assert again.status == RequestStatus.PENDING


class TestViews:
    def test_requester_view_is_newest_first(
        self, workflow, directory, outing_payload, deterministic_clock,
    ):
        first = workflow.submit(
            directory.asha.student_id, RequestKind.OUTING, Category.NORMAL, outing_payload,
        )
        workflow.decide(first.request_id, directory.floor_d1.approver_id, Decision.DENY)
        deterministic_clock.advance(3600)
        second = workflow.submit(
            directory.asha.student_id, RequestKind.OUTING, Category.NORMAL, outing_payload,
        )

        view = workflow.get_by_requester(directory.asha.student_id)
        assert [r.request_id for r in view.requests] == [second.request_id, first.request_id]
        assert (view.stats.pending, view.stats.denied) == (1, 1)

    def test_floor_queue_is_limited_to_assigned_floor(
        self, workflow, directory, outing_payload,
    ):
        workflow.submit(
            directory.asha.student_id, RequestKind.OUTING, Category.NORMAL, outing_payload,
        )
        workflow.submit(
            directory.ravi.student_id, RequestKind.OUTING, Category.NORMAL, outing_payload,
        )

        floor_one = workflow.get_by_approver_scope(directory.floor_d1.approver_id)
        floor_two = workflow.get_by_approver_scope(directory.floor_d2.approver_id)
        assert [r.student_id for r in floor_one.requests] == [directory.asha.student_id]
        assert [r.student_id for r in floor_two.requests] == [directory.ravi.student_id]

        hostel = workflow.get_by_approver_scope(directory.hostel_d.approver_id)
        assert hostel.requests == ()

    def test_unknown_approver(self, workflow):
        with pytest.raises(ApproverNotFoundError):
            workflow.get_by_approver_scope(uuid4())


class TestPromotion:
    def test_graduated_student_cannot_submit(self, workflow, directory, outing_payload):
        workflow.promote_students(
            directory.hostel_d.approver_id, [directory.ravi.student_id], "Graduated",
        )
        with pytest.raises(IneligibleRequesterError):
            workflow.submit(
                directory.ravi.student_id, RequestKind.OUTING, Category.NORMAL, outing_payload,
            )

    def test_warden_cannot_promote(self, workflow, directory):
        with pytest.raises(InsufficientRoleError):
            workflow.promote_students(
                directory.warden.approver_id, [directory.ravi.student_id], "2nd",
            )

    def test_graduated_listing_follows_promotion(self, workflow, directory):
        workflow.promote_students(
            directory.hostel_d.approver_id, [directory.ravi.student_id], "Graduated",
        )
        graduates = workflow.graduated_students(directory.hostel_d.approver_id)
        assert {s.student_id for s in graduates} == {
            directory.old_timer.student_id, directory.ravi.student_id,
        }

        with pytest.raises(ApproverNotFoundError):
            workflow.graduated_students(uuid4())


class TestSideEffectIsolation:
    def test_render_failure_keeps_approval_and_retry_recovers(
        self, workflow, directory, outing_payload, renderer,
    ):
        request = workflow.submit(
            directory.asha.student_id, RequestKind.OUTING, Category.EMERGENCY, outing_payload,
        )
        workflow.decide(request.request_id, directory.hostel_d.approver_id, Decision.APPROVE)

        renderer.failures_left = 2
        final = workflow.decide(
            request.request_id, directory.warden.approver_id, Decision.APPROVE,
        )
        assert final.status == RequestStatus.APPROVED
        assert final.credentials.images_missing

        result = workflow.retry_credentials(request.request_id)
        assert not result.credentials.images_missing
        assert result.credentials.outgoing.token == final.credentials.outgoing.token

    def test_realtime_outage_does_not_revert_decision(
        self, workflow, directory, outing_payload, realtime, captured_logs,
    ):
        request = workflow.submit(
            directory.asha.student_id, RequestKind.OUTING, Category.NORMAL, outing_payload,
        )
        realtime.failing_keys.add("D-Block-1")

        after = workflow.decide(
            request.request_id, directory.floor_d1.approver_id, Decision.APPROVE,
        )

        assert workflow.get_request(request.request_id) == after
        assert any(
            r["message"] == "notification_partially_failed" for r in captured_logs()
        )

    def test_issuance_failure_still_notifies_approval(
        self, session_factory, directory, outing_payload, deterministic_clock,
        realtime, sms_gateway, captured_logs,
    ):
        class FailingIssuerWorkflow(PermissionWorkflow):
            def issue_credentials(self, request_id):
                raise RuntimeError("issuer unavailable")

        workflow = FailingIssuerWorkflow(
            session_factory, signing_key=b"k", clock=deterministic_clock,
            realtime=realtime, sms=sms_gateway,
        )
        request = workflow.submit(
            directory.asha.student_id, RequestKind.OUTING, Category.EMERGENCY, outing_payload,
        )
        workflow.decide(request.request_id, directory.hostel_d.approver_id, Decision.APPROVE)
        final = workflow.decide(
            request.request_id, directory.warden.approver_id, Decision.APPROVE,
        )

        assert final.status == RequestStatus.APPROVED
        assert final.awaiting_credentials
        assert any(
            r["message"] == "post_commit_side_effect_failed" and r["stage"] == "credentials"
            for r in captured_logs()
        )

        assert realtime.events_for("D-Block-1")[-1] == "request_approved"
        assert "request_approved" in realtime.events_for(
            student_channel(directory.asha.student_id),
        )
        assert "credentials_issued" not in realtime.events_for("D-Block-1")
        assert len(sms_gateway.sent) == 1

    def test_retry_after_issuance_failure_announces_passes(
        self, session_factory, directory, outing_payload, deterministic_clock,
        realtime, sms_gateway, renderer,
    ):
        class FlakyIssuerWorkflow(PermissionWorkflow):
            failures_left = 1

            def issue_credentials(self, request_id):
                if self.failures_left:
                    self.failures_left -= 1
                    raise RuntimeError("issuer unavailable")
                return super().issue_credentials(request_id)

        workflow = FlakyIssuerWorkflow(
            session_factory, signing_key=b"k", clock=deterministic_clock,
            realtime=realtime, sms=sms_gateway, renderer=renderer,
        )
        request = workflow.submit(
            directory.asha.student_id, RequestKind.OUTING, Category.EMERGENCY, outing_payload,
        )
        workflow.decide(request.request_id, directory.hostel_d.approver_id, Decision.APPROVE)
        workflow.decide(request.request_id, directory.warden.approver_id, Decision.APPROVE)

        deterministic_clock.advance(60)
        result = workflow.retry_credentials(request.request_id)

        assert result.issued
        assert not result.credentials.images_missing
        assert realtime.events_for("D-Block-1")[-2:] == [
            "request_approved", "credentials_issued",
        ]
        notices = workflow.notices_for(directory.asha.student_id)
        assert notices[0].category == "credentials_issued"
        assert len(sms_gateway.sent) == 1


def test_side_effects_on_executor(
    session_factory, directory, outing_payload, deterministic_clock, realtime, renderer,
):
    with ThreadPoolExecutor(max_workers=2) as executor:
        workflow = PermissionWorkflow(
            session_factory,
            signing_key=b"executor-key",
            clock=deterministic_clock,
            realtime=realtime,
            renderer=renderer,
            executor=executor,
        )
        request = workflow.submit(
            directory.asha.student_id, RequestKind.OUTING, Category.EMERGENCY, outing_payload,
        )
        workflow.wait_for_side_effects()
        workflow.decide(request.request_id, directory.hostel_d.approver_id, Decision.APPROVE)
        workflow.wait_for_side_effects()
        final = workflow.decide(
            request.request_id, directory.warden.approver_id, Decision.APPROVE,
        )
        assert final.credentials is None
        workflow.wait_for_side_effects()

    stored = workflow.get_request(request.request_id)
    assert stored.credentials is not None
    assert realtime.events_for("D-Block-1")[-2:] == ["request_approved", "credentials_issued"]


def test_log_records_carry_correlation_context(
    workflow, directory, outing_payload, captured_logs,
):
    request = workflow.submit(
        directory.asha.student_id, RequestKind.OUTING, Category.NORMAL, outing_payload,
    )

    records = [
        r for r in captured_logs() if r["message"] == "permission_request_submitted"
    ]
    assert len(records) == 1
    assert records[0]["student_id"] == str(directory.asha.student_id)
    assert records[0]["correlation_id"]

    dispatched = [
        r for r in captured_logs() if r["message"] == "notification_dispatched"
    ]
    assert dispatched[0]["request_id"] == str(request.request_id)
    assert dispatched[0]["correlation_id"] == records[0]["correlation_id"]


def test_from_config_uses_configured_windows(
    session_factory, directory, outing_payload, deterministic_clock, renderer,
):
    config = get_active_config(environ=DEV_ENV)
    workflow = PermissionWorkflow.from_config(
        config, session_factory, clock=deterministic_clock, renderer=renderer,
        sms=None,
    )
    request = workflow.submit(
        directory.asha.student_id, RequestKind.OUTING, Category.EMERGENCY, outing_payload,
    )
    assert request.routed_to.approver_email.endswith("@kietgroup.com")

    workflow.decide(request.request_id, directory.hostel_d.approver_id, Decision.APPROVE)
    final = workflow.decide(
        request.request_id, directory.warden.approver_id, Decision.APPROVE,
    )

    outgoing = final.credentials.outgoing
    assert outgoing.valid_until - outgoing.valid_from == timedelta(
        hours=config.credentials.outgoing_valid_hours,
    )


def test_inline_sms_makes_one_attempt(
    monkeypatch, session_factory, directory, outing_payload, deterministic_clock,
    realtime, renderer,
):
    calls = []
    real_client = httpx.Client

    def unavailable(request):
        calls.append(request)
        return httpx.Response(503, json={"message": "Service unavailable"})

    def client_with_mock_transport(**kwargs):
        return real_client(transport=httpx.MockTransport(unavailable), **kwargs)

    monkeypatch.setattr(httpx, "Client", client_with_mock_transport)
    config = get_active_config(environ={
        **DEV_ENV,
        "TWILIO_ACCOUNT_SID": "AC123",
        "TWILIO_AUTH_TOKEN": "secret",
        "TWILIO_FROM_NUMBER": "+15550001111",
    })
    assert config.sms.max_attempts == 3

    workflow = PermissionWorkflow.from_config(
        config, session_factory, clock=deterministic_clock,
        realtime=realtime, renderer=renderer,
    )
    request = workflow.submit(
        directory.asha.student_id, RequestKind.OUTING, Category.EMERGENCY, outing_payload,
    )
    workflow.decide(request.request_id, directory.hostel_d.approver_id, Decision.APPROVE)
    final = workflow.decide(
        request.request_id, directory.warden.approver_id, Decision.APPROVE,
    )

    assert len(calls) == 1
    assert final.status == RequestStatus.APPROVED
    assert final.credentials is not None
    assert workflow.get_request(request.request_id).status == RequestStatus.APPROVED
