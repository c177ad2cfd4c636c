"""
Tests for RequestSelector and DirectorySelector.
"""

import pytest

from permit_kernel.domain.permission import ApproverRole, Category, Decision, RequestKind
from permit_kernel.selectors.directory_selector import DirectorySelector
from permit_kernel.selectors.request_selector import RequestSelector, RequestStats
from permit_kernel.services.decision_service import DecisionService
from permit_kernel.services.submission_service import SubmissionService


@pytest.fixture
def history(session, deterministic_clock, directory, outing_payload):
    """Asha: one denied, one pending.  Ravi: one approved."""
    submissions = SubmissionService(session, clock=deterministic_clock)
    decisions = DecisionService(session, clock=deterministic_clock)

    denied = submissions.submit(
        directory.asha.student_id, RequestKind.OUTING, Category.NORMAL, outing_payload,
    )
    decisions.decide(denied.request_id, directory.floor_d1.approver_id, Decision.DENY)

    deterministic_clock.advance(60)
    submissions.submit(
        directory.asha.student_id, RequestKind.OUTING, Category.NORMAL, outing_payload,
    )

    approved = submissions.submit(
        directory.ravi.student_id, RequestKind.OUTING, Category.EMERGENCY, outing_payload,
    )
    decisions.decide(approved.request_id, directory.hostel_d.approver_id, Decision.APPROVE)
    decisions.decide(approved.request_id, directory.warden.approver_id, Decision.APPROVE)


class TestStudentStats:
    def test_counts_by_status(self, session, history, directory):
        stats = RequestSelector(session).stats_for_student(directory.asha.student_id)
        assert stats == RequestStats(pending=1, approved=0, denied=1)
        assert stats.total == 2

    def test_student_without_requests(self, session, history, directory):
        stats = RequestSelector(session).stats_for_student(directory.meera.student_id)
        assert stats.total == 0


class TestScopeStats:
    def test_floor_incharge_counts(self, session, history):
        stats = RequestSelector(session).stats_for_scope(
            ApproverRole.FLOOR_INCHARGE, ["D-Block"], ["1"],
        )
        assert stats == RequestStats(pending=1, approved=0, denied=1)

    def test_other_floor_sees_nothing(self, session, history):
        stats = RequestSelector(session).stats_for_scope(
            ApproverRole.FLOOR_INCHARGE, ["D-Block"], ["2"],
        )
        assert stats.total == 0

    def test_warden_counts_own_decisions(self, session, history):
        stats = RequestSelector(session).stats_for_scope(ApproverRole.WARDEN, ["D-Block"])
        assert stats == RequestStats(pending=0, approved=1, denied=0)


class TestDirectory:
    def test_approver_by_email_is_case_insensitive(self, session, directory):
        found = DirectorySelector(session).get_approver_by_email("Warden@KietGroup.com")
        assert found.approver_id == directory.warden.approver_id

    def test_students_in_womens_block(self, session, directory):
        students = DirectorySelector(session).students_in_blocks(["W-Block"])
        assert [s.student_id for s in students] == [directory.meera.student_id]
