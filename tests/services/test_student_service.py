"""
Tests for StudentService promotion and graduated-student listing.
"""

from uuid import uuid4

import pytest

from permit_kernel.domain.permission import StudentStatus
from permit_kernel.exceptions import (
    ForbiddenError,
    InsufficientRoleError,
    InvalidPromotionError,
)
from permit_kernel.selectors.directory_selector import DirectorySelector
from permit_kernel.services.student_service import StudentService


@pytest.fixture
def student_service(session):
    return StudentService(session)


class TestPromotion:
    def test_promotes_students_in_actor_blocks(self, student_service, session, directory):
        result = student_service.promote_students(
            directory.hostel_d,
            [directory.asha.student_id, directory.ravi.student_id],
            "3rd",
        )

        assert {s.student_id for s in result.promoted} == {
            directory.asha.student_id, directory.ravi.student_id,
        }
        assert result.skipped == ()
        asha = DirectorySelector(session).get_student(directory.asha.student_id)
        assert (asha.year, asha.semester) == ("3rd", 5)

    def test_students_outside_scope_are_skipped(self, student_service, session, directory):
        result = student_service.promote_students(
            directory.hostel_d,
            [directory.asha.student_id, directory.meera.student_id],
            "2nd",
        )

        assert result.skipped == (directory.meera.student_id,)
        meera = DirectorySelector(session).get_student(directory.meera.student_id)
        assert meera.semester == directory.meera.semester

    def test_graduation_blocks_new_requests(self, student_service, session, directory):
        result = student_service.promote_students(
            directory.hostel_d, [directory.asha.student_id], "Graduated",
        )
        (asha,) = result.promoted
        assert asha.status == StudentStatus.GRADUATED
        assert not asha.can_submit

    def test_logs_promotion(self, student_service, directory, captured_logs):
        student_service.promote_students(
            directory.hostel_d, [directory.ravi.student_id], "2nd",
        )
        (record,) = [r for r in captured_logs() if r["message"] == "students_promoted"]
        assert record["promoted_count"] == 1
        assert record["target_year"] == "2nd"


class TestRejections:
    @pytest.mark.parametrize("actor", ["floor_d1", "warden"])
    def test_only_hostel_incharge_may_promote(self, student_service, directory, actor):
        with pytest.raises(InsufficientRoleError) as exc_info:
            student_service.promote_students(
                getattr(directory, actor), [directory.asha.student_id], "2nd",
            )
        assert isinstance(exc_info.value, ForbiddenError)
        assert exc_info.value.required_role == "hostel-incharge"

    def test_empty_selection(self, student_service, directory):
        with pytest.raises(InvalidPromotionError):
            student_service.promote_students(directory.hostel_d, [], "2nd")

    def test_unknown_year(self, student_service, directory):
        with pytest.raises(InvalidPromotionError):
            student_service.promote_students(
                directory.hostel_d, [directory.asha.student_id], "5th",
            )

    def test_unknown_student_is_skipped(self, student_service, directory):
        stranger = uuid4()
        result = student_service.promote_students(directory.hostel_d, [stranger], "2nd")
        assert result.promoted == ()
        assert result.skipped == (stranger,)


class TestGraduatedListing:
    def test_lists_graduates_in_actor_blocks(self, student_service, directory):
        graduates = student_service.graduated_students(directory.hostel_d)
        assert [s.student_id for s in graduates] == [directory.old_timer.student_id]

    def test_newly_graduated_students_appear(self, student_service, directory):
        student_service.promote_students(
            directory.hostel_d, [directory.asha.student_id], "Graduated",
        )
        graduates = student_service.graduated_students(directory.hostel_d)
        assert [s.roll_number for s in graduates] == ["19ME002", "21CS001"]

    def test_other_blocks_are_not_listed(self, student_service, directory):
        assert student_service.graduated_students(directory.hostel_w) == []

    def test_only_hostel_incharge_may_list(self, student_service, directory):
        with pytest.raises(InsufficientRoleError):
            student_service.graduated_students(directory.warden)
