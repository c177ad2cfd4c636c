"""
SMS text composition for parent notifications.
"""

from __future__ import annotations

from permit_kernel.domain.permission import (
    HomeVisitDetails,
    OutingDetails,
    PermissionRequest,
    StudentProfile,
)


def _who(student: StudentProfile | None) -> str:
    name = (student.name if student else "") or "your ward"
    roll = f" ({student.roll_number})" if student and student.roll_number else ""
    return f"{name}{roll}"


def compose_final_approval_text(
    request: PermissionRequest,
    student: StudentProfile | None,
) -> str:
    """Message sent to the parent when a request is fully approved."""
    details = request.details
    who = _who(student)

    if isinstance(details, OutingDetails):
        purpose = f" for {details.purpose}" if details.purpose else ""
        return (
            f"Your child {who} outing request{purpose} on "
            f"{details.outing_date.isoformat()} "
            f"{details.out_time.strftime('%H:%M')}-{details.return_time.strftime('%H:%M')} "
            "has been fully approved."
        )

    assert isinstance(details, HomeVisitDetails)
    town = f" to {details.home_town}" if details.home_town else ""
    return (
        f"Your child {who} home permission request{town} "
        f"({details.going_date.isoformat()} to {details.incoming_date.isoformat()}) "
        "has been fully approved."
    )
