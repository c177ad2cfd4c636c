"""ORM models for the permit kernel."""

from permit_kernel.models.notice import NoticeModel
from permit_kernel.models.permission_request import (
    ApprovalActionModel,
    PermissionRequestModel,
)
from permit_kernel.models.student import StaffMemberModel, StudentModel

__all__ = [
    "ApprovalActionModel",
    "NoticeModel",
    "PermissionRequestModel",
    "StaffMemberModel",
    "StudentModel",
]
