"""Write-side services for the permit kernel."""

from permit_kernel.services.credential_issuer import CredentialIssuer, IssueResult
from permit_kernel.services.decision_service import DecisionOutcome, DecisionService
from permit_kernel.services.duplicate_guard import DuplicateRequestGuard
from permit_kernel.services.notice_service import Notice, NoticeService
from permit_kernel.services.notification_dispatcher import (
    DispatchReport,
    NotificationDispatcher,
    TransitionEvent,
)
from permit_kernel.services.permission_repository import PermissionRepository
from permit_kernel.services.student_service import PromotionResult, StudentService
from permit_kernel.services.submission_service import SubmissionService

__all__ = [
    "CredentialIssuer",
    "DecisionOutcome",
    "DecisionService",
    "DispatchReport",
    "DuplicateRequestGuard",
    "IssueResult",
    "Notice",
    "NoticeService",
    "NotificationDispatcher",
    "PermissionRepository",
    "PromotionResult",
    "StudentService",
    "SubmissionService",
    "TransitionEvent",
]
