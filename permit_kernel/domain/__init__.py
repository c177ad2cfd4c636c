"""
Pure domain layer.

This module contains immutable value objects and the permission state
machine with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Network
- I/O

Time enters only through an injected Clock.
"""

from permit_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from permit_kernel.domain.permission import (
    COMPLETED,
    ApprovalAction,
    ApproverProfile,
    ApproverRole,
    Category,
    Credential,
    CredentialDirection,
    CredentialPair,
    Decision,
    FirstLineRoute,
    HomeVisitDetails,
    OutingDetails,
    PermissionRequest,
    RequestKind,
    RequestStatus,
    StudentCohort,
    StudentProfile,
    StudentStatus,
)
from permit_kernel.domain.routing import (
    AcademicCohortMapper,
    RoutePlan,
    approval_path,
    resolve_route,
    scope_key,
)
from permit_kernel.domain.transitions import apply_decision, authorize, open_request

__all__ = [
    "COMPLETED",
    "AcademicCohortMapper",
    "ApprovalAction",
    "ApproverProfile",
    "ApproverRole",
    "Category",
    "Clock",
    "Credential",
    "CredentialDirection",
    "CredentialPair",
    "Decision",
    "DeterministicClock",
    "FirstLineRoute",
    "HomeVisitDetails",
    "OutingDetails",
    "PermissionRequest",
    "RequestKind",
    "RequestStatus",
    "RoutePlan",
    "StudentCohort",
    "StudentProfile",
    "StudentStatus",
    "SystemClock",
    "apply_decision",
    "approval_path",
    "authorize",
    "open_request",
    "resolve_route",
    "scope_key",
]
