"""
Typed Exception Hierarchy for the Permit Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the workflow (HTTP layer, approver consoles, batch retries) need
to map failures onto user-visible outcomes without parsing messages:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        workflow.decide(request_id, approver_id, Decision.APPROVE)
    except DecisionAlreadyRecordedError as e:   # Typed catch
        return api_response(409, code=e.code, level=e.current_level)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PermitKernelError (base)
    |
    +-- NotFoundError
    |   +-- RequestNotFoundError
    |   +-- StudentNotFoundError
    |   +-- ApproverNotFoundError
    |
    +-- ForbiddenError
    |   +-- UnauthorizedApproverError
    |   +-- ApproverOutOfScopeError
    |   +-- IneligibleRequesterError
    |   +-- InsufficientRoleError
    |
    +-- ConflictError
    |   +-- ActiveRequestExistsError
    |   +-- RequestAlreadyResolvedError
    |   +-- DecisionAlreadyRecordedError
    |   +-- OptimisticLockError
    |
    +-- ValidationError
    |   +-- InvalidPayloadError
    |   +-- InvalidPromotionError
    |
    +-- DependencyFailure
    |   +-- CredentialRenderError
    |   +-- NotificationDeliveryError
    |   +-- SmsDeliveryError
    |
    +-- CredentialTokenError
    |
    +-- ImmutabilityViolationError

===============================================================================
PROPAGATION
===============================================================================

NotFound / Forbidden / Conflict / Validation abort an operation before any
state is written and reach the caller unchanged.

DependencyFailure is raised by collaborators (SMS, real-time, renderer) and
is caught and logged by the workflow AFTER the decision has committed.  It
never reverts an approval or a denial.
"""

from __future__ import annotations


class PermitKernelError(Exception):
    """
    Base exception for all permit kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "PERMIT_KERNEL_ERROR"


# =============================================================================
# NotFound
# =============================================================================


class NotFoundError(PermitKernelError):
    """Base exception for unknown requests, students, or approvers."""

    code: str = "NOT_FOUND"


class RequestNotFoundError(NotFoundError):
    """Permission request ID does not exist."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Permission request not found: {request_id}")


class StudentNotFoundError(NotFoundError):
    """Requester is not a known student."""

    code: str = "STUDENT_NOT_FOUND"

    def __init__(self, student_id: str):
        self.student_id = student_id
        super().__init__(f"Student not found: {student_id}")


class ApproverNotFoundError(NotFoundError):
    """Acting principal is not a known staff member."""

    code: str = "APPROVER_NOT_FOUND"

    def __init__(self, approver_id: str):
        self.approver_id = approver_id
        super().__init__(f"Approver not found: {approver_id}")


# =============================================================================
# Forbidden
# =============================================================================


class ForbiddenError(PermitKernelError):
    """Base exception for actions the principal is not allowed to take."""

    code: str = "FORBIDDEN"


class UnauthorizedApproverError(ForbiddenError):
    """The approver's role is not the role the request is waiting on."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(
        self,
        request_id: str,
        approver_role: str,
        expected_role: str,
    ):
        self.request_id = request_id
        self.approver_role = approver_role
        self.expected_role = expected_role
        super().__init__(
            f"Request {request_id} awaits {expected_role}; "
            f"{approver_role} cannot decide it"
        )


class ApproverOutOfScopeError(ForbiddenError):
    """The approver's assigned block/floor does not cover the student."""

    code: str = "APPROVER_OUT_OF_SCOPE"

    def __init__(
        self,
        request_id: str,
        approver_id: str,
        block: str,
        floor: str,
    ):
        self.request_id = request_id
        self.approver_id = approver_id
        self.block = block
        self.floor = floor
        super().__init__(
            f"Approver {approver_id} is not assigned to block {block} "
            f"floor {floor} (request {request_id})"
        )


class IneligibleRequesterError(ForbiddenError):
    """Requester's account status forbids new submissions."""

    code: str = "INELIGIBLE_REQUESTER"

    def __init__(self, student_id: str, status: str):
        self.student_id = student_id
        self.status = status
        super().__init__(
            f"Student {student_id} with status {status} cannot create requests"
        )


class InsufficientRoleError(ForbiddenError):
    """Administrative action needs a role the principal does not hold."""

    code: str = "INSUFFICIENT_ROLE"

    def __init__(self, actor_id: str, role: str, required_role: str):
        self.actor_id = actor_id
        self.role = role
        self.required_role = required_role
        super().__init__(
            f"{actor_id} has role {role}; {required_role} is required"
        )


# =============================================================================
# Conflict
# =============================================================================


class ConflictError(PermitKernelError):
    """Base exception for operations that contradict current state."""

    code: str = "CONFLICT"


class ActiveRequestExistsError(ConflictError):
    """Requester already holds a non-terminal request."""

    code: str = "ACTIVE_REQUEST_EXISTS"

    def __init__(self, student_id: str, active_request_id: str):
        self.student_id = student_id
        self.active_request_id = active_request_id
        super().__init__(
            f"Student {student_id} already has an active request "
            f"{active_request_id}"
        )


class RequestAlreadyResolvedError(ConflictError):
    """Decision attempted on a request that is approved or denied."""

    code: str = "REQUEST_ALREADY_RESOLVED"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Request {request_id} is already {status}; no further decisions"
        )


class DecisionAlreadyRecordedError(ConflictError):
    """The approver's level has already been decided on this request."""

    code: str = "DECISION_ALREADY_RECORDED"

    def __init__(self, request_id: str, role: str, current_level: str):
        self.request_id = request_id
        self.role = role
        self.current_level = current_level
        super().__init__(
            f"Request {request_id} already advanced past {role} "
            f"(now at {current_level})"
        )


class OptimisticLockError(ConflictError):
    """Compare-and-swap lost: the request changed since it was read."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, expected_version: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            f"version {expected_version} was modified by another transaction"
        )


# =============================================================================
# Validation
# =============================================================================


class ValidationError(PermitKernelError):
    """Base exception for malformed input."""

    code: str = "VALIDATION_ERROR"


class InvalidPayloadError(ValidationError):
    """Submission payload is missing fields or inconsistent."""

    code: str = "INVALID_PAYLOAD"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid payload field '{field}': {reason}")


class InvalidPromotionError(ValidationError):
    """Student promotion request is malformed."""

    code: str = "INVALID_PROMOTION"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid promotion: {reason}")


# =============================================================================
# Dependency failures (never revert a committed decision)
# =============================================================================


class DependencyFailure(PermitKernelError):
    """Base exception for failures in external collaborators."""

    code: str = "DEPENDENCY_FAILURE"


class CredentialRenderError(DependencyFailure):
    """The credential renderer could not produce an image."""

    code: str = "CREDENTIAL_RENDER_FAILED"

    def __init__(self, request_id: str, direction: str, reason: str):
        self.request_id = request_id
        self.direction = direction
        self.reason = reason
        super().__init__(
            f"Rendering {direction} credential for {request_id} failed: {reason}"
        )


class NotificationDeliveryError(DependencyFailure):
    """A notification channel failed to deliver."""

    code: str = "NOTIFICATION_DELIVERY_FAILED"

    def __init__(self, channel: str, request_id: str, reason: str):
        self.channel = channel
        self.request_id = request_id
        self.reason = reason
        super().__init__(
            f"Notification channel {channel} failed for {request_id}: {reason}"
        )


class SmsDeliveryError(DependencyFailure):
    """The SMS gateway rejected or failed a send."""

    code: str = "SMS_DELIVERY_FAILED"

    def __init__(self, to_number: str, reason: str, status_code: int | None = None):
        self.to_number = to_number
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"SMS to {to_number} failed: {reason}")


# =============================================================================
# Credential tokens
# =============================================================================


class CredentialTokenError(PermitKernelError):
    """A credential token is malformed or its signature does not verify."""

    code: str = "CREDENTIAL_TOKEN_INVALID"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid credential token: {reason}")


# =============================================================================
# Immutability
# =============================================================================


class ImmutabilityViolationError(PermitKernelError):
    """
    Attempted to modify or delete an immutable record.

    Approval actions are append-only; terminal requests accept only
    credential issuance.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
