"""
Typed Exception Hierarchy for the Reimbursement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (an HTTP adapter, a scheduler, a CLI) must map kernel failures onto
their own surface -- 401, 403, 404, 409 -- without parsing message strings.
Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA as attributes (claim_id, role, versions, ...)

Example:
    try:
        executor.approve(claim_id, actor)
    except VersionConflictError as e:
        return 409, {"error": e.code, "expected": e.expected_version,
                     "actual": e.actual_version}
    except ForbiddenError as e:
        return 403, {"error": e.code}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ReimbursementKernelError (base)
    |
    +-- AccessError
    |   +-- UnauthenticatedError
    |   +-- ForbiddenError
    |       +-- DepartmentMismatchError
    |       +-- NotClaimOwnerError
    |
    +-- ClaimValidationError
    |
    +-- NotFoundError
    |   +-- ClaimNotFoundError
    |   +-- SLAPolicyNotFoundError
    |   +-- EscalationNotFoundError
    |
    +-- ConflictError
    |   +-- VersionConflictError
    |   +-- InvalidTransitionError
    |   +-- DuplicateClaimError
    |   +-- DuplicateEscalationError
    |   +-- EscalationAlreadyResolvedError
    |
    +-- PersistenceUnavailableError
    |
    +-- AuditError
        +-- AuditChainBrokenError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|------------------------------------------
Access       | UNAUTHENTICATED             | No resolvable role for the caller
             | FORBIDDEN                   | Role lacks permission for the action
             | DEPARTMENT_MISMATCH         | Approver acting outside own department
             | NOT_CLAIM_OWNER             | Student acting on someone else's claim
-------------|-----------------------------|------------------------------------------
Validation   | VALIDATION_ERROR            | Missing/invalid field before mutation
-------------|-----------------------------|------------------------------------------
Not found    | CLAIM_NOT_FOUND             | Unknown claim id
             | SLA_POLICY_NOT_FOUND        | Unknown SLA policy id
             | ESCALATION_NOT_FOUND        | Unknown escalation id
-------------|-----------------------------|------------------------------------------
Conflict     | VERSION_CONFLICT            | Compare-and-set lost the race
             | INVALID_TRANSITION          | Action not legal from current status
             | DUPLICATE_CLAIM             | Claim id already stored
             | DUPLICATE_OPEN_ESCALATION   | Second unresolved escalation for a claim
             | ESCALATION_ALREADY_RESOLVED | Resolving a resolved escalation
-------------|-----------------------------|------------------------------------------
Persistence  | PERSISTENCE_UNAVAILABLE     | Claim store unreachable (fatal)
-------------|-----------------------------|------------------------------------------
Audit        | AUDIT_CHAIN_BROKEN          | Hash chain validation failed
             | IMMUTABILITY_VIOLATION      | Modifying/deleting an immutable record

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Access, validation, not-found and conflict errors are raised BEFORE any
   mutation and BEFORE any audit entry is written.  Callers may surface them
   directly.

2. ConflictError means "re-fetch and retry".  VersionConflictError carries
   both versions so a client can tell a stale read from a lost race.

3. PersistenceUnavailableError from a claim write is fatal to the request.
   Audit-sink delivery failures are never raised (see services/audit_outbox).
"""


class ReimbursementKernelError(Exception):
    """
    Base exception for all reimbursement kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "REIMBURSEMENT_KERNEL_ERROR"


# Access exceptions


class AccessError(ReimbursementKernelError):
    """Base exception for authentication/authorization failures."""

    code: str = "ACCESS_ERROR"


class UnauthenticatedError(AccessError):
    """No resolvable role for the caller."""

    code: str = "UNAUTHENTICATED"

    def __init__(self, reason: str = "role missing"):
        self.reason = reason
        super().__init__(f"Unauthenticated: {reason}")


class ForbiddenError(AccessError):
    """Role lacks permission for the requested action."""

    code: str = "FORBIDDEN"

    def __init__(self, role: str, action: str, reason: str = "action not allowed"):
        self.role = role
        self.action = action
        self.reason = reason
        super().__init__(f"Forbidden: role {role} may not {action} ({reason})")


class DepartmentMismatchError(ForbiddenError):
    """Approver's department does not match the claim's department."""

    code: str = "DEPARTMENT_MISMATCH"

    def __init__(
        self,
        role: str,
        action: str,
        actor_department_id: str | None,
        claim_department_id: str,
    ):
        self.actor_department_id = actor_department_id
        self.claim_department_id = claim_department_id
        super().__init__(
            role,
            action,
            reason=(
                f"actor department {actor_department_id} does not match "
                f"claim department {claim_department_id}"
            ),
        )


class NotClaimOwnerError(ForbiddenError):
    """Caller does not own the claim it is trying to modify."""

    code: str = "NOT_CLAIM_OWNER"

    def __init__(self, role: str, action: str, user_id: str, claim_id: str):
        self.user_id = user_id
        self.claim_id = claim_id
        super().__init__(
            role, action, reason=f"user {user_id} does not own claim {claim_id}"
        )


# Validation exceptions


class ClaimValidationError(ReimbursementKernelError):
    """
    Input failed validation before any mutation.

    `field_errors` is a list of {"field": ..., "message": ...} dicts so an
    adapter can render per-field messages.
    """

    code: str = "VALIDATION_ERROR"

    def __init__(self, field_errors: list[dict[str, str]]):
        self.field_errors = field_errors
        fields = ", ".join(e["field"] for e in field_errors)
        super().__init__(f"Validation failed: {fields}")

    @classmethod
    def single(cls, field: str, message: str) -> "ClaimValidationError":
        return cls([{"field": field, "message": message}])


# Not-found exceptions


class NotFoundError(ReimbursementKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class ClaimNotFoundError(NotFoundError):
    """Claim with given ID was not found."""

    code: str = "CLAIM_NOT_FOUND"

    def __init__(self, claim_id: str):
        self.claim_id = claim_id
        super().__init__(f"Claim not found: {claim_id}")


class SLAPolicyNotFoundError(NotFoundError):
    """SLA policy with given ID was not found."""

    code: str = "SLA_POLICY_NOT_FOUND"

    def __init__(self, sla_id: str):
        self.sla_id = sla_id
        super().__init__(f"SLA policy not found: {sla_id}")


class EscalationNotFoundError(NotFoundError):
    """Escalation with given ID was not found."""

    code: str = "ESCALATION_NOT_FOUND"

    def __init__(self, escalation_id: str):
        self.escalation_id = escalation_id
        super().__init__(f"Escalation not found: {escalation_id}")


# Conflict exceptions


class ConflictError(ReimbursementKernelError):
    """Base exception for state conflicts. Callers should re-fetch and retry."""

    code: str = "CONFLICT"


class VersionConflictError(ConflictError):
    """Compare-and-set on (claim_id, expected_version) failed."""

    code: str = "VERSION_CONFLICT"

    def __init__(self, claim_id: str, expected_version: int, actual_version: int):
        self.claim_id = claim_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Version conflict on claim {claim_id}: "
            f"expected {expected_version}, found {actual_version}"
        )


class InvalidTransitionError(ConflictError):
    """Action is not legal from the claim's current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, claim_id: str, action: str, from_status: str):
        self.claim_id = claim_id
        self.action = action
        self.from_status = from_status
        super().__init__(
            f"Cannot {action} claim {claim_id} from status {from_status}"
        )


class DuplicateClaimError(ConflictError):
    """Claim with given ID already exists in the store."""

    code: str = "DUPLICATE_CLAIM"

    def __init__(self, claim_id: str):
        self.claim_id = claim_id
        super().__init__(f"Claim already exists: {claim_id}")


class DuplicateEscalationError(ConflictError):
    """An unresolved escalation already exists for this claim."""

    code: str = "DUPLICATE_OPEN_ESCALATION"

    def __init__(self, claim_id: str, open_escalation_id: str):
        self.claim_id = claim_id
        self.open_escalation_id = open_escalation_id
        super().__init__(
            f"Claim {claim_id} already has unresolved escalation {open_escalation_id}"
        )


class EscalationAlreadyResolvedError(ConflictError):
    """Escalation has already been resolved."""

    code: str = "ESCALATION_ALREADY_RESOLVED"

    def __init__(self, escalation_id: str):
        self.escalation_id = escalation_id
        super().__init__(f"Escalation already resolved: {escalation_id}")


# Persistence exceptions


class PersistenceUnavailableError(ReimbursementKernelError):
    """
    The claim store could not be reached.

    Fatal to the request.  Never raised for audit-sink delivery, which is
    best-effort.
    """

    code: str = "PERSISTENCE_UNAVAILABLE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Persistence unavailable during {operation}: {reason}")


# Audit exceptions


class AuditError(ReimbursementKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """
    Audit hash chain validation failed.

    Someone modified or removed an audit entry after it was appended.
    """

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, entry_id: str, expected_hash: str, actual_hash: str):
        self.entry_id = entry_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at entry {entry_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


class ImmutabilityViolationError(AuditError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
