"""
Role and permission types (``reimbursement_kernel.domain.permissions``).

Responsibility
--------------
The static role -> allowed-action table and the typed ``Actor`` the core
sees once identity has been resolved at the system boundary.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* No action in the table mutates SLA policy or the audit log; both are
  system-derived only.
* SuperAdmin holds view/administration actions only, never claim mutation
  rights.
* MarkClaimPaid is granted to AccountsOfficer only.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Fixed roles."""

    STUDENT = "Student"
    DEPARTMENT_APPROVER = "DepartmentApprover"
    ACCOUNTS_OFFICER = "AccountsOfficer"
    ESCALATION_AUTHORITY = "EscalationAuthority"
    SUPER_ADMIN = "SuperAdmin"


class Action(str, Enum):
    """Canonical actions checked by the permission gate."""

    SUBMIT_CLAIM = "SubmitClaim"
    VIEW_OWN_CLAIMS = "ViewOwnClaims"
    VIEW_DEPARTMENT_CLAIMS = "ViewDepartmentClaims"
    APPROVE_CLAIM = "ApproveClaim"
    REJECT_CLAIM = "RejectClaim"
    ESCALATE_CLAIM = "EscalateClaim"
    VIEW_ESCALATIONS = "ViewEscalations"
    VIEW_AUDIT_LOG = "ViewAuditLog"
    MANAGE_USERS = "ManageUsers"
    MANAGE_DEPARTMENTS = "ManageDepartments"
    MANAGE_ROLES = "ManageRoles"
    MARK_CLAIM_PAID = "MarkClaimPaid"


ROLE_PERMISSIONS: dict[Role, frozenset[Action]] = {
    Role.STUDENT: frozenset({
        Action.SUBMIT_CLAIM,
        Action.VIEW_OWN_CLAIMS,
    }),
    Role.DEPARTMENT_APPROVER: frozenset({
        Action.VIEW_DEPARTMENT_CLAIMS,
        Action.APPROVE_CLAIM,
        Action.REJECT_CLAIM,
        Action.VIEW_AUDIT_LOG,
    }),
    Role.ACCOUNTS_OFFICER: frozenset({
        Action.VIEW_DEPARTMENT_CLAIMS,
        Action.APPROVE_CLAIM,
        Action.REJECT_CLAIM,
        Action.MARK_CLAIM_PAID,
        Action.VIEW_AUDIT_LOG,
    }),
    Role.ESCALATION_AUTHORITY: frozenset({
        Action.VIEW_ESCALATIONS,
        Action.VIEW_DEPARTMENT_CLAIMS,
        Action.APPROVE_CLAIM,
        Action.REJECT_CLAIM,
        Action.VIEW_AUDIT_LOG,
    }),
    # Read-only: administrative visibility without operational authority.
    Role.SUPER_ADMIN: frozenset({
        Action.VIEW_DEPARTMENT_CLAIMS,
        Action.VIEW_ESCALATIONS,
        Action.VIEW_AUDIT_LOG,
        Action.MANAGE_USERS,
        Action.MANAGE_DEPARTMENTS,
        Action.MANAGE_ROLES,
    }),
}

# Roles that may decide (approve/reject) a claim.
APPROVER_ROLES: frozenset[Role] = frozenset({
    Role.DEPARTMENT_APPROVER,
    Role.ACCOUNTS_OFFICER,
    Role.ESCALATION_AUTHORITY,
})


def is_allowed(role: Role, action: Action) -> bool:
    """Return True iff ``role`` is granted ``action`` by the static table."""
    return action in ROLE_PERMISSIONS.get(role, frozenset())


@dataclass(frozen=True)
class Actor:
    """The resolved caller: ``{role, departmentId, userId}``.

    Produced once by the identity collaborator; the core only ever sees the
    typed role.
    """

    user_id: str
    role: Role
    department_id: str | None = None


# Actor used for system-initiated actions (SLA sweeps, auto-resolution).
SYSTEM_ACTOR_ID = "system"
