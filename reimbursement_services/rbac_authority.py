"""
reimbursement_services.rbac_authority -- Runtime permission gate.

Responsibility:
    Check that an actor may perform an action: the static role table first,
    then the scoping rules the transition declares (department match for
    approve/reject, ownership for adding documents), then read scoping for
    claim views.

Architecture position:
    Services layer.  Consumes the static table in
    ``reimbursement_kernel.domain.permissions``.  Called by WorkflowExecutor
    and DashboardService before any read or mutation.

Invariants:
    - Identity is resolved before this module is called; it only sees typed
      ``Actor`` values.
    - Department scoping is strict: an approver without a department, or
      with a different one, is refused.
    - Every refusal raises before any store is written.
"""

from __future__ import annotations

from reimbursement_kernel.domain.claim import Claim
from reimbursement_kernel.domain.permissions import Action, Actor, Role, is_allowed
from reimbursement_kernel.domain.workflow import Transition
from reimbursement_kernel.exceptions import (
    DepartmentMismatchError,
    ForbiddenError,
    NotClaimOwnerError,
)
from reimbursement_kernel.logging_config import get_logger

logger = get_logger("services.rbac")


def check_permission(actor: Actor, action: Action) -> None:
    """Raise ForbiddenError unless ``actor.role`` is granted ``action``."""
    if not is_allowed(actor.role, action):
        logger.warning(
            "permission_denied",
            extra={
                "actor_id": actor.user_id,
                "role": actor.role.value,
                "permission": action.value,
            },
        )
        raise ForbiddenError(actor.role.value, action.value)


def check_department(actor: Actor, claim: Claim, action: Action) -> None:
    if actor.department_id is None or actor.department_id != claim.department_id:
        logger.warning(
            "department_mismatch",
            extra={
                "actor_id": actor.user_id,
                "actor_department_id": actor.department_id,
                "claim_department_id": claim.department_id,
                "permission": action.value,
            },
        )
        raise DepartmentMismatchError(
            actor.role.value, action.value, actor.department_id, claim.department_id,
        )


def check_owner(actor: Actor, claim: Claim, action: Action) -> None:
    if actor.user_id != claim.user_id:
        raise NotClaimOwnerError(actor.role.value, action.value, actor.user_id, claim.claim_id)


def authorize_transition(actor: Actor, claim: Claim, transition: Transition) -> None:
    """Permission plus the scoping the transition declares."""
    check_permission(actor, transition.permission)
    if transition.department_scoped:
        check_department(actor, claim, transition.permission)
    if transition.owner_only:
        check_owner(actor, claim, transition.permission)


def can_view_claim(actor: Actor, claim: Claim) -> bool:
    """Own claims for ViewOwnClaims; own department (or all, for admins) otherwise."""
    if actor.role == Role.SUPER_ADMIN:
        return True
    if is_allowed(actor.role, Action.VIEW_DEPARTMENT_CLAIMS):
        if actor.department_id is not None and actor.department_id == claim.department_id:
            return True
    if is_allowed(actor.role, Action.VIEW_OWN_CLAIMS):
        return actor.user_id == claim.user_id
    return False


def authorize_view(actor: Actor, claim: Claim) -> None:
    if not can_view_claim(actor, claim):
        raise ForbiddenError(
            actor.role.value, "ViewClaim", reason=f"claim {claim.claim_id} is out of scope",
        )
