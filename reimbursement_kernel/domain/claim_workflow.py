"""Reimbursement claim workflow.

State machine for claim processing after submission.  Submission itself
creates the claim directly in SUBMITTED and is gated by SubmitClaim.
"""

from enum import Enum

from reimbursement_kernel.domain.audit import AuditAction
from reimbursement_kernel.domain.claim import ClaimStatus
from reimbursement_kernel.domain.permissions import Action
from reimbursement_kernel.domain.workflow import Guard, Transition, Workflow


class ClaimAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    MARK_PAID = "mark_paid"
    ADD_DOCUMENT = "add_document"


SUBMIT_PERMISSION = Action.SUBMIT_CLAIM

# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

REJECTION_REASON_PRESENT = Guard(
    name="rejection_reason_present",
    description="A non-empty rejection reason is supplied",
)

APPROVED_AMOUNT_WITHIN_CLAIM = Guard(
    name="approved_amount_within_claim",
    description="Approved amount is positive and does not exceed the claimed amount",
)

DOCUMENT_REFERENCE_PRESENT = Guard(
    name="document_reference_present",
    description="A non-empty document reference is supplied",
)


def _decide(from_state: ClaimStatus) -> tuple[Transition, ...]:
    return (
        Transition(
            from_state=from_state.value,
            to_state=ClaimStatus.APPROVED.value,
            action=ClaimAction.APPROVE.value,
            permission=Action.APPROVE_CLAIM,
            audit_action=AuditAction.APPROVED,
            guard=APPROVED_AMOUNT_WITHIN_CLAIM,
            department_scoped=True,
        ),
        Transition(
            from_state=from_state.value,
            to_state=ClaimStatus.REJECTED.value,
            action=ClaimAction.REJECT.value,
            permission=Action.REJECT_CLAIM,
            audit_action=AuditAction.REJECTED,
            guard=REJECTION_REASON_PRESENT,
            department_scoped=True,
        ),
        Transition(
            from_state=from_state.value,
            to_state=from_state.value,
            action=ClaimAction.ADD_DOCUMENT.value,
            permission=Action.SUBMIT_CLAIM,
            audit_action=AuditAction.DOCUMENT_ADDED,
            guard=DOCUMENT_REFERENCE_PRESENT,
            owner_only=True,
        ),
    )


CLAIM_WORKFLOW = Workflow(
    name="reimbursement_claim",
    description="Reimbursement claim review and payment",
    initial_state=ClaimStatus.SUBMITTED.value,
    states=tuple(s.value for s in ClaimStatus),
    transitions=(
        *_decide(ClaimStatus.SUBMITTED),
        *_decide(ClaimStatus.UNDER_REVIEW),
        Transition(
            from_state=ClaimStatus.APPROVED.value,
            to_state=ClaimStatus.PAID.value,
            action=ClaimAction.MARK_PAID.value,
            permission=Action.MARK_CLAIM_PAID,
            audit_action=AuditAction.PAID,
        ),
    ),
    terminal_states=(ClaimStatus.REJECTED.value, ClaimStatus.PAID.value),
)


def permission_for(action: str) -> Action | None:
    """Permission required for ``action`` regardless of source state."""
    if action == ClaimAction.SUBMIT.value:
        return SUBMIT_PERMISSION
    candidates = CLAIM_WORKFLOW.transitions_for(action)
    return candidates[0].permission if candidates else None
