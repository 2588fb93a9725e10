"""
reimbursement_engines.escalation -- Pure escalation decision.

Responsibility:
    Decide, from an SLA evaluation and the claim's currently unresolved
    escalation (if any), whether a new escalation must be raised.  Also
    computes the level and target role of an escalation step.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The side-effecting half
    (creating the record, writing the audit entry, per-claim locking) lives
    in ``reimbursement_services.escalation_service``.

Invariants enforced:
    - Only a breached evaluation escalates.
    - A claim with an unresolved escalation is never escalated again by the
      automatic trigger (idempotence).
    - Frozen (decided) claims never escalate.
"""

from __future__ import annotations

from reimbursement_engines.tracer import traced_engine
from reimbursement_kernel.domain.escalation import Escalation, EscalationDecision
from reimbursement_kernel.domain.permissions import Role
from reimbursement_kernel.domain.sla import SLAEvaluation

# Who a breached claim is routed to, by escalation level.
ESCALATION_LADDER: dict[int, Role] = {
    1: Role.ESCALATION_AUTHORITY,
}


@traced_engine("escalation", "1.0")
def decide_escalation(
    evaluation: SLAEvaluation,
    open_escalation: Escalation | None,
) -> EscalationDecision:
    """Return the escalation decision for one evaluation."""
    if evaluation.frozen:
        return EscalationDecision.FROZEN
    if not evaluation.breached:
        return EscalationDecision.NOT_BREACHED
    if open_escalation is not None:
        return EscalationDecision.ALREADY_ESCALATED
    return EscalationDecision.ESCALATE


def next_level(open_escalation: Escalation | None) -> int:
    """Level of the next escalation step: one above the open one, else 1."""
    if open_escalation is None:
        return 1
    return open_escalation.level + 1


def target_role(level: int) -> Role:
    """Role a claim escalated to ``level`` is routed to.

    Levels above the configured ladder stay with the highest configured role.
    """
    if level < 1:
        raise ValueError(f"Escalation level must be >= 1, got {level}")
    eligible = [lvl for lvl in ESCALATION_LADDER if lvl <= level]
    return ESCALATION_LADDER[max(eligible)]
