"""
Escalation domain types (``reimbursement_kernel.domain.escalation``).

Responsibility
--------------
Escalation records raised when a claim breaches its SLA, the decision the
escalation engine makes, and the result returned to callers.

Invariants enforced
-------------------
* ``level >= 1``.
* ``resolution`` and ``resolved_at`` are set together.
* At most one unresolved escalation per claim (enforced by the stores and
  ``EscalationService``).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from reimbursement_kernel.domain.values import to_wire

if TYPE_CHECKING:
    from reimbursement_kernel.domain.audit import AuditLogEntry
    from reimbursement_kernel.domain.permissions import Role
    from reimbursement_kernel.domain.sla import SLAEvaluation


ENTITY_TYPE_ESCALATION = "Escalation"


class EscalationReason(str, Enum):
    DEADLINE_MISSED = "DEADLINE_MISSED"
    HIGH_AMOUNT = "HIGH_AMOUNT"
    INCOMPLETE_DOCS = "INCOMPLETE_DOCS"
    USER_REQUEST = "USER_REQUEST"


class EscalationDecision(str, Enum):
    """What the escalation engine decided for one evaluation."""

    ESCALATE = "escalate"
    ALREADY_ESCALATED = "already_escalated"
    NOT_BREACHED = "not_breached"
    FROZEN = "frozen"


@dataclass(frozen=True)
class Escalation:
    """Record of an SLA breach escalation. Never deleted."""

    escalation_id: str
    claim_id: str
    escalated_at: datetime
    escalated_by: str
    escalated_to: str
    level: int
    reason: EscalationReason
    details: str | None = None
    resolution: str | None = None
    resolved_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.level < 1:
            raise ValueError(f"Escalation level must be >= 1, got {self.level}")
        if (self.resolution is None) != (self.resolved_at is None):
            raise ValueError("resolution and resolved_at must be set together")

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None

    def resolve(self, resolution: str, resolved_at: datetime) -> Escalation:
        return replace(self, resolution=resolution, resolved_at=resolved_at)

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.escalation_id,
            "claimId": self.claim_id,
            "escalatedAt": to_wire(self.escalated_at),
            "escalatedBy": self.escalated_by,
            "escalatedTo": self.escalated_to,
            "level": self.level,
            "reason": self.reason.value,
            "details": self.details,
            "resolution": self.resolution,
            "resolvedAt": to_wire(self.resolved_at),
        }


@dataclass(frozen=True)
class EscalationResult:
    """Outcome of ``EscalationService.maybe_escalate``.

    ``escalation`` and ``audit_entry`` are set only when ``escalated`` is
    True.  ``open_escalation`` carries the pre-existing unresolved record
    when the call was an idempotent no-op.
    """

    escalated: bool
    decision: EscalationDecision
    evaluation: SLAEvaluation
    escalation: Escalation | None = None
    audit_entry: AuditLogEntry | None = None
    open_escalation: Escalation | None = None
    next_assignee_role: Role | None = None
