"""
reimbursement_services.timeline -- Chronological claim lifecycle view.

Builds the timeline a claim page shows from the claim's audit entries, plus
one derived "SLA breach detected" entry when the claim breached its
deadline (now, or before an escalation was raised).  The derived entry is
stamped with the due date, the instant the breach happened.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from reimbursement_kernel.domain.audit import AuditAction, AuditLogEntry
from reimbursement_kernel.domain.claim import Claim
from reimbursement_kernel.domain.escalation import ENTITY_TYPE_ESCALATION
from reimbursement_kernel.domain.permissions import SYSTEM_ACTOR_ID
from reimbursement_kernel.domain.sla import SLAEvaluation
from reimbursement_kernel.domain.values import to_wire

BREACH_ENTRY_ID = "sla-breach"

ACTION_TITLES: dict[AuditAction, str] = {
    AuditAction.CREATED: "Claim Created",
    AuditAction.SUBMITTED: "Claim Submitted",
    AuditAction.APPROVED: "Approved by Department",
    AuditAction.REJECTED: "Rejected",
    AuditAction.ESCALATED: "Escalated",
    AuditAction.PAID: "Payment Released",
    AuditAction.DOCUMENT_ADDED: "Document Added",
    AuditAction.SLA_UPDATED: "SLA Updated",
}


@dataclass(frozen=True)
class TimelineEntry:
    entry_id: str
    title: str
    actor: str
    timestamp: datetime
    action: AuditAction | None = None
    is_breach: bool = False

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.entry_id,
            "title": self.title,
            "actor": self.actor,
            "timestamp": to_wire(self.timestamp),
            "action": self.action.value if self.action is not None else None,
            "isBreach": self.is_breach,
        }


def build_timeline(
    claim: Claim,
    entries: Iterable[AuditLogEntry],
    evaluation: SLAEvaluation | None = None,
) -> list[TimelineEntry]:
    """Timeline entries in chronological order; ties keep ledger order."""
    entries = sorted(entries, key=lambda e: (e.timestamp, e.seq))
    timeline = [
        TimelineEntry(
            entry_id=e.entry_id,
            title=ACTION_TITLES.get(e.action, e.action.value),
            actor=e.user_id or SYSTEM_ACTOR_ID,
            timestamp=e.timestamp,
            action=e.action,
        )
        for e in entries
    ]

    escalated = any(e.entity_type == ENTITY_TYPE_ESCALATION for e in entries)
    breached_now = evaluation is not None and evaluation.breached
    if escalated or breached_now:
        timeline.append(TimelineEntry(
            entry_id=BREACH_ENTRY_ID,
            title="SLA Breach Detected",
            actor=SYSTEM_ACTOR_ID,
            timestamp=claim.due_date,
            is_breach=True,
        ))

    # stable: a breach at the same instant as a ledger entry stays after it
    timeline.sort(key=lambda t: t.timestamp)
    return timeline
