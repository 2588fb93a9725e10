"""
Pure domain layer.

This module contains pure value objects and domain tables with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable.  Time enters only through a ``Clock``.
"""

from reimbursement_kernel.domain.audit import (
    AuditAction,
    AuditDraft,
    AuditFilter,
    AuditLogEntry,
    RequestProvenance,
)
from reimbursement_kernel.domain.claim import (
    ENTITY_TYPE_CLAIM,
    Claim,
    ClaimCategory,
    ClaimInput,
    ClaimStatus,
)
from reimbursement_kernel.domain.claim_workflow import CLAIM_WORKFLOW, ClaimAction
from reimbursement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from reimbursement_kernel.domain.escalation import (
    ENTITY_TYPE_ESCALATION,
    Escalation,
    EscalationDecision,
    EscalationReason,
    EscalationResult,
)
from reimbursement_kernel.domain.permissions import (
    Action,
    Actor,
    Role,
    is_allowed,
)
from reimbursement_kernel.domain.sla import SLAEvaluation, SLAPolicy, SLAState

__all__ = [
    "Action",
    "Actor",
    "AuditAction",
    "AuditDraft",
    "AuditFilter",
    "AuditLogEntry",
    "CLAIM_WORKFLOW",
    "Claim",
    "ClaimAction",
    "ClaimCategory",
    "ClaimInput",
    "ClaimStatus",
    "Clock",
    "DeterministicClock",
    "ENTITY_TYPE_CLAIM",
    "ENTITY_TYPE_ESCALATION",
    "Escalation",
    "EscalationDecision",
    "EscalationReason",
    "EscalationResult",
    "RequestProvenance",
    "Role",
    "SLAEvaluation",
    "SLAPolicy",
    "SLAState",
    "SystemClock",
    "is_allowed",
]
