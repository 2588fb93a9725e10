"""SQLAlchemy ORM models for the reimbursement kernel."""

from reimbursement_kernel.models.audit_log import AuditLogModel
from reimbursement_kernel.models.claim import ClaimModel
from reimbursement_kernel.models.escalation import EscalationModel
from reimbursement_kernel.models.sla_policy import SLAPolicyModel

__all__ = [
    "AuditLogModel",
    "ClaimModel",
    "EscalationModel",
    "SLAPolicyModel",
]
