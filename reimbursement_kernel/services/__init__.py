"""Services for the reimbursement kernel (write side)."""

from reimbursement_kernel.services.audit_ledger import AuditLedger, AuditTrace
from reimbursement_kernel.services.audit_outbox import (
    AuditOutbox,
    AuditSink,
    JsonLinesAuditSink,
)
from reimbursement_kernel.services.claim_service import ClaimService

__all__ = [
    "AuditLedger",
    "AuditOutbox",
    "AuditSink",
    "AuditTrace",
    "ClaimService",
    "JsonLinesAuditSink",
]
