"""
Reimbursement Kernel

The claim lifecycle core:
- Claim state machine with optimistic concurrency
- Append-only audit ledger with hash chain
- Escalation records for SLA breaches
- Injectable storage (in-memory or SQLAlchemy)
"""

__version__ = "0.1.0"
