"""Store ports and their in-memory and SQLAlchemy implementations."""

from reimbursement_kernel.storage.base import (
    AuditStore,
    ClaimStore,
    EscalationStore,
    SLAPolicyStore,
)
from reimbursement_kernel.storage.memory import (
    InMemoryAuditStore,
    InMemoryClaimStore,
    InMemoryEscalationStore,
    InMemorySLAPolicyStore,
    InMemoryTransactions,
)

__all__ = [
    "AuditStore",
    "ClaimStore",
    "EscalationStore",
    "InMemoryAuditStore",
    "InMemoryClaimStore",
    "InMemoryEscalationStore",
    "InMemorySLAPolicyStore",
    "InMemoryTransactions",
    "SLAPolicyStore",
]
