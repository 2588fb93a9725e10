"""
Storage ports for the reimbursement kernel.

Contract:
    Services receive stores by injection; there is no process-wide state.
    Two implementations ship behind the same protocols: ``storage.memory``
    (tests, single process) and ``storage.sql`` (SQLAlchemy, production).

    ClaimStore.compare_and_set is the only way a stored claim changes.  It is
    atomic on ``(claim_id, expected_version)``: a stale version raises
    VersionConflictError and leaves the stored claim untouched.

    EscalationStore.add refuses a second open escalation for the same claim
    (DuplicateEscalationError).

    AuditStore is append-only: there is no update or delete.

    AuditStore.transaction opens a unit of work shared with the stores built
    alongside it (same in-memory transactions, same session factory).  Writes
    made inside it commit together or not at all, which is how a claim write
    and its audit entry stay in step.

Architecture: reimbursement_kernel/storage.  Imports domain/ and exceptions only.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Iterable, Protocol, runtime_checkable

from reimbursement_kernel.domain.audit import AuditFilter, AuditLogEntry
from reimbursement_kernel.domain.claim import Claim, ClaimStatus
from reimbursement_kernel.domain.escalation import Escalation
from reimbursement_kernel.domain.sla import SLAPolicy


@runtime_checkable
class ClaimStore(Protocol):
    """Persistence port for the claim projection."""

    def get(self, claim_id: str) -> Claim | None: ...

    def list(
        self,
        *,
        user_id: str | None = None,
        department_id: str | None = None,
        statuses: Iterable[ClaimStatus] | None = None,
    ) -> list[Claim]:
        """Claims matching every given filter, oldest submission first."""
        ...

    def add(self, claim: Claim) -> Claim:
        """Insert a new claim.  Raises DuplicateClaimError if the id exists."""
        ...

    def compare_and_set(
        self, claim_id: str, expected_version: int, updated: Claim,
    ) -> Claim:
        """
        Replace the stored claim iff its version equals ``expected_version``.

        Raises:
            ClaimNotFoundError: unknown claim id.
            VersionConflictError: stored version differs.
        """
        ...


@runtime_checkable
class EscalationStore(Protocol):
    """Persistence port for escalations."""

    def get(self, escalation_id: str) -> Escalation | None: ...

    def find_open(self, claim_id: str) -> Escalation | None: ...

    def list_for_claim(self, claim_id: str) -> list[Escalation]: ...

    def list_open(self) -> list[Escalation]: ...

    def add(self, escalation: Escalation) -> Escalation:
        """Insert.  Raises DuplicateEscalationError on a second open one."""
        ...

    def resolve(
        self, escalation_id: str, resolution: str, resolved_at: datetime,
    ) -> Escalation:
        """
        Mark an escalation resolved.

        Raises:
            EscalationNotFoundError: unknown id.
            EscalationAlreadyResolvedError: already resolved.
        """
        ...


@runtime_checkable
class AuditStore(Protocol):
    """Append-only persistence port for audit log entries."""

    def last(self) -> AuditLogEntry | None:
        """Entry with the highest seq, or None for an empty ledger."""
        ...

    def insert(self, entry: AuditLogEntry) -> AuditLogEntry: ...

    def transaction(self) -> AbstractContextManager[None]:
        """Unit of work joined by sibling stores; nested calls join the outer one."""
        ...

    def all(self) -> list[AuditLogEntry]:
        """Every entry in seq order."""
        ...

    def query(self, audit_filter: AuditFilter) -> list[AuditLogEntry]:
        """Matching entries ordered by (timestamp, seq)."""
        ...


@runtime_checkable
class SLAPolicyStore(Protocol):
    """Persistence port for SLA policies."""

    def get(self, sla_id: str) -> SLAPolicy | None: ...

    def list(self, *, department_id: str | None = None) -> list[SLAPolicy]: ...

    def add(self, policy: SLAPolicy) -> SLAPolicy: ...
