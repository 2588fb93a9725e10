"""
In-memory store implementations.

Stores built from the same ``InMemoryTransactions`` share one re-entrant
lock, so compare-and-set and the unique-open-escalation check are atomic
within the process, and a ``transaction()`` spanning several stores is
isolated from other threads.  Writes made inside a transaction register an
undo step; if the transaction body raises, the steps run in reverse and the
stores are back where they started.  Stored values are frozen dataclasses,
so handing them out never exposes mutable state.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from datetime import datetime
from typing import Iterable

from reimbursement_kernel.domain.audit import AuditFilter, AuditLogEntry
from reimbursement_kernel.domain.claim import Claim, ClaimStatus
from reimbursement_kernel.domain.escalation import Escalation
from reimbursement_kernel.domain.sla import SLAPolicy
from reimbursement_kernel.exceptions import (
    ClaimNotFoundError,
    DuplicateClaimError,
    DuplicateEscalationError,
    EscalationAlreadyResolvedError,
    EscalationNotFoundError,
    VersionConflictError,
)


class InMemoryTransactions:
    """Shared lock and per-thread undo log for a set of in-memory stores."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self._local = threading.local()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self.lock:
            if getattr(self._local, "undo", None) is not None:
                yield
                return
            self._local.undo = []
            try:
                yield
            except BaseException:
                for step in reversed(self._local.undo):
                    step()
                raise
            finally:
                self._local.undo = None

    def on_rollback(self, step: Callable[[], None]) -> None:
        undo = getattr(self._local, "undo", None)
        if undo is not None:
            undo.append(step)


class InMemoryClaimStore:

    def __init__(self, transactions: InMemoryTransactions | None = None) -> None:
        self._claims: dict[str, Claim] = {}
        self._tx = transactions or InMemoryTransactions()
        self._lock = self._tx.lock

    def get(self, claim_id: str) -> Claim | None:
        with self._lock:
            return self._claims.get(claim_id)

    def list(
        self,
        *,
        user_id: str | None = None,
        department_id: str | None = None,
        statuses: Iterable[ClaimStatus] | None = None,
    ) -> list[Claim]:
        wanted = frozenset(statuses) if statuses is not None else None
        with self._lock:
            claims = list(self._claims.values())
        result = [
            c for c in claims
            if (user_id is None or c.user_id == user_id)
            and (department_id is None or c.department_id == department_id)
            and (wanted is None or c.status in wanted)
        ]
        return sorted(result, key=lambda c: (c.submitted_at, c.claim_id))

    def add(self, claim: Claim) -> Claim:
        with self._lock:
            if claim.claim_id in self._claims:
                raise DuplicateClaimError(claim.claim_id)
            self._claims[claim.claim_id] = claim
            self._tx.on_rollback(lambda: self._claims.pop(claim.claim_id, None))
        return claim

    def compare_and_set(
        self, claim_id: str, expected_version: int, updated: Claim,
    ) -> Claim:
        if updated.claim_id != claim_id:
            raise ValueError("compare_and_set cannot change a claim's id")
        with self._lock:
            current = self._claims.get(claim_id)
            if current is None:
                raise ClaimNotFoundError(claim_id)
            if current.version != expected_version:
                raise VersionConflictError(claim_id, expected_version, current.version)
            self._claims[claim_id] = updated
            self._tx.on_rollback(lambda: self._claims.__setitem__(claim_id, current))
        return updated


class InMemoryEscalationStore:

    def __init__(self, transactions: InMemoryTransactions | None = None) -> None:
        self._escalations: dict[str, Escalation] = {}
        self._tx = transactions or InMemoryTransactions()
        self._lock = self._tx.lock

    def get(self, escalation_id: str) -> Escalation | None:
        with self._lock:
            return self._escalations.get(escalation_id)

    def find_open(self, claim_id: str) -> Escalation | None:
        with self._lock:
            return self._find_open_locked(claim_id)

    def _find_open_locked(self, claim_id: str) -> Escalation | None:
        for esc in self._escalations.values():
            if esc.claim_id == claim_id and esc.is_open:
                return esc
        return None

    def list_for_claim(self, claim_id: str) -> list[Escalation]:
        with self._lock:
            found = [e for e in self._escalations.values() if e.claim_id == claim_id]
        return sorted(found, key=lambda e: (e.escalated_at, e.level))

    def list_open(self) -> list[Escalation]:
        with self._lock:
            found = [e for e in self._escalations.values() if e.is_open]
        return sorted(found, key=lambda e: e.escalated_at)

    def add(self, escalation: Escalation) -> Escalation:
        with self._lock:
            if escalation.is_open:
                existing = self._find_open_locked(escalation.claim_id)
                if existing is not None:
                    raise DuplicateEscalationError(
                        escalation.claim_id, existing.escalation_id,
                    )
            self._escalations[escalation.escalation_id] = escalation
            self._tx.on_rollback(
                lambda: self._escalations.pop(escalation.escalation_id, None)
            )
        return escalation

    def resolve(
        self, escalation_id: str, resolution: str, resolved_at: datetime,
    ) -> Escalation:
        with self._lock:
            current = self._escalations.get(escalation_id)
            if current is None:
                raise EscalationNotFoundError(escalation_id)
            if not current.is_open:
                raise EscalationAlreadyResolvedError(escalation_id)
            resolved = current.resolve(resolution, resolved_at)
            self._escalations[escalation_id] = resolved
            self._tx.on_rollback(
                lambda: self._escalations.__setitem__(escalation_id, current)
            )
        return resolved


class InMemoryAuditStore:
    """Append-only list of frozen entries."""

    def __init__(self, transactions: InMemoryTransactions | None = None) -> None:
        self._entries: list[AuditLogEntry] = []
        self._tx = transactions or InMemoryTransactions()
        self._lock = self._tx.lock

    def transaction(self) -> AbstractContextManager[None]:
        return self._tx.transaction()

    def last(self) -> AuditLogEntry | None:
        with self._lock:
            return self._entries[-1] if self._entries else None

    def insert(self, entry: AuditLogEntry) -> AuditLogEntry:
        with self._lock:
            if self._entries and entry.seq <= self._entries[-1].seq:
                raise ValueError(
                    f"Audit seq must increase: {entry.seq} after {self._entries[-1].seq}"
                )
            self._entries.append(entry)
            self._tx.on_rollback(lambda: self._entries.remove(entry))
        return entry

    def all(self) -> list[AuditLogEntry]:
        with self._lock:
            return list(self._entries)

    def query(self, audit_filter: AuditFilter) -> list[AuditLogEntry]:
        with self._lock:
            matched = [e for e in self._entries if audit_filter.matches(e)]
        return sorted(matched, key=lambda e: (e.timestamp, e.seq))


class InMemorySLAPolicyStore:

    def __init__(
        self,
        policies: Iterable[SLAPolicy] = (),
        transactions: InMemoryTransactions | None = None,
    ) -> None:
        self._policies: dict[str, SLAPolicy] = {}
        self._tx = transactions or InMemoryTransactions()
        self._lock = self._tx.lock
        for policy in policies:
            self.add(policy)

    def get(self, sla_id: str) -> SLAPolicy | None:
        with self._lock:
            return self._policies.get(sla_id)

    def list(self, *, department_id: str | None = None) -> list[SLAPolicy]:
        with self._lock:
            policies = list(self._policies.values())
        if department_id is not None:
            policies = [p for p in policies if p.department_id == department_id]
        return sorted(policies, key=lambda p: (p.department_id, p.effective_from))

    def add(self, policy: SLAPolicy) -> SLAPolicy:
        with self._lock:
            if policy.sla_id in self._policies:
                raise ValueError(f"SLA policy already exists: {policy.sla_id}")
            self._policies[policy.sla_id] = policy
            self._tx.on_rollback(lambda: self._policies.pop(policy.sla_id, None))
        return policy
