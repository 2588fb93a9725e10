"""
Audit ledger domain types (``reimbursement_kernel.domain.audit``).

Responsibility
--------------
The immutable ``AuditLogEntry`` fact ("actor X performed action A on entity E
at time T, transitioning old -> new values"), the draft callers hand to the
ledger, request provenance, and query filters.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Entries are frozen all the way down: snapshot payloads are stored as
  read-only mappings and tuples, so no caller can mutate a stored entry
  through a reference it kept.
* ``timestamp``, ``seq`` and ``hash`` are assigned by the ledger at append
  time, never by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from reimbursement_kernel.domain.values import to_wire


class AuditAction(str, Enum):
    """Types of auditable actions."""

    CREATED = "CREATED"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ESCALATED = "ESCALATED"
    PAID = "PAID"
    DOCUMENT_ADDED = "DOCUMENT_ADDED"
    SLA_UPDATED = "SLA_UPDATED"


# Actions whose new values seed a projection during replay.
SEED_ACTIONS: frozenset[AuditAction] = frozenset({
    AuditAction.CREATED,
    AuditAction.SUBMITTED,
})


def freeze(value: Any) -> Any:
    """Recursively convert dicts/lists into read-only mappings/tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of ``freeze``: plain dicts and lists, safe to hand out."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class RequestProvenance:
    """Optional request metadata recorded with an entry."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class AuditDraft:
    """What a caller asks the ledger to record."""

    action: AuditAction
    entity_type: str
    entity_id: str
    user_id: str
    claim_id: str | None = None
    old_values: Mapping[str, Any] | None = None
    new_values: Mapping[str, Any] | None = None
    provenance: RequestProvenance | None = None


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable audit fact.  Append-only; never updated or deleted."""

    entry_id: str
    seq: int
    action: AuditAction
    entity_type: str
    entity_id: str
    user_id: str
    timestamp: datetime
    payload_hash: str
    hash: str
    claim_id: str | None = None
    old_values: Mapping[str, Any] | None = None
    new_values: Mapping[str, Any] | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    prev_hash: str | None = None

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None

    def new_values_dict(self) -> dict[str, Any]:
        return thaw(self.new_values) if self.new_values is not None else {}

    def old_values_dict(self) -> dict[str, Any]:
        return thaw(self.old_values) if self.old_values is not None else {}

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.entry_id,
            "seq": self.seq,
            "claimId": self.claim_id,
            "userId": self.user_id,
            "action": self.action.value,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "oldValues": thaw(self.old_values) if self.old_values is not None else None,
            "newValues": thaw(self.new_values) if self.new_values is not None else None,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "timestamp": to_wire(self.timestamp),
            "prevHash": self.prev_hash,
            "hash": self.hash,
        }


@dataclass(frozen=True)
class AuditFilter:
    """Conjunctive filter for ledger queries.  ``None`` fields match anything."""

    claim_id: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    user_id: str | None = None
    actions: frozenset[AuditAction] | None = None
    since: datetime | None = None
    until: datetime | None = None

    def matches(self, entry: AuditLogEntry) -> bool:
        if self.claim_id is not None and entry.claim_id != self.claim_id:
            return False
        if self.entity_type is not None and entry.entity_type != self.entity_type:
            return False
        if self.entity_id is not None and entry.entity_id != self.entity_id:
            return False
        if self.user_id is not None and entry.user_id != self.user_id:
            return False
        if self.actions is not None and entry.action not in self.actions:
            return False
        if self.since is not None and entry.timestamp < self.since:
            return False
        if self.until is not None and entry.timestamp >= self.until:
            return False
        return True
