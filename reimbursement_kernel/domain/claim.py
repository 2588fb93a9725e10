"""
Claim domain types (``reimbursement_kernel.domain.claim``).

Responsibility
--------------
Pure value objects for a reimbursement claim: status and category enums,
the frozen ``Claim`` projection, the submission input, and the snapshot
(wire) conversion used by the audit ledger and the projection replay.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``Claim`` is frozen; every mutation produces a new instance through
  ``ClaimService`` with ``version`` incremented by exactly one.
* Approve metadata (``approved_at``/``approved_by``/``amount_approved``)
  and reject metadata (``rejected_at``/``rejected_by``/``rejection_reason``)
  are mutually exclusive.
* ``submitted_at``, ``due_date`` and ``escalation_due_date`` are write-once.
* Snapshot keys mirror the wire names (``id``, ``userId``, ``departmentId``,
  ...) so audit payloads are directly consumable by the existing UI.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping

from reimbursement_kernel.domain.values import (
    parse_datetime,
    parse_decimal,
    to_wire,
)


class ClaimStatus(str, Enum):
    """Claim lifecycle states.

    DRAFT and UNDER_REVIEW are modelled but no action currently targets
    them; UNDER_REVIEW is accepted as a source state for approve/reject.
    """

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"


class ClaimCategory(str, Enum):
    TRAVEL = "TRAVEL"
    SUPPLIES = "SUPPLIES"
    CONFERENCE = "CONFERENCE"
    OTHER = "OTHER"


# Statuses awaiting a decision; the SLA clock runs only for these.
PENDING_STATUSES: frozenset[ClaimStatus] = frozenset({
    ClaimStatus.SUBMITTED,
    ClaimStatus.UNDER_REVIEW,
})

# Statuses after which the approval SLA is no longer actionable.
DECIDED_STATUSES: frozenset[ClaimStatus] = frozenset({
    ClaimStatus.APPROVED,
    ClaimStatus.REJECTED,
    ClaimStatus.PAID,
})

TERMINAL_STATUSES: frozenset[ClaimStatus] = frozenset({
    ClaimStatus.REJECTED,
    ClaimStatus.PAID,
})

ENTITY_TYPE_CLAIM = "ReimbursementClaim"


# Python attribute -> wire name
WIRE_NAMES: dict[str, str] = {
    "claim_id": "id",
    "user_id": "userId",
    "department_id": "departmentId",
    "sla_id": "slaId",
    "amount": "amount",
    "currency": "currency",
    "category": "category",
    "description": "description",
    "attachments": "attachments",
    "status": "status",
    "amount_approved": "amountApproved",
    "rejection_reason": "rejectionReason",
    "submitted_at": "submittedAt",
    "approved_at": "approvedAt",
    "approved_by": "approvedBy",
    "rejected_at": "rejectedAt",
    "rejected_by": "rejectedBy",
    "paid_at": "paidAt",
    "due_date": "dueDate",
    "escalation_due_date": "escalationDueDate",
    "version": "version",
    "created_at": "createdAt",
}

ATTRIBUTE_NAMES: dict[str, str] = {v: k for k, v in WIRE_NAMES.items()}

WRITE_ONCE_FIELDS: frozenset[str] = frozenset({
    "claim_id",
    "user_id",
    "department_id",
    "sla_id",
    "submitted_at",
    "due_date",
    "escalation_due_date",
    "created_at",
})

_DATETIME_FIELDS = frozenset({
    "submitted_at",
    "approved_at",
    "rejected_at",
    "paid_at",
    "due_date",
    "escalation_due_date",
    "created_at",
})
_DECIMAL_FIELDS = frozenset({"amount", "amount_approved"})


@dataclass(frozen=True)
class Claim:
    """Current-state projection of a reimbursement claim."""

    claim_id: str
    user_id: str
    department_id: str
    sla_id: str
    amount: Decimal
    currency: str
    category: ClaimCategory
    description: str
    status: ClaimStatus
    submitted_at: datetime
    due_date: datetime
    escalation_due_date: datetime
    version: int
    created_at: datetime
    attachments: tuple[str, ...] = ()
    amount_approved: Decimal | None = None
    rejection_reason: str | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None
    paid_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def decided_at(self) -> datetime | None:
        """When the approval SLA stopped: approval or rejection time."""
        if self.status in (ClaimStatus.APPROVED, ClaimStatus.PAID):
            return self.approved_at
        if self.status == ClaimStatus.REJECTED:
            return self.rejected_at
        return None

    def evolve(self, **changes: Any) -> Claim:
        """Return a copy with ``changes`` applied.  Write-once fields are refused."""
        frozen = WRITE_ONCE_FIELDS & changes.keys()
        if frozen:
            raise ValueError(f"Write-once claim fields cannot change: {sorted(frozen)}")
        return replace(self, **changes)

    def to_snapshot(self, attributes: Iterable[str] | None = None) -> dict[str, Any]:
        """Wire-named, JSON-safe snapshot of all (or selected) attributes."""
        names = attributes if attributes is not None else WIRE_NAMES.keys()
        return {WIRE_NAMES[name]: to_wire(getattr(self, name)) for name in names}

    def to_wire(self) -> dict[str, Any]:
        return self.to_snapshot()

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any]) -> Claim:
        """Rebuild a Claim from a full wire snapshot."""
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            wire_name = WIRE_NAMES[f.name]
            value = snapshot.get(wire_name)
            if f.name in _DATETIME_FIELDS:
                value = parse_datetime(value)
            elif f.name in _DECIMAL_FIELDS:
                value = parse_decimal(value)
            elif f.name == "status":
                value = ClaimStatus(value)
            elif f.name == "category":
                value = ClaimCategory(value)
            elif f.name == "attachments":
                value = tuple(value or ())
            kwargs[f.name] = value
        return cls(**kwargs)


@dataclass(frozen=True)
class ClaimInput:
    """Raw submission input, validated by ``ClaimService.submit``.

    Fields arrive as the HTTP collaborator decoded them, so ``amount`` may be
    a string or number and ``category`` a plain string.
    """

    amount: Any = None
    currency: str | None = None
    description: str | None = None
    category: str | None = None
    department_id: str | None = None
    sla_id: str | None = None
    attachments: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_wire(cls, body: Mapping[str, Any]) -> ClaimInput:
        return cls(
            amount=body.get("amount"),
            currency=body.get("currency"),
            description=body.get("description"),
            category=body.get("category"),
            department_id=body.get("departmentId"),
            sla_id=body.get("slaId"),
            attachments=tuple(body.get("attachments") or ()),
        )
