"""
SLA domain types (``reimbursement_kernel.domain.sla``).

Responsibility
--------------
The per-department timing contract (``SLAPolicy``) and the result of
evaluating it against a claim (``SLAEvaluation``).

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  The evaluation
itself lives in ``reimbursement_engines.sla_clock``.

Invariants enforced
-------------------
* ``escalation_threshold_days <= approval_deadline_days``; both positive.
* ``effective_until`` (when set) is after ``effective_from``.
* A policy covers the half-open range ``[effective_from, effective_until)``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

from reimbursement_kernel.domain.values import ensure_aware, to_wire
from reimbursement_kernel.exceptions import ClaimValidationError


class SLAState(str, Enum):
    """Timing status of a claim against its policy.

    ACTIVE is the "OK" tier: below the warning threshold.
    FROZEN means the claim was decided and the clock no longer runs.
    """

    ACTIVE = "ACTIVE"
    WARNING = "WARNING"
    BREACHED = "BREACHED"
    FROZEN = "FROZEN"


@dataclass(frozen=True)
class SLAPolicy:
    """Per-department timing contract.

    ``escalation_threshold_days`` doubles as the warning threshold of the
    SLA ladder.
    """

    sla_id: str
    department_id: str
    approval_deadline_days: int
    escalation_threshold_days: int
    max_reimbursement: Decimal
    effective_from: datetime
    effective_until: datetime | None = None

    def __post_init__(self) -> None:
        errors: list[dict[str, str]] = []
        if self.approval_deadline_days <= 0:
            errors.append({
                "field": "approvalDeadlineDays",
                "message": "must be positive",
            })
        if self.escalation_threshold_days <= 0:
            errors.append({
                "field": "escalationThresholdDays",
                "message": "must be positive",
            })
        if self.escalation_threshold_days > self.approval_deadline_days:
            errors.append({
                "field": "escalationThresholdDays",
                "message": "must not exceed approvalDeadlineDays",
            })
        if self.max_reimbursement <= 0:
            errors.append({
                "field": "maxReimbursement",
                "message": "must be positive",
            })
        ensure_aware(self.effective_from, "effectiveFrom")
        if self.effective_until is not None:
            ensure_aware(self.effective_until, "effectiveUntil")
            if self.effective_until <= self.effective_from:
                errors.append({
                    "field": "effectiveUntil",
                    "message": "must be after effectiveFrom",
                })
        if errors:
            raise ClaimValidationError(errors)

    @property
    def warning_days(self) -> int:
        return self.escalation_threshold_days

    @property
    def deadline_days(self) -> int:
        return self.approval_deadline_days

    def covers(self, moment: datetime) -> bool:
        """True iff ``moment`` falls in the policy's effective range."""
        if moment < self.effective_from:
            return False
        return self.effective_until is None or moment < self.effective_until

    def due_date(self, submitted_at: datetime) -> datetime:
        return submitted_at + timedelta(days=self.approval_deadline_days)

    def escalation_due_date(self, submitted_at: datetime) -> datetime:
        return submitted_at + timedelta(days=self.escalation_threshold_days)

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.sla_id,
            "departmentId": self.department_id,
            "claimApprovalDeadline": self.approval_deadline_days,
            "escalationThreshold": self.escalation_threshold_days,
            "maxReimbursement": to_wire(self.max_reimbursement),
            "effectiveFrom": to_wire(self.effective_from),
            "effectiveUntil": to_wire(self.effective_until),
        }


@dataclass(frozen=True)
class SLAEvaluation:
    """Result of evaluating a claim against its SLA policy at ``evaluated_at``."""

    claim_id: str
    elapsed_days: float
    breached: bool
    status: SLAState
    warning_days: int
    deadline_days: int
    evaluated_at: datetime
    frozen: bool = False

    @property
    def elapsed_days_display(self) -> int:
        """Whole elapsed days, for display only (never for breach comparison)."""
        return math.floor(self.elapsed_days)

    @property
    def days_remaining(self) -> float:
        return self.deadline_days - self.elapsed_days

    def to_wire(self) -> dict[str, Any]:
        return {
            "claimId": self.claim_id,
            "elapsedDays": self.elapsed_days,
            "elapsedDaysDisplay": self.elapsed_days_display,
            "breached": self.breached,
            "status": self.status.value,
            "frozen": self.frozen,
            "warningDays": self.warning_days,
            "deadlineDays": self.deadline_days,
            "evaluatedAt": to_wire(self.evaluated_at),
        }
