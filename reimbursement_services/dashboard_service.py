"""
reimbursement_services.dashboard_service -- Role dashboards.

Responsibility:
    Read-only views: a student's own claims, the approver queue sorted by
    SLA urgency, and admin metrics (claim and escalation counts, breach
    count, average delay).

Invariants enforced:
    - Every view checks the caller's permission first.
    - Approvers only ever see their own department's claims.
    - Reads are not transactional; a view may observe a claim set that is
      already stale by the time it is returned.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from reimbursement_engines.sla_clock import evaluate, urgency_key
from reimbursement_kernel.domain.claim import Claim
from reimbursement_kernel.domain.clock import Clock, SystemClock
from reimbursement_kernel.domain.permissions import APPROVER_ROLES, Action, Actor, Role
from reimbursement_kernel.domain.sla import SLAEvaluation
from reimbursement_kernel.exceptions import ForbiddenError
from reimbursement_kernel.logging_config import get_logger
from reimbursement_kernel.storage.base import ClaimStore, EscalationStore, SLAPolicyStore
from reimbursement_services.rbac_authority import check_permission

logger = get_logger("services.dashboard")

METRICS_ROLES: frozenset[Role] = frozenset({Role.SUPER_ADMIN, Role.ACCOUNTS_OFFICER})


@dataclass(frozen=True)
class ClaimView:
    """A claim with its SLA status (None when the policy is missing)."""

    claim: Claim
    sla: SLAEvaluation | None

    def to_wire(self) -> dict[str, Any]:
        return {
            "claim": self.claim.to_wire(),
            "slaStatus": self.sla.to_wire() if self.sla is not None else None,
        }


@dataclass(frozen=True)
class AdminMetrics:
    total_claims: int
    total_escalations: int
    open_escalations: int
    breach_count: int
    avg_delay_days: float | None

    def to_wire(self) -> dict[str, Any]:
        return {
            "totalClaims": self.total_claims,
            "totalEscalations": self.total_escalations,
            "openEscalations": self.open_escalations,
            "breachCount": self.breach_count,
            "avgDelayDays": self.avg_delay_days,
        }


class DashboardService:

    def __init__(
        self,
        claims: ClaimStore,
        policies: SLAPolicyStore,
        escalations: EscalationStore,
        clock: Clock | None = None,
    ):
        self._claims = claims
        self._policies = policies
        self._escalations = escalations
        self._clock = clock or SystemClock()

    def _view(self, claim: Claim, now: datetime) -> ClaimView:
        policy = self._policies.get(claim.sla_id)
        return ClaimView(claim, evaluate(claim, policy, now) if policy is not None else None)

    def student_claims(self, actor: Actor, now: datetime | None = None) -> list[ClaimView]:
        check_permission(actor, Action.VIEW_OWN_CLAIMS)
        now = now or self._clock.now_utc()
        return [self._view(c, now) for c in self._claims.list(user_id=actor.user_id)]

    def approver_queue(self, actor: Actor, now: datetime | None = None) -> list[ClaimView]:
        """Department claims, most urgent first; claims without a policy last."""
        if actor.role not in APPROVER_ROLES:
            raise ForbiddenError(actor.role.value, "ViewApproverQueue")
        check_permission(actor, Action.VIEW_DEPARTMENT_CLAIMS)
        if actor.department_id is None:
            return []
        now = now or self._clock.now_utc()
        views = [
            self._view(c, now)
            for c in self._claims.list(department_id=actor.department_id)
        ]
        return sorted(
            views,
            key=lambda v: (v.sla is None, urgency_key(v.sla) if v.sla else (0, 0.0)),
        )

    def admin_metrics(self, actor: Actor, now: datetime | None = None) -> AdminMetrics:
        if actor.role not in METRICS_ROLES:
            raise ForbiddenError(actor.role.value, "ViewMetrics")
        now = now or self._clock.now_utc()
        claims = self._claims.list()
        evaluations = [v.sla for v in (self._view(c, now) for c in claims) if v.sla]

        total_escalations = sum(
            len(self._escalations.list_for_claim(c.claim_id)) for c in claims
        )
        metrics = AdminMetrics(
            total_claims=len(claims),
            total_escalations=total_escalations,
            open_escalations=len(self._escalations.list_open()),
            breach_count=sum(1 for e in evaluations if e.breached),
            avg_delay_days=(
                sum(e.elapsed_days for e in evaluations) / len(evaluations)
                if evaluations else None
            ),
        )
        logger.debug("admin_metrics_computed", extra=metrics.to_wire())
        return metrics
