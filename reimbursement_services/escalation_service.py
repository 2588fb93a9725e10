"""
reimbursement_services.escalation_service -- SLA breach escalation.

Responsibility:
    The side-effecting half of the escalation trigger.  Evaluates a claim's
    SLA (pure engine), asks the escalation engine for a decision, and when
    the decision is ESCALATE creates the Escalation record and its ESCALATED
    audit entry.  Also owns explicit re-escalation, resolution, automatic
    resolution on a claim decision, and the periodic sweep.

Architecture position:
    Services layer.  Imports reimbursement_engines (pure) and
    reimbursement_kernel (domain, storage, services).

Invariants enforced:
    - At most one unresolved escalation per claim.  Check-and-create and
      resolution run under a per-claim lock; the SQL store additionally
      refuses a second open row through a partial unique index.
    - An escalation and its ESCALATED entry are written in one unit of work.
    - ``maybe_escalate`` is idempotent: a breached claim that already has
      an open escalation is a no-op returning ALREADY_ESCALATED.
    - Not-breached and frozen evaluations never write anything.
    - Escalation audit entries use entity type ``Escalation`` and link the
      claim through ``claim_id``; they never feed claim replay.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from reimbursement_engines.escalation import decide_escalation, next_level, target_role
from reimbursement_engines.sla_clock import evaluate
from reimbursement_kernel.db.base import new_id
from reimbursement_kernel.domain.audit import AuditAction, AuditDraft
from reimbursement_kernel.domain.claim import PENDING_STATUSES, Claim
from reimbursement_kernel.domain.clock import Clock, SystemClock
from reimbursement_kernel.domain.escalation import (
    ENTITY_TYPE_ESCALATION,
    Escalation,
    EscalationDecision,
    EscalationReason,
    EscalationResult,
)
from reimbursement_kernel.domain.permissions import SYSTEM_ACTOR_ID
from reimbursement_kernel.domain.sla import SLAPolicy
from reimbursement_kernel.exceptions import (
    ClaimNotFoundError,
    DuplicateEscalationError,
    EscalationNotFoundError,
    InvalidTransitionError,
    SLAPolicyNotFoundError,
)
from reimbursement_kernel.logging_config import LogContext, get_logger
from reimbursement_kernel.services.audit_ledger import AuditLedger
from reimbursement_kernel.storage.base import (
    ClaimStore,
    EscalationStore,
    SLAPolicyStore,
)

logger = get_logger("services.escalation")

RESOLUTION_SUPERSEDED = "superseded by level {level}"
RESOLUTION_CLAIM_DECIDED = "claim {status}"


@dataclass(frozen=True)
class SweepReport:
    """Outcome of one pass over every pending claim."""

    evaluated_at: datetime
    results: tuple[EscalationResult, ...] = field(default_factory=tuple)
    skipped_claim_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def escalated(self) -> tuple[EscalationResult, ...]:
        return tuple(r for r in self.results if r.escalated)

    @property
    def breached_count(self) -> int:
        return sum(1 for r in self.results if r.evaluation.breached)


class EscalationService:
    """Creates, re-raises and resolves escalations for breached claims."""

    def __init__(
        self,
        claims: ClaimStore,
        escalations: EscalationStore,
        policies: SLAPolicyStore,
        ledger: AuditLedger,
        clock: Clock | None = None,
        *,
        assignee_id: str = "escalation-authority-pool",
        system_actor_id: str = SYSTEM_ACTOR_ID,
    ):
        self._claims = claims
        self._escalations = escalations
        self._policies = policies
        self._ledger = ledger
        self._clock = clock or SystemClock()
        self._assignee_id = assignee_id
        self._system_actor_id = system_actor_id
        self._locks: defaultdict[str, threading.RLock] = defaultdict(threading.RLock)
        self._locks_guard = threading.Lock()

    def _claim_lock(self, claim_id: str) -> threading.RLock:
        with self._locks_guard:
            return self._locks[claim_id]

    # Reads

    def open_escalation(self, claim_id: str) -> Escalation | None:
        return self._escalations.find_open(claim_id)

    def history(self, claim_id: str) -> list[Escalation]:
        return self._escalations.list_for_claim(claim_id)

    def list_open(self) -> list[Escalation]:
        return self._escalations.list_open()

    # Automatic trigger

    def maybe_escalate(
        self,
        claim: Claim,
        policy: SLAPolicy,
        escalating_actor: str | None = None,
        target_actor: str | None = None,
        now: datetime | None = None,
    ) -> EscalationResult:
        """
        Escalate ``claim`` iff it is breached and has no open escalation.

        The claim is re-read under the per-claim lock and the stored version
        is the one evaluated, so a caller holding an older copy (a sweep
        that listed claims before one was decided) never escalates a claim
        that is no longer pending.

        Postconditions:
            - ``escalated`` is True only when a new level-1 escalation and
              exactly one ESCALATED audit entry were written, together.
        """
        now = now or self._clock.now_utc()
        actor_id = escalating_actor or self._system_actor_id

        with LogContext.bind(claim_id=claim.claim_id, actor_id=actor_id):
            with self._claim_lock(claim.claim_id):
                current = self._claims.get(claim.claim_id)
                if current is None:
                    raise ClaimNotFoundError(claim.claim_id)
                evaluation = evaluate(current, policy, now)
                open_escalation = self._escalations.find_open(claim.claim_id)
                decision = decide_escalation(evaluation, open_escalation)

                if decision != EscalationDecision.ESCALATE:
                    logger.debug(
                        "escalation_not_required",
                        extra={"decision": decision.value, "sla_status": evaluation.status.value},
                    )
                    return EscalationResult(
                        escalated=False,
                        decision=decision,
                        evaluation=evaluation,
                        open_escalation=open_escalation,
                    )

                level = next_level(None)
                escalation = Escalation(
                    escalation_id=new_id(),
                    claim_id=claim.claim_id,
                    escalated_at=now,
                    escalated_by=actor_id,
                    escalated_to=target_actor or self._assignee_id,
                    level=level,
                    reason=EscalationReason.DEADLINE_MISSED,
                    details=(
                        f"Elapsed {evaluation.elapsed_days:.2f} days exceeds "
                        f"deadline of {evaluation.deadline_days} days"
                    ),
                )
                try:
                    with self._ledger.transaction():
                        self._escalations.add(escalation)
                        entry = self._record(escalation, actor_id, old=None)
                except DuplicateEscalationError:
                    # Another process won the race; treat as already escalated.
                    existing = self._escalations.find_open(claim.claim_id)
                    return EscalationResult(
                        escalated=False,
                        decision=EscalationDecision.ALREADY_ESCALATED,
                        evaluation=evaluation,
                        open_escalation=existing,
                    )

            logger.info(
                "escalation_created",
                extra={
                    "escalation_id": escalation.escalation_id,
                    "level": escalation.level,
                    "escalated_to": escalation.escalated_to,
                    "elapsed_days": evaluation.elapsed_days,
                    "deadline_days": evaluation.deadline_days,
                },
            )

        return EscalationResult(
            escalated=True,
            decision=decision,
            evaluation=evaluation,
            escalation=escalation,
            audit_entry=entry,
            next_assignee_role=target_role(level),
        )

    def check_claim(self, claim_id: str, now: datetime | None = None) -> EscalationResult:
        """Load the claim and its policy, then ``maybe_escalate``."""
        claim = self._claims.get(claim_id)
        if claim is None:
            raise ClaimNotFoundError(claim_id)
        policy = self._policies.get(claim.sla_id)
        if policy is None:
            raise SLAPolicyNotFoundError(claim.sla_id)
        return self.maybe_escalate(claim, policy, now=now)

    def sweep(self, now: datetime | None = None) -> SweepReport:
        """Evaluate every pending claim once.  Claims without a policy are skipped."""
        now = now or self._clock.now_utc()
        results: list[EscalationResult] = []
        skipped: list[str] = []
        for claim in self._claims.list(statuses=PENDING_STATUSES):
            policy = self._policies.get(claim.sla_id)
            if policy is None:
                logger.warning(
                    "escalation_sweep_missing_policy",
                    extra={"claim_id": claim.claim_id, "sla_id": claim.sla_id},
                )
                skipped.append(claim.claim_id)
                continue
            results.append(self.maybe_escalate(claim, policy, now=now))

        report = SweepReport(
            evaluated_at=now,
            results=tuple(results),
            skipped_claim_ids=tuple(skipped),
        )
        logger.info(
            "escalation_sweep_completed",
            extra={
                "evaluated": len(results),
                "breached": report.breached_count,
                "escalated": len(report.escalated),
                "skipped": len(skipped),
            },
        )
        return report

    # Explicit operations

    def re_escalate(
        self,
        claim_id: str,
        actor_id: str,
        reason: EscalationReason = EscalationReason.DEADLINE_MISSED,
        details: str | None = None,
        now: datetime | None = None,
        target_actor: str | None = None,
    ) -> Escalation:
        """
        Raise the escalation level of a pending claim.

        The open escalation (if any) is resolved as superseded and a new one
        opened at ``level + 1``; without an open one this opens level 1.

        Raises:
            ClaimNotFoundError: unknown claim.
            InvalidTransitionError: claim is no longer awaiting a decision.
        """
        now = now or self._clock.now_utc()

        with LogContext.bind(claim_id=claim_id, actor_id=actor_id):
            with self._claim_lock(claim_id), self._ledger.transaction():
                claim = self._claims.get(claim_id)
                if claim is None:
                    raise ClaimNotFoundError(claim_id)
                if not claim.is_pending:
                    raise InvalidTransitionError(claim_id, "re_escalate", claim.status.value)
                current = self._escalations.find_open(claim_id)
                level = next_level(current)
                superseded = None
                if current is not None:
                    superseded = self._escalations.resolve(
                        current.escalation_id,
                        RESOLUTION_SUPERSEDED.format(level=level),
                        now,
                    )
                escalation = Escalation(
                    escalation_id=new_id(),
                    claim_id=claim_id,
                    escalated_at=now,
                    escalated_by=actor_id,
                    escalated_to=target_actor or self._assignee_id,
                    level=level,
                    reason=reason,
                    details=details,
                )
                self._escalations.add(escalation)
                self._record(escalation, actor_id, old=superseded)

            logger.info(
                "escalation_raised",
                extra={
                    "escalation_id": escalation.escalation_id,
                    "level": level,
                    "superseded_id": superseded.escalation_id if superseded else None,
                    "reason": reason.value,
                },
            )
        return escalation

    def resolve(
        self,
        escalation_id: str,
        actor_id: str,
        resolution: str,
        now: datetime | None = None,
    ) -> Escalation:
        """
        Resolve one escalation.

        Raises:
            EscalationNotFoundError, EscalationAlreadyResolvedError.
        """
        now = now or self._clock.now_utc()
        existing = self._escalations.get(escalation_id)
        if existing is None:
            raise EscalationNotFoundError(escalation_id)
        with self._claim_lock(existing.claim_id):
            resolved = self._escalations.resolve(escalation_id, resolution, now)
        logger.info(
            "escalation_resolved",
            extra={
                "escalation_id": escalation_id,
                "claim_id": resolved.claim_id,
                "resolved_by": actor_id,
                "resolution": resolution,
            },
        )
        return resolved

    def resolve_for_claim(
        self,
        claim_id: str,
        actor_id: str,
        resolution: str,
        now: datetime | None = None,
    ) -> Escalation | None:
        """Resolve the claim's open escalation, if there is one."""
        with self._claim_lock(claim_id):
            current = self._escalations.find_open(claim_id)
            if current is None:
                return None
            return self.resolve(current.escalation_id, actor_id, resolution, now)

    def _record(self, escalation: Escalation, actor_id: str, old: Escalation | None):
        return self._ledger.append(AuditDraft(
            action=AuditAction.ESCALATED,
            entity_type=ENTITY_TYPE_ESCALATION,
            entity_id=escalation.escalation_id,
            user_id=actor_id,
            claim_id=escalation.claim_id,
            old_values=old.to_wire() if old is not None else None,
            new_values=escalation.to_wire(),
        ))
