"""
reimbursement_services.workflow_executor -- Claim workflow execution.

Responsibility:
    The external interface of the kernel: submit, transition and
    evaluate_sla, plus convenience wrappers and read views (claim, replayed
    projection, timeline).  Thin coordinator -- delegates permission checks
    to rbac_authority, guard evaluation to GuardExecutor, mutation and audit
    to ClaimService, SLA math to the sla_clock engine and escalation
    bookkeeping to EscalationService.

Architecture position:
    Services layer.  May import from reimbursement_engines/ (pure engines)
    and reimbursement_kernel/ (domain, services, storage).

Invariants enforced:
    - Checks run in a fixed order: role permission, claim lookup, department
      or ownership scope, expected version, transition legality, guards.
      Every refusal happens before any write and before any audit entry.
    - Approving or rejecting a claim resolves its open escalation.
"""

from __future__ import annotations

import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Mapping

from reimbursement_engines.replay import replay_claim
from reimbursement_engines.sla_clock import evaluate
from reimbursement_kernel.domain.audit import RequestProvenance
from reimbursement_kernel.domain.claim import Claim, ClaimInput
from reimbursement_kernel.domain.claim_workflow import (
    APPROVED_AMOUNT_WITHIN_CLAIM,
    CLAIM_WORKFLOW,
    DOCUMENT_REFERENCE_PRESENT,
    REJECTION_REASON_PRESENT,
    SUBMIT_PERMISSION,
    ClaimAction,
)
from reimbursement_kernel.domain.clock import Clock, SystemClock
from reimbursement_kernel.domain.permissions import Actor
from reimbursement_kernel.domain.sla import SLAEvaluation
from reimbursement_kernel.domain.values import parse_decimal
from reimbursement_kernel.domain.workflow import Guard, Transition
from reimbursement_kernel.exceptions import (
    ClaimValidationError,
    InvalidTransitionError,
    ReimbursementKernelError,
    SLAPolicyNotFoundError,
    VersionConflictError,
)
from reimbursement_kernel.logging_config import LogContext, get_logger
from reimbursement_kernel.services.audit_ledger import AuditLedger
from reimbursement_kernel.services.claim_service import ClaimService, payload_text
from reimbursement_services.escalation_service import (
    RESOLUTION_CLAIM_DECIDED,
    EscalationService,
)
from reimbursement_services.rbac_authority import (
    authorize_transition,
    authorize_view,
    check_permission,
)
from reimbursement_services.timeline import TimelineEntry, build_timeline

logger = get_logger("services.workflow_executor")

TRACE_TYPE_WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_REFUSED = "refused"
OUTCOME_GUARD_FAILED = "guard_failed"
OUTCOME_NO_TRANSITION = "no_transition"

_RESOLVING_ACTIONS = frozenset({ClaimAction.APPROVE.value, ClaimAction.REJECT.value})


def _emit_workflow_trace(
    action: str,
    claim_id: str,
    from_state: str | None,
    outcome: str,
    reason: str,
    duration_ms: float,
    to_state: str | None = None,
) -> None:
    """Emit a structured workflow transition record."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_WORKFLOW_TRANSITION,
        "workflow": CLAIM_WORKFLOW.name,
        "action": action,
        "entity_id": claim_id,
        "from_state": from_state,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
    }
    if to_state is not None:
        record["to_state"] = to_state
    logger.info("workflow_transition", extra=record)


# ---------------------------------------------------------------------------
# Guard evaluation
# ---------------------------------------------------------------------------


def _rejection_reason_present(context: Mapping[str, Any]) -> bool:
    return payload_text(context["payload"], "reason", "rejectionReason") is not None


def _approved_amount_within_claim(context: Mapping[str, Any]) -> bool:
    raw = context["payload"].get("amountApproved")
    if raw is None:
        return True
    try:
        amount: Decimal = parse_decimal(raw)
    except ValueError:
        return False
    return amount.is_finite() and Decimal(0) < amount <= context["claim"].amount


def _document_reference_present(context: Mapping[str, Any]) -> bool:
    return payload_text(context["payload"], "document", "attachment") is not None


# guard name -> (field reported on failure, message)
_GUARD_FIELDS: dict[str, tuple[str, str]] = {
    REJECTION_REASON_PRESENT.name: ("reason", "rejection reason is required"),
    APPROVED_AMOUNT_WITHIN_CLAIM.name: (
        "amountApproved", "must be positive and at most the claimed amount",
    ),
    DOCUMENT_REFERENCE_PRESENT.name: ("document", "document reference is required"),
}


class GuardExecutor:
    """Evaluates workflow guards against a transition context.

    Guards are declared on transitions (name + description).  This executor
    holds the evaluation logic per guard name.
    """

    def __init__(self) -> None:
        self._evaluators: dict[str, Callable[[Mapping[str, Any]], bool]] = {}

    def register(self, guard_name: str, evaluator: Callable[[Mapping[str, Any]], bool]) -> None:
        self._evaluators[guard_name] = evaluator

    def evaluate(self, guard: Guard, context: Mapping[str, Any]) -> bool:
        """Returns True if the guard passes.  Unknown guards fail closed."""
        fn = self._evaluators.get(guard.name)
        if fn is None:
            logger.warning("guard_no_evaluator", extra={"guard_name": guard.name})
            return False
        return fn(context)


def default_guard_executor() -> GuardExecutor:
    """Return a GuardExecutor with the claim workflow's evaluators registered."""
    ex = GuardExecutor()
    ex.register(REJECTION_REASON_PRESENT.name, _rejection_reason_present)
    ex.register(APPROVED_AMOUNT_WITHIN_CLAIM.name, _approved_amount_within_claim)
    ex.register(DOCUMENT_REFERENCE_PRESENT.name, _document_reference_present)
    return ex


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class WorkflowExecutor:
    """Executes claim workflow operations for resolved actors."""

    def __init__(
        self,
        claim_service: ClaimService,
        escalation_service: EscalationService,
        ledger: AuditLedger,
        clock: Clock | None = None,
        guard_executor: GuardExecutor | None = None,
    ) -> None:
        self._claims = claim_service
        self._escalations = escalation_service
        self._ledger = ledger
        self._clock = clock or SystemClock()
        self._guard_executor = guard_executor or default_guard_executor()

    # Submission

    def submit(
        self,
        claim_input: ClaimInput | Mapping[str, Any],
        actor: Actor,
        provenance: RequestProvenance | None = None,
    ) -> Claim:
        """Create a claim in SUBMITTED for ``actor``.  Students only."""
        check_permission(actor, SUBMIT_PERMISSION)
        if not isinstance(claim_input, ClaimInput):
            claim_input = ClaimInput.from_wire(claim_input)
        return self._claims.submit(claim_input, actor.user_id, provenance)

    # Transitions

    def transition(
        self,
        claim_id: str,
        action: ClaimAction | str,
        actor: Actor,
        payload: Mapping[str, Any] | None = None,
        expected_version: int | None = None,
        provenance: RequestProvenance | None = None,
    ) -> Claim:
        """
        Apply ``action`` to the claim as ``actor``.

        Raises:
            ForbiddenError (and subclasses): role or scope refusal.
            ClaimNotFoundError: unknown claim.
            VersionConflictError: ``expected_version`` is stale, or the
                compare-and-set lost a race.
            InvalidTransitionError: action not legal from the current status.
            ClaimValidationError: a guard failed.
        """
        try:
            action = ClaimAction(action).value
        except ValueError:
            raise ClaimValidationError.single("action", f"unknown action {action!r}") from None
        if action == ClaimAction.SUBMIT.value:
            raise ClaimValidationError.single("action", "use submit() to create a claim")
        payload = payload or {}
        t0 = time.monotonic()

        with LogContext.bind(claim_id=claim_id, actor_id=actor.user_id):
            # 1. Role permission: identical for every source state of an action
            scope = CLAIM_WORKFLOW.transitions_for(action)[0]
            check_permission(actor, scope.permission)

            # 2. Load
            claim = self._claims.get(claim_id)

            # 3. Department / ownership scope
            try:
                authorize_transition(actor, claim, scope)
            except ReimbursementKernelError as exc:
                self._trace(action, claim, OUTCOME_REFUSED, exc.code, t0)
                raise

            # 4. Expected version
            if expected_version is not None and expected_version != claim.version:
                self._trace(action, claim, OUTCOME_REFUSED, "stale version", t0)
                raise VersionConflictError(claim_id, expected_version, claim.version)

            # 5. Legality
            transition = CLAIM_WORKFLOW.find_transition(claim.status.value, action)
            if transition is None:
                self._trace(
                    action, claim, OUTCOME_NO_TRANSITION,
                    f"No transition from '{claim.status.value}' via action '{action}'", t0,
                )
                raise InvalidTransitionError(claim_id, action, claim.status.value)

            # 6. Guards
            self._check_guard(transition, claim, payload, t0)

            updated = self._claims.apply(claim, transition, actor, payload, provenance)
            self._trace(
                action, claim, OUTCOME_SUCCESS, "transition applied", t0,
                to_state=updated.status.value,
            )

            if action in _RESOLVING_ACTIONS:
                self._escalations.resolve_for_claim(
                    claim_id,
                    actor.user_id,
                    RESOLUTION_CLAIM_DECIDED.format(status=updated.status.value),
                )
        return updated

    def _check_guard(
        self,
        transition: Transition,
        claim: Claim,
        payload: Mapping[str, Any],
        t0: float,
    ) -> None:
        guard = transition.guard
        if guard is None:
            return
        if self._guard_executor.evaluate(guard, {"claim": claim, "payload": payload}):
            return
        self._trace(
            transition.action, claim, OUTCOME_GUARD_FAILED,
            f"Guard not satisfied: {guard.name}", t0,
        )
        field, message = _GUARD_FIELDS.get(guard.name, (guard.name, guard.description))
        raise ClaimValidationError.single(field, message)

    @staticmethod
    def _trace(
        action: str,
        claim: Claim,
        outcome: str,
        reason: str,
        t0: float,
        to_state: str | None = None,
    ) -> None:
        _emit_workflow_trace(
            action=action,
            claim_id=claim.claim_id,
            from_state=claim.status.value,
            outcome=outcome,
            reason=reason,
            duration_ms=(time.monotonic() - t0) * 1000,
            to_state=to_state,
        )

    def approve(
        self,
        claim_id: str,
        actor: Actor,
        amount_approved: Decimal | str | None = None,
        expected_version: int | None = None,
        provenance: RequestProvenance | None = None,
    ) -> Claim:
        payload = {} if amount_approved is None else {"amountApproved": amount_approved}
        return self.transition(
            claim_id, ClaimAction.APPROVE, actor, payload, expected_version, provenance,
        )

    def reject(
        self,
        claim_id: str,
        actor: Actor,
        reason: str | None,
        expected_version: int | None = None,
        provenance: RequestProvenance | None = None,
    ) -> Claim:
        return self.transition(
            claim_id, ClaimAction.REJECT, actor, {"reason": reason},
            expected_version, provenance,
        )

    def mark_paid(
        self,
        claim_id: str,
        actor: Actor,
        expected_version: int | None = None,
        provenance: RequestProvenance | None = None,
    ) -> Claim:
        return self.transition(
            claim_id, ClaimAction.MARK_PAID, actor, None, expected_version, provenance,
        )

    def add_document(
        self,
        claim_id: str,
        actor: Actor,
        document: str,
        expected_version: int | None = None,
        provenance: RequestProvenance | None = None,
    ) -> Claim:
        return self.transition(
            claim_id, ClaimAction.ADD_DOCUMENT, actor, {"document": document},
            expected_version, provenance,
        )

    # SLA and read views

    def evaluate_sla(self, claim_id: str, now: datetime | None = None) -> SLAEvaluation:
        """SLA status of a claim at ``now`` (defaults to the injected clock)."""
        claim = self._claims.get(claim_id)
        policy = self._claims.get_policy(claim.sla_id)
        if policy is None:
            raise SLAPolicyNotFoundError(claim.sla_id)
        return evaluate(claim, policy, now or self._clock.now_utc())

    def get_claim(self, claim_id: str, actor: Actor | None = None) -> Claim:
        claim = self._claims.get(claim_id)
        if actor is not None:
            authorize_view(actor, claim)
        return claim

    def replay_claim(self, claim_id: str) -> dict[str, Any] | None:
        """Rebuild the claim's wire snapshot from its audit history."""
        return replay_claim(self._ledger.claim_history(claim_id))

    def timeline(
        self,
        claim_id: str,
        actor: Actor | None = None,
        now: datetime | None = None,
    ) -> list[TimelineEntry]:
        claim = self.get_claim(claim_id, actor)
        evaluation = self.evaluate_sla(claim_id, now)
        return build_timeline(claim, self._ledger.entries_for_claim(claim_id), evaluation)
