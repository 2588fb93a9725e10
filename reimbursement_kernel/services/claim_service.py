"""
reimbursement_kernel.services.claim_service -- claim lifecycle mutations.

Responsibility:
    Creates claims on submission and applies workflow transitions: the new
    projection, the compare-and-set write and the audit entry, committed
    together.  Permission checks and guard evaluation happen before this
    service is called (``reimbursement_services``).

Architecture position:
    Kernel > Services.  May import from domain/, storage/, services/.

Invariants enforced:
    - version starts at 1 and increases by exactly one per successful
      transition; failed attempts never touch the stored claim.
    - Approve and reject metadata are mutually exclusive: setting one side
      clears the other.
    - submitted_at, due_date and escalation_due_date are assigned once, at
      submission, from the SLA policy.
    - Every successful mutation appends exactly one audit entry whose new
      values are the changed wire fields, so replay reproduces the projection.

Failure modes:
    - ClaimValidationError before any mutation (missing/invalid input,
      policy mismatch, amount above policy maximum).
    - ClaimNotFoundError for an unknown id.
    - VersionConflictError when the compare-and-set loses.
    - PersistenceUnavailableError from a SQL store (fatal to the request;
      the claim write is rolled back with the failed audit append).
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any, Mapping

from reimbursement_kernel.db.base import new_id
from reimbursement_kernel.domain.audit import AuditAction, AuditDraft, RequestProvenance
from reimbursement_kernel.domain.claim import (
    ENTITY_TYPE_CLAIM,
    Claim,
    ClaimCategory,
    ClaimInput,
    ClaimStatus,
)
from reimbursement_kernel.domain.claim_workflow import ClaimAction
from reimbursement_kernel.domain.clock import Clock, SystemClock
from reimbursement_kernel.domain.permissions import Actor
from reimbursement_kernel.domain.sla import SLAPolicy
from reimbursement_kernel.domain.values import parse_decimal
from reimbursement_kernel.domain.workflow import Transition
from reimbursement_kernel.exceptions import (
    ClaimNotFoundError,
    ClaimValidationError,
    PersistenceUnavailableError,
)
from reimbursement_kernel.logging_config import LogContext, get_logger
from reimbursement_kernel.services.audit_ledger import AuditLedger
from reimbursement_kernel.storage.base import ClaimStore, SLAPolicyStore

logger = get_logger("services.claim")

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

REQUIRED_SUBMIT_FIELDS = (
    ("amount", "amount"),
    ("currency", "currency"),
    ("description", "description"),
    ("category", "category"),
    ("department_id", "departmentId"),
    ("sla_id", "slaId"),
)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def payload_text(payload: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class ClaimService:
    """Owns every write to the claim projection."""

    def __init__(
        self,
        claims: ClaimStore,
        policies: SLAPolicyStore,
        ledger: AuditLedger,
        clock: Clock | None = None,
    ):
        self._claims = claims
        self._policies = policies
        self._ledger = ledger
        self._clock = clock or SystemClock()

    # Reads

    def get(self, claim_id: str) -> Claim:
        claim = self._claims.get(claim_id)
        if claim is None:
            raise ClaimNotFoundError(claim_id)
        return claim

    def get_policy(self, sla_id: str) -> SLAPolicy | None:
        return self._policies.get(sla_id)

    # Submission

    def submit(
        self,
        claim_input: ClaimInput,
        user_id: str,
        provenance: RequestProvenance | None = None,
    ) -> Claim:
        """
        Validate input and create a claim directly in SUBMITTED.

        Postconditions:
            - version == 1, submitted_at == created_at == now.
            - due dates derived from the claim's SLA policy.
            - One SUBMITTED audit entry carrying the full snapshot.
        """
        now = self._clock.now_utc()
        amount, currency, category, policy = self._validate_submission(claim_input, now)

        claim = Claim(
            claim_id=new_id(),
            user_id=user_id,
            department_id=claim_input.department_id,
            sla_id=policy.sla_id,
            amount=amount,
            currency=currency,
            category=category,
            description=claim_input.description.strip(),
            status=ClaimStatus.SUBMITTED,
            submitted_at=now,
            due_date=policy.due_date(now),
            escalation_due_date=policy.escalation_due_date(now),
            version=1,
            created_at=now,
            attachments=tuple(claim_input.attachments),
        )

        with LogContext.bind(claim_id=claim.claim_id, actor_id=user_id):
            with self._ledger.transaction():
                self._claims.add(claim)
                self._record(
                    AuditAction.SUBMITTED, claim, user_id,
                    old_values=None,
                    new_values=claim.to_snapshot(),
                    provenance=provenance,
                )
            logger.info(
                "claim_submitted",
                extra={
                    "department_id": claim.department_id,
                    "sla_id": claim.sla_id,
                    "amount": claim.amount,
                    "currency": claim.currency,
                    "due_date": claim.due_date,
                },
            )
        return claim

    def _validate_submission(
        self, claim_input: ClaimInput, now,
    ) -> tuple[Decimal, str, ClaimCategory, SLAPolicy]:
        errors: list[dict[str, str]] = []
        for attr, wire in REQUIRED_SUBMIT_FIELDS:
            if _is_blank(getattr(claim_input, attr)):
                errors.append({"field": wire, "message": "is required"})
        if errors:
            raise ClaimValidationError(errors)

        amount: Decimal | None = None
        try:
            amount = parse_decimal(claim_input.amount)
        except ValueError:
            errors.append({"field": "amount", "message": "must be a number"})
        if amount is not None and (not amount.is_finite() or amount <= 0):
            errors.append({"field": "amount", "message": "must be positive"})
            amount = None

        currency = str(claim_input.currency).strip().upper()
        if not _CURRENCY_RE.match(currency):
            errors.append({"field": "currency", "message": "must be a 3-letter ISO 4217 code"})

        category: ClaimCategory | None = None
        try:
            category = ClaimCategory(str(claim_input.category).strip().upper())
        except ValueError:
            errors.append({
                "field": "category",
                "message": f"must be one of {', '.join(c.value for c in ClaimCategory)}",
            })

        for ref in claim_input.attachments:
            if _is_blank(ref) or not isinstance(ref, str):
                errors.append({"field": "attachments", "message": "must be non-empty strings"})
                break

        policy = self._policies.get(claim_input.sla_id)
        if policy is None:
            errors.append({"field": "slaId", "message": "unknown SLA policy"})
        else:
            if policy.department_id != claim_input.department_id:
                errors.append({
                    "field": "slaId",
                    "message": "SLA policy belongs to a different department",
                })
            if not policy.covers(now):
                errors.append({
                    "field": "slaId",
                    "message": "SLA policy is not effective at submission time",
                })
            if amount is not None and amount > policy.max_reimbursement:
                errors.append({
                    "field": "amount",
                    "message": f"exceeds policy maximum {policy.max_reimbursement}",
                })

        if errors:
            raise ClaimValidationError(errors)
        return amount, currency, category, policy

    # Transitions

    def apply(
        self,
        claim: Claim,
        transition: Transition,
        actor: Actor,
        payload: Mapping[str, Any] | None = None,
        provenance: RequestProvenance | None = None,
    ) -> Claim:
        """
        Apply a legal, authorized transition to ``claim`` as last observed.

        The write is a compare-and-set on ``claim.version``: if the stored
        claim has moved on, VersionConflictError is raised and nothing is
        written.  The claim write and its audit entry are one unit of work;
        if the append fails the claim is left as it was.

        The transition's guard must already have passed for ``payload``;
        the values are read here, not re-checked.
        """
        payload = payload or {}
        now = self._clock.now_utc()
        changes = self._changes_for(claim, transition, actor, payload, now)
        changes["status"] = ClaimStatus(transition.to_state)

        attributes = list(changes) + ["version"]
        updated = claim.evolve(**changes, version=claim.version + 1)

        with LogContext.bind(claim_id=claim.claim_id, actor_id=actor.user_id):
            try:
                with self._ledger.transaction():
                    self._claims.compare_and_set(claim.claim_id, claim.version, updated)
                    self._record(
                        transition.audit_action, updated, actor.user_id,
                        old_values=claim.to_snapshot(attributes),
                        new_values=updated.to_snapshot(attributes),
                        provenance=provenance,
                    )
            except PersistenceUnavailableError:
                logger.error(
                    "claim_write_rolled_back",
                    extra={"action": transition.action, "version": claim.version},
                    exc_info=True,
                )
                raise
            logger.info(
                "claim_transitioned",
                extra={
                    "action": transition.action,
                    "from_status": claim.status.value,
                    "to_status": updated.status.value,
                    "version": updated.version,
                },
            )
        return updated

    def _changes_for(
        self,
        claim: Claim,
        transition: Transition,
        actor: Actor,
        payload: Mapping[str, Any],
        now,
    ) -> dict[str, Any]:
        action = transition.action
        if action == ClaimAction.APPROVE.value:
            raw = payload.get("amountApproved")
            return {
                "amount_approved": claim.amount if raw is None else parse_decimal(raw),
                "approved_at": now,
                "approved_by": actor.user_id,
                "rejected_at": None,
                "rejected_by": None,
                "rejection_reason": None,
            }
        if action == ClaimAction.REJECT.value:
            return {
                "rejected_at": now,
                "rejected_by": actor.user_id,
                "rejection_reason": payload_text(payload, "reason", "rejectionReason"),
                "approved_at": None,
                "approved_by": None,
                "amount_approved": None,
            }
        if action == ClaimAction.MARK_PAID.value:
            return {"paid_at": now}
        if action == ClaimAction.ADD_DOCUMENT.value:
            document = payload_text(payload, "document", "attachment")
            return {"attachments": claim.attachments + (document,)}
        raise ValueError(f"No mutation defined for action {action!r}")

    def _record(
        self,
        action: AuditAction,
        claim: Claim,
        user_id: str,
        *,
        old_values: Mapping[str, Any] | None,
        new_values: Mapping[str, Any] | None,
        provenance: RequestProvenance | None,
    ):
        return self._ledger.append(AuditDraft(
            action=action,
            entity_type=ENTITY_TYPE_CLAIM,
            entity_id=claim.claim_id,
            user_id=user_id,
            claim_id=claim.claim_id,
            old_values=old_values,
            new_values=new_values,
            provenance=provenance,
        ))
