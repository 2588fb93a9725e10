"""
Tests for WorkflowExecutor (reimbursement_services.workflow_executor).

Covers:
- Check order: role permission, lookup, scope, expected version,
  legality, guards
- Department and ownership scoping
- Optimistic concurrency (expected_version and racing writers)
- A failed audit append rolls the claim write back
- Escalation resolution on approve/reject
- SLA evaluation and read views
- Structured workflow_transition trace records

Test infrastructure:
- In-memory kernel wired through build_kernel
- DeterministicClock for reproducible timestamps
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from reimbursement_kernel.domain.claim import ClaimStatus
from reimbursement_kernel.domain.claim_workflow import ClaimAction
from reimbursement_kernel.domain.permissions import Actor, Role
from reimbursement_kernel.domain.sla import SLAState
from reimbursement_kernel.exceptions import (
    ClaimNotFoundError,
    ClaimValidationError,
    DepartmentMismatchError,
    ForbiddenError,
    InvalidTransitionError,
    NotClaimOwnerError,
    PersistenceUnavailableError,
    SLAPolicyNotFoundError,
    VersionConflictError,
)


def _transition_logs(captured_logs):
    return [r for r in captured_logs() if r["message"] == "workflow_transition"]


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class TestSubmit:

    def test_from_mapping(self, executor, student):
        claim = executor.submit({
            "amount": "75",
            "currency": "usd",
            "description": "Bus tickets",
            "category": "TRAVEL",
            "departmentId": "dept-cs",
            "slaId": "sla-cs",
        }, student)
        assert claim.status == ClaimStatus.SUBMITTED
        assert claim.currency == "USD"

    @pytest.mark.parametrize("role", [
        Role.DEPARTMENT_APPROVER,
        Role.ACCOUNTS_OFFICER,
        Role.ESCALATION_AUTHORITY,
        Role.SUPER_ADMIN,
    ])
    def test_only_students_submit(self, kernel, submit_claim, role):
        actor = Actor(user_id="someone", role=role, department_id="dept-cs")
        with pytest.raises(ForbiddenError) as exc_info:
            submit_claim(actor=actor)
        assert exc_info.value.action == "SubmitClaim"
        assert kernel.stores.claims.list() == []


# ---------------------------------------------------------------------------
# Role and scope
# ---------------------------------------------------------------------------


class TestAuthorization:

    def test_department_mismatch_leaves_claim_untouched(self, kernel, submit_claim, math_approver):
        claim = submit_claim()
        with pytest.raises(DepartmentMismatchError) as exc_info:
            kernel.executor.approve(claim.claim_id, math_approver)
        assert exc_info.value.actor_department_id == "dept-math"
        assert exc_info.value.claim_department_id == "dept-cs"
        stored = kernel.claims.get(claim.claim_id)
        assert stored.status == ClaimStatus.SUBMITTED
        assert stored.version == 1

    def test_approver_without_department_refused(self, executor, submit_claim):
        claim = submit_claim()
        homeless = Actor(user_id="approver-x", role=Role.DEPARTMENT_APPROVER)
        with pytest.raises(DepartmentMismatchError):
            executor.reject(claim.claim_id, homeless, "no")

    def test_role_checked_before_lookup(self, executor, student):
        with pytest.raises(ForbiddenError) as exc_info:
            executor.approve("no-such-claim", student)
        assert not isinstance(exc_info.value, DepartmentMismatchError)
        assert exc_info.value.action == "ApproveClaim"

    def test_unknown_claim(self, executor, approver):
        with pytest.raises(ClaimNotFoundError):
            executor.approve("no-such-claim", approver)

    @pytest.mark.parametrize("action", ["approve", "reject", "mark_paid", "add_document"])
    def test_super_admin_cannot_mutate(self, executor, submit_claim, super_admin, action):
        claim = submit_claim()
        with pytest.raises(ForbiddenError):
            executor.transition(claim.claim_id, action, super_admin, {"reason": "x", "document": "d"})

    def test_only_accounts_officer_marks_paid(
        self, executor, submit_claim, approver, escalation_authority, accounts_officer,
    ):
        claim = submit_claim()
        executor.approve(claim.claim_id, approver)
        for actor in (approver, escalation_authority):
            with pytest.raises(ForbiddenError):
                executor.mark_paid(claim.claim_id, actor)
        assert executor.mark_paid(claim.claim_id, accounts_officer).status == ClaimStatus.PAID

    @pytest.mark.parametrize("fixture", ["approver", "accounts_officer", "escalation_authority"])
    def test_approver_roles_can_decide(self, request, executor, submit_claim, fixture):
        actor = request.getfixturevalue(fixture)
        claim = submit_claim()
        assert executor.approve(claim.claim_id, actor).approved_by == actor.user_id

    def test_add_document_owner_only(self, executor, submit_claim, other_student):
        claim = submit_claim()
        with pytest.raises(NotClaimOwnerError) as exc_info:
            executor.add_document(claim.claim_id, other_student, "forged.pdf")
        assert exc_info.value.claim_id == claim.claim_id

    def test_approver_cannot_add_document(self, executor, submit_claim, approver):
        claim = submit_claim()
        with pytest.raises(ForbiddenError):
            executor.add_document(claim.claim_id, approver, "note.pdf")


# ---------------------------------------------------------------------------
# Legality and guards
# ---------------------------------------------------------------------------


class TestLegality:

    def test_cannot_approve_twice(self, executor, submit_claim, approver):
        claim = submit_claim()
        executor.approve(claim.claim_id, approver)
        with pytest.raises(InvalidTransitionError) as exc_info:
            executor.approve(claim.claim_id, approver)
        assert exc_info.value.from_status == "APPROVED"

    def test_cannot_reject_paid(self, executor, submit_claim, approver, accounts_officer):
        claim = submit_claim()
        executor.approve(claim.claim_id, approver)
        executor.mark_paid(claim.claim_id, accounts_officer)
        with pytest.raises(InvalidTransitionError):
            executor.reject(claim.claim_id, approver, "too late")

    def test_cannot_pay_unapproved(self, executor, submit_claim, accounts_officer):
        claim = submit_claim()
        with pytest.raises(InvalidTransitionError) as exc_info:
            executor.mark_paid(claim.claim_id, accounts_officer)
        assert exc_info.value.from_status == "SUBMITTED"

    def test_cannot_add_document_after_decision(self, executor, submit_claim, student, approver):
        claim = submit_claim()
        executor.reject(claim.claim_id, approver, "Duplicate")
        with pytest.raises(InvalidTransitionError):
            executor.add_document(claim.claim_id, student, "late.pdf")

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reject_requires_reason(self, kernel, submit_claim, approver, reason):
        claim = submit_claim()
        with pytest.raises(ClaimValidationError) as exc_info:
            kernel.executor.reject(claim.claim_id, approver, reason)
        assert exc_info.value.field_errors[0]["field"] == "reason"
        assert kernel.claims.get(claim.claim_id).version == 1

    def test_reject_accepts_rejection_reason_key(self, executor, submit_claim, approver):
        claim = submit_claim()
        rejected = executor.transition(
            claim.claim_id, "reject", approver, {"rejectionReason": "Out of policy"},
        )
        assert rejected.rejection_reason == "Out of policy"

    def test_approved_amount_above_claim(self, executor, submit_claim, approver):
        claim = submit_claim()
        with pytest.raises(ClaimValidationError) as exc_info:
            executor.approve(claim.claim_id, approver, amount_approved="500")
        assert exc_info.value.field_errors[0]["field"] == "amountApproved"

    def test_empty_document_reference(self, executor, submit_claim, student):
        claim = submit_claim()
        with pytest.raises(ClaimValidationError):
            executor.add_document(claim.claim_id, student, " ")

    def test_unknown_action(self, executor, submit_claim, approver):
        claim = submit_claim()
        with pytest.raises(ClaimValidationError) as exc_info:
            executor.transition(claim.claim_id, "escalate", approver)
        assert exc_info.value.field_errors[0]["field"] == "action"

    def test_submit_is_not_a_transition(self, executor, submit_claim, student):
        claim = submit_claim()
        with pytest.raises(ClaimValidationError):
            executor.transition(claim.claim_id, ClaimAction.SUBMIT, student)

    def test_string_action_accepted(self, executor, submit_claim, approver):
        claim = submit_claim()
        assert executor.transition(claim.claim_id, "approve", approver).status == ClaimStatus.APPROVED


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestOptimisticConcurrency:

    def test_expected_version_matches(self, executor, submit_claim, approver):
        claim = submit_claim()
        assert executor.approve(claim.claim_id, approver, expected_version=1).version == 2

    def test_stale_expected_version(self, kernel, submit_claim, student, approver):
        claim = submit_claim()
        kernel.executor.add_document(claim.claim_id, student, "extra.pdf")
        with pytest.raises(VersionConflictError) as exc_info:
            kernel.executor.approve(claim.claim_id, approver, expected_version=1)
        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2
        assert kernel.claims.get(claim.claim_id).status == ClaimStatus.SUBMITTED

    def test_racing_decisions_exactly_one_wins(self, kernel, submit_claim, approver, accounts_officer):
        claim = submit_claim()
        barrier = threading.Barrier(4)
        actors = [approver, accounts_officer, approver, accounts_officer]

        def decide(i):
            barrier.wait()
            try:
                if i % 2:
                    kernel.executor.reject(claim.claim_id, actors[i], "race", expected_version=1)
                else:
                    kernel.executor.approve(claim.claim_id, actors[i], expected_version=1)
                return "ok"
            except VersionConflictError:
                return "conflict"

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = list(pool.map(decide, range(4)))

        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 3
        stored = kernel.claims.get(claim.claim_id)
        assert stored.version == 2
        assert stored.status in (ClaimStatus.APPROVED, ClaimStatus.REJECTED)
        assert len(kernel.ledger.claim_history(claim.claim_id)) == 2


# ---------------------------------------------------------------------------
# Audit append failures
# ---------------------------------------------------------------------------


def _unavailable_insert(entry):
    raise PersistenceUnavailableError("audit.insert", "connection reset")


def _submit_books(kernel, student):
    return kernel.executor.submit({
        "amount": "80",
        "currency": "USD",
        "description": "Books",
        "category": "SUPPLIES",
        "departmentId": "dept-cs",
        "slaId": "sla-cs",
    }, student)


class TestAuditAppendFailure:
    """A claim write and its audit entry commit together or not at all."""

    def test_transition_rolled_back(self, any_kernel, student, approver, monkeypatch, captured_logs):
        claim = _submit_books(any_kernel, student)
        monkeypatch.setattr(any_kernel.stores.audit, "insert", _unavailable_insert)

        with pytest.raises(PersistenceUnavailableError):
            any_kernel.executor.approve(claim.claim_id, approver)

        stored = any_kernel.executor.get_claim(claim.claim_id)
        assert stored.status == ClaimStatus.SUBMITTED
        assert stored.version == 1
        assert stored.approved_at is None
        assert any_kernel.executor.replay_claim(claim.claim_id) == stored.to_snapshot()
        assert any(r["message"] == "claim_write_rolled_back" for r in captured_logs())

    def test_transition_succeeds_after_recovery(self, any_kernel, student, approver, monkeypatch):
        claim = _submit_books(any_kernel, student)
        monkeypatch.setattr(any_kernel.stores.audit, "insert", _unavailable_insert)
        with pytest.raises(PersistenceUnavailableError):
            any_kernel.executor.approve(claim.claim_id, approver)
        monkeypatch.undo()

        approved = any_kernel.executor.approve(claim.claim_id, approver, expected_version=1)
        assert approved.version == 2
        history = any_kernel.ledger.claim_history(claim.claim_id)
        assert [e.action.value for e in history] == ["SUBMITTED", "APPROVED"]
        assert any_kernel.executor.replay_claim(claim.claim_id) == approved.to_snapshot()
        assert any_kernel.ledger.validate_chain() is True

    def test_submission_rolled_back(self, any_kernel, student, monkeypatch):
        before = len(any_kernel.ledger.query())
        monkeypatch.setattr(any_kernel.stores.audit, "insert", _unavailable_insert)

        with pytest.raises(PersistenceUnavailableError):
            _submit_books(any_kernel, student)

        assert any_kernel.stores.claims.list() == []
        assert len(any_kernel.ledger.query()) == before

    def test_escalation_resolution_untouched_when_decision_fails(
        self, kernel, submit_claim, escalation_authority, monkeypatch,
    ):
        claim = submit_claim()
        kernel.clock.advance_days(15)
        escalation = kernel.escalations.check_claim(claim.claim_id).escalation
        monkeypatch.setattr(kernel.stores.audit, "insert", _unavailable_insert)

        with pytest.raises(PersistenceUnavailableError):
            kernel.executor.approve(claim.claim_id, escalation_authority)

        assert kernel.escalations.open_escalation(claim.claim_id) == escalation


# ---------------------------------------------------------------------------
# Escalation coupling
# ---------------------------------------------------------------------------


class TestEscalationResolution:

    @pytest.mark.parametrize("decide,status", [
        (lambda ex, cid, actor: ex.approve(cid, actor), "APPROVED"),
        (lambda ex, cid, actor: ex.reject(cid, actor, "late"), "REJECTED"),
    ])
    def test_decision_resolves_open_escalation(
        self, kernel, submit_claim, escalation_authority, decide, status,
    ):
        claim = submit_claim()
        kernel.clock.advance_days(15)
        escalation = kernel.escalations.check_claim(claim.claim_id).escalation

        decide(kernel.executor, claim.claim_id, escalation_authority)

        assert kernel.escalations.open_escalation(claim.claim_id) is None
        resolved = kernel.escalations.history(claim.claim_id)[0]
        assert resolved.escalation_id == escalation.escalation_id
        assert resolved.resolution == f"claim {status}"
        assert resolved.resolved_at == kernel.clock.now_utc()

    def test_decision_without_escalation(self, kernel, submit_claim, approver):
        claim = submit_claim()
        kernel.executor.approve(claim.claim_id, approver)
        assert kernel.escalations.history(claim.claim_id) == []


# ---------------------------------------------------------------------------
# SLA and read views
# ---------------------------------------------------------------------------


class TestReadViews:

    def test_evaluate_sla(self, kernel, submit_claim):
        claim = submit_claim()
        kernel.clock.advance_days(11)
        evaluation = kernel.executor.evaluate_sla(claim.claim_id)
        assert evaluation.status == SLAState.WARNING
        assert evaluation.elapsed_days == pytest.approx(11.0)

    def test_evaluate_sla_at_explicit_time(self, executor, submit_claim):
        claim = submit_claim()
        evaluation = executor.evaluate_sla(claim.claim_id, claim.submitted_at + timedelta(days=20))
        assert evaluation.breached

    def test_evaluate_sla_missing_policy(self, kernel, make_claim):
        orphan = kernel.stores.claims.add(make_claim(sla_id="sla-retired"))
        with pytest.raises(SLAPolicyNotFoundError):
            kernel.executor.evaluate_sla(orphan.claim_id)

    def test_get_claim_scoping(
        self, executor, submit_claim, student, other_student, approver, math_approver, super_admin,
    ):
        claim = submit_claim()
        for actor in (student, approver, super_admin):
            assert executor.get_claim(claim.claim_id, actor) == claim
        for actor in (other_student, math_approver):
            with pytest.raises(ForbiddenError):
                executor.get_claim(claim.claim_id, actor)

    def test_replay_matches_projection(self, executor, submit_claim, student, approver):
        claim = submit_claim()
        executor.add_document(claim.claim_id, student, "hotel.pdf")
        approved = executor.approve(claim.claim_id, approver)
        assert executor.replay_claim(claim.claim_id) == approved.to_snapshot()


# ---------------------------------------------------------------------------
# Trace records
# ---------------------------------------------------------------------------


class TestTransitionTrace:

    def test_success_logged(self, executor, submit_claim, approver, captured_logs):
        claim = submit_claim()
        executor.approve(claim.claim_id, approver)
        record = _transition_logs(captured_logs)[-1]
        assert record["trace_type"] == "WORKFLOW_TRANSITION"
        assert record["workflow"] == "reimbursement_claim"
        assert record["outcome"] == "success"
        assert record["from_state"] == "SUBMITTED"
        assert record["to_state"] == "APPROVED"
        assert record["entity_id"] == claim.claim_id
        assert record["claim_id"] == claim.claim_id
        assert record["actor_id"] == "approver-cs"

    def test_refusal_logged(self, executor, submit_claim, math_approver, captured_logs):
        claim = submit_claim()
        with pytest.raises(DepartmentMismatchError):
            executor.approve(claim.claim_id, math_approver)
        record = _transition_logs(captured_logs)[-1]
        assert record["outcome"] == "refused"
        assert record["reason"] == "DEPARTMENT_MISMATCH"

    def test_guard_failure_logged(self, executor, submit_claim, approver, captured_logs):
        claim = submit_claim()
        with pytest.raises(ClaimValidationError):
            executor.reject(claim.claim_id, approver, "")
        record = _transition_logs(captured_logs)[-1]
        assert record["outcome"] == "guard_failed"
        assert "rejection_reason_present" in record["reason"]

    def test_illegal_transition_logged(self, executor, submit_claim, accounts_officer, captured_logs):
        claim = submit_claim()
        with pytest.raises(InvalidTransitionError):
            executor.mark_paid(claim.claim_id, accounts_officer)
        assert _transition_logs(captured_logs)[-1]["outcome"] == "no_transition"
