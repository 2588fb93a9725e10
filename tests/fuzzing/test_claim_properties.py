"""
Hypothesis property tests for the SLA clock, the claim state machine and
the audit ledger.

Properties:
- Breach is exactly ``elapsed > deadline``, at any second offset
- SLA severity never decreases as time moves forward
- After any sequence of attempted actions, version == 1 + successes and
  the claim history holds one entry per mutation
- Replaying the history reproduces the stored projection
- Ledger timestamps never decrease, whatever the clock does
"""

from datetime import datetime, timedelta, timezone

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from reimbursement_config import get_active_config
from reimbursement_engines.sla_clock import evaluate
from reimbursement_kernel.domain.audit import AuditAction, AuditDraft
from reimbursement_kernel.domain.claim import ENTITY_TYPE_CLAIM, ClaimStatus
from reimbursement_kernel.domain.clock import DeterministicClock
from reimbursement_kernel.domain.permissions import Actor, Role
from reimbursement_kernel.domain.sla import SLAState
from reimbursement_kernel.exceptions import ReimbursementKernelError
from reimbursement_kernel.services.audit_ledger import AuditLedger
from reimbursement_kernel.storage.memory import InMemoryAuditStore
from reimbursement_services.bootstrap import build_kernel, memory_stores

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
DEADLINE_SECONDS = 14 * 86400

_SEVERITY = {SLAState.ACTIVE: 0, SLAState.WARNING: 1, SLAState.BREACHED: 2}

FIXTURE_SETTINGS = settings(
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)

ACTORS = {
    "owner": Actor(user_id="student-1", role=Role.STUDENT, department_id="dept-cs"),
    "stranger": Actor(user_id="student-2", role=Role.STUDENT, department_id="dept-cs"),
    "approver": Actor(user_id="approver-cs", role=Role.DEPARTMENT_APPROVER, department_id="dept-cs"),
    "outsider": Actor(user_id="approver-math", role=Role.DEPARTMENT_APPROVER, department_id="dept-math"),
    "accounts": Actor(user_id="accounts-1", role=Role.ACCOUNTS_OFFICER, department_id="dept-cs"),
    "admin": Actor(user_id="admin-1", role=Role.SUPER_ADMIN),
}

ACTIONS = ("approve", "reject", "mark_paid", "add_document")

PAYLOADS = st.sampled_from([
    {},
    {"reason": "Missing receipt"},
    {"reason": "  "},
    {"document": "scan.pdf"},
    {"amountApproved": "50"},
    {"amountApproved": "9999"},
])

step = st.tuples(
    st.sampled_from(ACTIONS),
    st.sampled_from(sorted(ACTORS)),
    PAYLOADS,
    st.integers(min_value=0, max_value=3 * 86400),
)


class TestSLAProperties:

    @given(offset=st.integers(min_value=0, max_value=60 * 86400))
    @FIXTURE_SETTINGS
    def test_breach_is_strictly_past_deadline(self, make_claim, cs_policy, offset):
        claim = make_claim()
        result = evaluate(claim, cs_policy, claim.submitted_at + timedelta(seconds=offset))
        assert result.breached == (offset > DEADLINE_SECONDS)
        assert result.breached == (result.status == SLAState.BREACHED)

    @given(
        first=st.integers(min_value=-86400, max_value=40 * 86400),
        gap=st.integers(min_value=0, max_value=40 * 86400),
    )
    @FIXTURE_SETTINGS
    def test_severity_monotonic(self, make_claim, cs_policy, first, gap):
        claim = make_claim()
        earlier = evaluate(claim, cs_policy, claim.submitted_at + timedelta(seconds=first))
        later = evaluate(claim, cs_policy, claim.submitted_at + timedelta(seconds=first + gap))
        assert _SEVERITY[earlier.status] <= _SEVERITY[later.status]
        assert later.elapsed_days >= earlier.elapsed_days

    @given(offset=st.integers(min_value=0, max_value=400 * 86400))
    @FIXTURE_SETTINGS
    def test_decided_claims_never_breach(self, make_claim, cs_policy, offset):
        claim = make_claim(
            status=ClaimStatus.REJECTED,
            rejected_at=T0 + timedelta(days=2),
            rejected_by="approver-cs",
            rejection_reason="Duplicate",
        )
        result = evaluate(claim, cs_policy, T0 + timedelta(seconds=offset))
        assert result.status == SLAState.FROZEN
        assert not result.breached
        assert result.elapsed_days == 2.0


class TestStateMachineProperties:

    @given(steps=st.lists(step, max_size=8))
    @settings(max_examples=100, deadline=None)
    def test_version_counts_successful_mutations(self, steps):
        kernel = build_kernel(
            get_active_config(), clock=DeterministicClock(T0), stores=memory_stores(),
        )
        claim = kernel.executor.submit({
            "amount": "100.00",
            "currency": "USD",
            "description": "Workshop fee",
            "category": "CONFERENCE",
            "departmentId": "dept-cs",
            "slaId": "sla-cs",
        }, ACTORS["owner"])

        successes = 0
        for action, actor_name, payload, advance in steps:
            kernel.clock.advance(advance)
            before = kernel.claims.get(claim.claim_id)
            try:
                kernel.executor.transition(claim.claim_id, action, ACTORS[actor_name], payload)
            except ReimbursementKernelError:
                assert kernel.claims.get(claim.claim_id) == before
            else:
                successes += 1

        stored = kernel.claims.get(claim.claim_id)
        history = kernel.ledger.claim_history(claim.claim_id)
        assert stored.version == 1 + successes
        assert len(history) == 1 + successes
        assert kernel.executor.replay_claim(claim.claim_id) == stored.to_snapshot()
        assert kernel.ledger.validate_chain()
        if stored.status == ClaimStatus.PAID:
            assert stored.approved_at is not None
        if stored.status in (ClaimStatus.APPROVED, ClaimStatus.PAID):
            assert stored.rejected_at is None
            assert stored.amount_approved <= stored.amount


class TestLedgerProperties:

    @given(jumps=st.lists(st.integers(min_value=-7200, max_value=7200), min_size=1, max_size=20))
    @settings(max_examples=100, deadline=None)
    def test_timestamps_never_decrease(self, jumps):
        clock = DeterministicClock(T0)
        ledger = AuditLedger(InMemoryAuditStore(), clock)
        for i, jump in enumerate(jumps):
            clock.set_time(clock.now_utc() + timedelta(seconds=jump))
            ledger.append(AuditDraft(
                action=AuditAction.DOCUMENT_ADDED,
                entity_type=ENTITY_TYPE_CLAIM,
                entity_id="c-1",
                user_id="student-1",
                claim_id="c-1",
                new_values={"attachments": [f"doc-{i}.pdf"]},
            ))
        entries = ledger.query()
        assert [e.seq for e in entries] == list(range(1, len(jumps) + 1))
        stamps = [e.timestamp for e in sorted(entries, key=lambda e: e.seq)]
        assert stamps == sorted(stamps)
        assert ledger.validate_chain()
