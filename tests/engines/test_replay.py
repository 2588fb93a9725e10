"""
Projection replay tests.

Verifies:
- The seed entry supplies the full snapshot; later entries overwrite fields
- Entries are folded in (timestamp, seq) order whatever the input order
- Entries before the seed are ignored; no seed yields no projection
- For claims driven through the executor, replay equals the stored projection
  on both store backends
"""

import random
from datetime import datetime, timedelta, timezone

from reimbursement_engines.replay import ordered, replay_claim
from reimbursement_kernel.domain.audit import AuditAction, AuditLogEntry, freeze
from reimbursement_kernel.domain.claim import ENTITY_TYPE_CLAIM, ClaimInput

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _entry(seq: int, action: AuditAction, new_values: dict, minutes: int = 0) -> AuditLogEntry:
    return AuditLogEntry(
        entry_id=f"e-{seq}",
        seq=seq,
        action=action,
        entity_type=ENTITY_TYPE_CLAIM,
        entity_id="claim-1",
        user_id="u",
        timestamp=T0 + timedelta(minutes=minutes),
        payload_hash="p",
        hash=f"h-{seq}",
        claim_id="claim-1",
        new_values=freeze(new_values),
    )


SEED = {"id": "claim-1", "status": "SUBMITTED", "version": 1, "attachments": ["a.pdf"]}


class TestReplayFold:

    def test_no_entries(self):
        assert replay_claim([]) is None

    def test_no_seed(self):
        entries = [_entry(1, AuditAction.APPROVED, {"status": "APPROVED", "version": 2})]
        assert replay_claim(entries) is None

    def test_seed_then_updates(self):
        entries = [
            _entry(1, AuditAction.SUBMITTED, SEED),
            _entry(2, AuditAction.DOCUMENT_ADDED,
                   {"attachments": ["a.pdf", "b.pdf"], "version": 2}, minutes=1),
            _entry(3, AuditAction.APPROVED, {"status": "APPROVED", "version": 3}, minutes=2),
        ]
        assert replay_claim(entries) == {
            "id": "claim-1",
            "status": "APPROVED",
            "version": 3,
            "attachments": ["a.pdf", "b.pdf"],
        }

    def test_input_order_does_not_matter(self):
        entries = [
            _entry(1, AuditAction.SUBMITTED, SEED),
            _entry(2, AuditAction.APPROVED, {"status": "APPROVED", "version": 2}, minutes=1),
            _entry(3, AuditAction.PAID, {"status": "PAID", "version": 3}, minutes=2),
        ]
        shuffled = entries[:]
        random.Random(7).shuffle(shuffled)
        assert replay_claim(shuffled) == replay_claim(entries)

    def test_seq_breaks_timestamp_ties(self):
        entries = [
            _entry(2, AuditAction.APPROVED, {"status": "APPROVED"}),
            _entry(1, AuditAction.SUBMITTED, SEED),
        ]
        assert [e.seq for e in ordered(entries)] == [1, 2]
        assert replay_claim(entries)["status"] == "APPROVED"

    def test_entries_before_seed_ignored(self):
        entries = [
            _entry(1, AuditAction.APPROVED, {"status": "APPROVED", "stray": True}),
            _entry(2, AuditAction.SUBMITTED, SEED, minutes=1),
        ]
        snapshot = replay_claim(entries)
        assert snapshot == SEED
        assert "stray" not in snapshot

    def test_replay_does_not_mutate_entries(self):
        seed = _entry(1, AuditAction.SUBMITTED, SEED)
        replay_claim([seed, _entry(2, AuditAction.APPROVED, {"status": "APPROVED"}, minutes=1)])
        assert seed.new_values_dict()["status"] == "SUBMITTED"


class TestReplayMatchesProjection:

    def test_full_lifecycle(self, any_kernel, student, approver, accounts_officer):
        executor = any_kernel.executor
        claim = executor.submit(ClaimInput.from_wire({
            "amount": "250.75",
            "currency": "usd",
            "description": "  Flight to workshop  ",
            "category": "travel",
            "departmentId": "dept-cs",
            "slaId": "sla-cs",
        }), student)
        any_kernel.clock.advance_days(1)
        executor.add_document(claim.claim_id, student, "boarding-pass.pdf")
        any_kernel.clock.advance_days(1)
        executor.approve(claim.claim_id, approver, amount_approved="200.00")
        any_kernel.clock.advance_days(1)
        executor.mark_paid(claim.claim_id, accounts_officer)

        stored = executor.get_claim(claim.claim_id)
        assert executor.replay_claim(claim.claim_id) == stored.to_snapshot()

    def test_rejected_claim(self, any_kernel, student, approver):
        executor = any_kernel.executor
        claim = executor.submit({
            "amount": 80,
            "currency": "USD",
            "description": "Books",
            "category": "SUPPLIES",
            "departmentId": "dept-cs",
            "slaId": "sla-cs",
        }, student)
        executor.reject(claim.claim_id, approver, "Not eligible")
        stored = executor.get_claim(claim.claim_id)
        assert executor.replay_claim(claim.claim_id) == stored.to_snapshot()

    def test_escalation_entries_do_not_feed_replay(self, kernel, submit_claim, approver):
        claim = submit_claim()
        kernel.clock.advance_days(15)
        assert kernel.escalations.check_claim(claim.claim_id).escalated
        kernel.executor.approve(claim.claim_id, approver)
        stored = kernel.executor.get_claim(claim.claim_id)
        assert kernel.executor.replay_claim(claim.claim_id) == stored.to_snapshot()

    def test_unknown_claim(self, executor):
        assert executor.replay_claim("missing") is None
