"""
SLA policy and evaluation value tests.

Verifies:
- Policy validation reports every invalid field at once
- Effective range is half-open [effective_from, effective_until)
- Due dates derive from the submission time
- Evaluation display fields never feed the breach comparison
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from reimbursement_kernel.domain.sla import SLAEvaluation, SLAPolicy, SLAState
from reimbursement_kernel.exceptions import ClaimValidationError

FROM = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _policy(**overrides) -> SLAPolicy:
    kwargs = {
        "sla_id": "sla-x",
        "department_id": "dept-x",
        "approval_deadline_days": 14,
        "escalation_threshold_days": 10,
        "max_reimbursement": Decimal("5000"),
        "effective_from": FROM,
    }
    kwargs.update(overrides)
    return SLAPolicy(**kwargs)


class TestPolicyValidation:

    def test_valid_policy(self):
        policy = _policy()
        assert policy.warning_days == 10
        assert policy.deadline_days == 14

    def test_threshold_equal_to_deadline_is_allowed(self):
        assert _policy(escalation_threshold_days=14).warning_days == 14

    def test_threshold_above_deadline_rejected(self):
        with pytest.raises(ClaimValidationError) as exc_info:
            _policy(escalation_threshold_days=15)
        assert exc_info.value.field_errors[0]["field"] == "escalationThresholdDays"

    def test_all_errors_reported_together(self):
        with pytest.raises(ClaimValidationError) as exc_info:
            _policy(approval_deadline_days=0, max_reimbursement=Decimal("0"))
        fields = {e["field"] for e in exc_info.value.field_errors}
        assert {"approvalDeadlineDays", "maxReimbursement"} <= fields

    def test_effective_until_must_follow_from(self):
        with pytest.raises(ClaimValidationError):
            _policy(effective_until=FROM)

    def test_naive_effective_from_rejected(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            _policy(effective_from=datetime(2024, 1, 1))


class TestPolicyRange:

    def test_covers_is_half_open(self):
        until = FROM + timedelta(days=30)
        policy = _policy(effective_until=until)
        assert policy.covers(FROM)
        assert policy.covers(until - timedelta(seconds=1))
        assert not policy.covers(until)
        assert not policy.covers(FROM - timedelta(seconds=1))

    def test_open_ended_policy(self):
        assert _policy().covers(FROM + timedelta(days=3650))

    def test_due_dates(self):
        submitted = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
        policy = _policy()
        assert policy.due_date(submitted) == submitted + timedelta(days=14)
        assert policy.escalation_due_date(submitted) == submitted + timedelta(days=10)

    def test_to_wire(self):
        wire = _policy().to_wire()
        assert wire["id"] == "sla-x"
        assert wire["claimApprovalDeadline"] == 14
        assert wire["escalationThreshold"] == 10
        assert wire["maxReimbursement"] == "5000"
        assert wire["effectiveUntil"] is None


class TestEvaluation:

    def _evaluation(self, elapsed: float) -> SLAEvaluation:
        return SLAEvaluation(
            claim_id="c-1",
            elapsed_days=elapsed,
            breached=elapsed > 14,
            status=SLAState.BREACHED if elapsed > 14 else SLAState.ACTIVE,
            warning_days=10,
            deadline_days=14,
            evaluated_at=FROM,
        )

    def test_display_floors_elapsed(self):
        evaluation = self._evaluation(14.9)
        assert evaluation.elapsed_days_display == 14
        assert evaluation.breached is True

    def test_days_remaining(self):
        assert self._evaluation(4.5).days_remaining == pytest.approx(9.5)

    def test_to_wire(self):
        wire = self._evaluation(3.25).to_wire()
        assert wire["elapsedDays"] == 3.25
        assert wire["elapsedDaysDisplay"] == 3
        assert wire["status"] == "ACTIVE"
        assert wire["frozen"] is False
