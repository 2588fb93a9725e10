from decimal import Decimal

import pytest

from reimbursement_kernel.domain.claim_workflow import (
    APPROVED_AMOUNT_WITHIN_CLAIM,
    DOCUMENT_REFERENCE_PRESENT,
    REJECTION_REASON_PRESENT,
)
from reimbursement_kernel.domain.workflow import Guard
from reimbursement_services.workflow_executor import default_guard_executor


@pytest.fixture
def guards():
    return default_guard_executor()


@pytest.fixture
def claim(make_claim):
    return make_claim(amount=Decimal("100.00"))


def test_rejection_reason_requires_text(guards, claim):
    assert guards.evaluate(REJECTION_REASON_PRESENT, {"claim": claim, "payload": {"reason": "No receipt"}})
    assert guards.evaluate(
        REJECTION_REASON_PRESENT, {"claim": claim, "payload": {"rejectionReason": "Duplicate"}},
    )
    assert not guards.evaluate(REJECTION_REASON_PRESENT, {"claim": claim, "payload": {"reason": "   "}})
    assert not guards.evaluate(REJECTION_REASON_PRESENT, {"claim": claim, "payload": {}})


def test_approved_amount_defaults_to_claim(guards, claim):
    assert guards.evaluate(APPROVED_AMOUNT_WITHIN_CLAIM, {"claim": claim, "payload": {}})


@pytest.mark.parametrize("raw,expected", [
    ("100.00", True),
    ("0.01", True),
    (50, True),
    ("100.01", False),
    ("0", False),
    ("-5", False),
    ("abc", False),
    ("NaN", False),
])
def test_approved_amount_bounds(guards, claim, raw, expected):
    ctx = {"claim": claim, "payload": {"amountApproved": raw}}
    assert guards.evaluate(APPROVED_AMOUNT_WITHIN_CLAIM, ctx) is expected


def test_document_reference(guards, claim):
    assert guards.evaluate(DOCUMENT_REFERENCE_PRESENT, {"claim": claim, "payload": {"document": "a.pdf"}})
    assert not guards.evaluate(DOCUMENT_REFERENCE_PRESENT, {"claim": claim, "payload": {"document": ""}})


def test_unknown_guard_fails_closed(guards, claim, captured_logs):
    guard = Guard(name="manager_signed_off", description="")
    assert guards.evaluate(guard, {"claim": claim, "payload": {}}) is False
    assert any(r["message"] == "guard_no_evaluator" for r in captured_logs())
