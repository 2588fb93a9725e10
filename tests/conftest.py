"""
Pytest fixtures for the reimbursement kernel test suite.

Provides:
- A deterministic clock (2024-03-01 09:00 UTC) shared by every service
- In-memory kernel wiring built through ``build_kernel``
- SQLite in-memory stores (``init_engine_from_url("sqlite://")``)
- Typed actors for every role
- Captured structured logs

Environment Variables:
- DATABASE_URL: optional PostgreSQL URL; tests marked ``postgres`` are
  skipped without it.
"""

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from io import StringIO

import pytest

from reimbursement_config import KernelConfig, SLAPolicyDef
from reimbursement_kernel.db.base import new_id
from reimbursement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from reimbursement_kernel.domain.claim import Claim, ClaimCategory, ClaimInput, ClaimStatus
from reimbursement_kernel.domain.clock import DeterministicClock
from reimbursement_kernel.domain.permissions import Actor, Role
from reimbursement_kernel.domain.sla import SLAPolicy
from reimbursement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from reimbursement_kernel.storage.sql import (
    SqlAuditStore,
    SqlClaimStore,
    SqlEscalationStore,
    SqlSLAPolicyStore,
)
from reimbursement_services.bootstrap import Stores, build_kernel, memory_stores

START = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)
POLICY_START = datetime(2024, 1, 1, tzinfo=timezone.utc)

CS_DEPT = "dept-cs"
MATH_DEPT = "dept-math"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture reimbursement_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, executor):
            executor.submit(...)
            logs = captured_logs()
            assert any(r["message"] == "claim_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("reimbursement_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Clock and configuration
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(START)


def _policy_defs() -> tuple[SLAPolicyDef, ...]:
    return (
        SLAPolicyDef(
            sla_id="sla-cs",
            department_id=CS_DEPT,
            approval_deadline_days=14,
            escalation_threshold_days=10,
            max_reimbursement=Decimal("5000.00"),
            effective_from=POLICY_START,
        ),
        SLAPolicyDef(
            sla_id="sla-math",
            department_id=MATH_DEPT,
            approval_deadline_days=7,
            escalation_threshold_days=5,
            max_reimbursement=Decimal("1000.00"),
            effective_from=POLICY_START,
        ),
        SLAPolicyDef(
            sla_id="sla-cs-expired",
            department_id=CS_DEPT,
            approval_deadline_days=14,
            escalation_threshold_days=10,
            max_reimbursement=Decimal("5000.00"),
            effective_from=datetime(2023, 1, 1, tzinfo=timezone.utc),
            effective_until=POLICY_START,
        ),
    )


@pytest.fixture
def kernel_config() -> KernelConfig:
    return KernelConfig(
        config_id="test-config",
        version=1,
        policies=_policy_defs(),
        checksum="test",
    )


# =============================================================================
# Stores
# =============================================================================


@pytest.fixture
def sql_stores() -> Stores:
    """Fresh SQLite in-memory database per test."""
    init_engine_from_url("sqlite://")
    create_tables()
    factory = get_session_factory()
    yield Stores(
        claims=SqlClaimStore(factory),
        escalations=SqlEscalationStore(factory),
        audit=SqlAuditStore(factory),
        policies=SqlSLAPolicyStore(factory),
    )
    drop_tables()
    reset_engine()


@pytest.fixture(params=["memory", "sql"])
def any_stores(request) -> Stores:
    """Both store backends, for tests of the shared contract."""
    if request.param == "memory":
        return memory_stores()
    return request.getfixturevalue("sql_stores")


@pytest.fixture
def postgres_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url or not url.startswith("postgresql"):
        pytest.skip("DATABASE_URL not set to a PostgreSQL database")
    return url


# =============================================================================
# Kernel wiring
# =============================================================================


@pytest.fixture
def kernel(kernel_config, clock):
    """In-memory kernel, no outbox."""
    k = build_kernel(kernel_config, clock=clock, stores=memory_stores())
    yield k
    k.close()


@pytest.fixture
def sql_kernel(kernel_config, clock, sql_stores):
    k = build_kernel(kernel_config, clock=clock, stores=sql_stores)
    yield k
    k.close()


@pytest.fixture(params=["memory", "sql"])
def any_kernel(request, kernel_config, clock):
    """The same kernel over both store backends."""
    if request.param == "memory":
        stores = memory_stores()
    else:
        stores = request.getfixturevalue("sql_stores")
    k = build_kernel(kernel_config, clock=clock, stores=stores)
    yield k
    k.close()


@pytest.fixture
def executor(kernel):
    return kernel.executor


@pytest.fixture
def ledger(kernel):
    return kernel.ledger


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def student() -> Actor:
    return Actor(user_id="student-1", role=Role.STUDENT, department_id=CS_DEPT)


@pytest.fixture
def other_student() -> Actor:
    return Actor(user_id="student-2", role=Role.STUDENT, department_id=CS_DEPT)


@pytest.fixture
def approver() -> Actor:
    return Actor(user_id="approver-cs", role=Role.DEPARTMENT_APPROVER, department_id=CS_DEPT)


@pytest.fixture
def math_approver() -> Actor:
    return Actor(user_id="approver-math", role=Role.DEPARTMENT_APPROVER, department_id=MATH_DEPT)


@pytest.fixture
def accounts_officer() -> Actor:
    return Actor(user_id="accounts-1", role=Role.ACCOUNTS_OFFICER, department_id=CS_DEPT)


@pytest.fixture
def escalation_authority() -> Actor:
    return Actor(user_id="escalation-1", role=Role.ESCALATION_AUTHORITY, department_id=CS_DEPT)


@pytest.fixture
def super_admin() -> Actor:
    return Actor(user_id="admin-1", role=Role.SUPER_ADMIN)


# =============================================================================
# Claim helpers
# =============================================================================


def claim_body(**overrides) -> dict:
    body = {
        "amount": "120.50",
        "currency": "USD",
        "description": "Conference registration",
        "category": "CONFERENCE",
        "departmentId": CS_DEPT,
        "slaId": "sla-cs",
        "attachments": ["receipt-001.pdf"],
    }
    body.update(overrides)
    return body


@pytest.fixture
def cs_policy() -> SLAPolicy:
    return _policy_defs()[0].to_policy()


@pytest.fixture
def make_claim():
    """Factory: a SUBMITTED claim built directly, bypassing the services."""

    def _make(submitted_at: datetime = START, **overrides) -> Claim:
        fields = {
            "claim_id": new_id(),
            "user_id": "student-1",
            "department_id": CS_DEPT,
            "sla_id": "sla-cs",
            "amount": Decimal("120.50"),
            "currency": "USD",
            "category": ClaimCategory.CONFERENCE,
            "description": "Conference registration",
            "status": ClaimStatus.SUBMITTED,
            "submitted_at": submitted_at,
            "due_date": submitted_at + timedelta(days=14),
            "escalation_due_date": submitted_at + timedelta(days=10),
            "version": 1,
            "created_at": submitted_at,
            "attachments": ("receipt-001.pdf",),
        }
        fields.update(overrides)
        return Claim(**fields)

    return _make


@pytest.fixture
def submit_claim(kernel, student):
    """Factory: submit a claim through the in-memory executor."""

    def _submit(actor: Actor | None = None, **overrides):
        return kernel.executor.submit(ClaimInput.from_wire(claim_body(**overrides)), actor or student)

    return _submit
