"""
Module: reimbursement_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the import surface for
    ``reimbursement_services``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import reimbursement_kernel/domain (and sibling engine modules).
    MUST NOT import reimbursement_services.

Invariants enforced:
    - Purity: engines NEVER read a clock.  ``now`` is passed in by callers.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine`` (see
    ``reimbursement_engines.tracer``), emitting REIMBURSEMENT_ENGINE_TRACE
    records at DEBUG level.

Usage:
    from reimbursement_engines.sla_clock import evaluate
    from reimbursement_engines.escalation import decide_escalation
    from reimbursement_engines.replay import replay_claim
"""

from reimbursement_engines.escalation import (
    ESCALATION_LADDER,
    decide_escalation,
    next_level,
    target_role,
)
from reimbursement_engines.replay import replay_claim
from reimbursement_engines.sla_clock import classify, elapsed_days, evaluate, urgency_key
from reimbursement_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "ESCALATION_LADDER",
    "classify",
    "compute_input_fingerprint",
    "decide_escalation",
    "elapsed_days",
    "evaluate",
    "next_level",
    "replay_claim",
    "target_role",
    "traced_engine",
    "urgency_key",
]
