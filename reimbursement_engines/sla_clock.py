"""
reimbursement_engines.sla_clock -- Pure SLA timing evaluation.

Responsibility:
    Compute a claim's timing status against its SLA policy at a given
    instant: elapsed (fractional) days, breach flag, and the ladder status.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``now`` is always passed in;
    this module never reads a clock.

Invariants enforced:
    - ``elapsed_days = (now - submitted_at) / 1 day``, real-valued.  It is
      never truncated for comparison; ``elapsed_days_display`` floors it for
      presentation only.
    - ``breached = elapsed_days > approval_deadline_days`` (strict: a claim
      evaluated exactly at the deadline is not breached).
    - One ladder, parameterised by the policy:
          elapsed >  deadline            -> BREACHED
          warning <= elapsed <= deadline -> WARNING
          otherwise                      -> ACTIVE
      with ``warning = escalation_threshold_days`` and
      ``deadline = approval_deadline_days``.
    - Decided claims (APPROVED, REJECTED, PAID) are FROZEN: the clock stops at
      the decision timestamp and ``breached`` is False.
    - Monotonic in ``now`` for a fixed claim and policy: once breached, a
      later ``now`` is breached too.

Failure modes:
    - ValueError if ``now`` is naive.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from reimbursement_engines.tracer import traced_engine
from reimbursement_kernel.domain.claim import DECIDED_STATUSES, Claim
from reimbursement_kernel.domain.sla import SLAEvaluation, SLAPolicy, SLAState
from reimbursement_kernel.domain.values import ensure_aware

_ONE_DAY = timedelta(days=1)


def elapsed_days(start: datetime, end: datetime) -> float:
    """Fractional days from ``start`` to ``end``."""
    return (end - start) / _ONE_DAY


def classify(elapsed: float, warning_days: int, deadline_days: int) -> SLAState:
    """Map elapsed days onto the SLA ladder."""
    if elapsed > deadline_days:
        return SLAState.BREACHED
    if elapsed >= warning_days:
        return SLAState.WARNING
    return SLAState.ACTIVE


@traced_engine("sla_clock", "1.0", fingerprint_fields=("now",))
def evaluate(claim: Claim, policy: SLAPolicy, now: datetime) -> SLAEvaluation:
    """Evaluate ``claim`` against ``policy`` at ``now``.

    Args:
        claim: The claim projection.
        policy: The claim's SLA policy.
        now: Timezone-aware evaluation instant.

    Returns:
        SLAEvaluation.  For decided claims ``status`` is FROZEN and
        ``elapsed_days`` is measured to the decision time.
    """
    ensure_aware(now, "now")

    if claim.status in DECIDED_STATUSES:
        stopped_at = claim.decided_at or now
        return SLAEvaluation(
            claim_id=claim.claim_id,
            elapsed_days=max(elapsed_days(claim.submitted_at, stopped_at), 0.0),
            breached=False,
            status=SLAState.FROZEN,
            warning_days=policy.warning_days,
            deadline_days=policy.deadline_days,
            evaluated_at=now,
            frozen=True,
        )

    elapsed = elapsed_days(claim.submitted_at, now)
    status = classify(elapsed, policy.warning_days, policy.deadline_days)
    return SLAEvaluation(
        claim_id=claim.claim_id,
        elapsed_days=elapsed,
        breached=status == SLAState.BREACHED,
        status=status,
        warning_days=policy.warning_days,
        deadline_days=policy.deadline_days,
        evaluated_at=now,
    )


def urgency_key(evaluation: SLAEvaluation) -> tuple[int, float]:
    """Sort key: breached first, then warning, then by least time remaining."""
    rank = {
        SLAState.BREACHED: 0,
        SLAState.WARNING: 1,
        SLAState.ACTIVE: 2,
        SLAState.FROZEN: 3,
    }[evaluation.status]
    return rank, evaluation.days_remaining
