"""
reimbursement_engines.replay -- Rebuild a claim projection from its audit trail.

Responsibility:
    Fold a claim's own lifecycle entries (entity type ``ReimbursementClaim``)
    into a wire snapshot.  The seed entry (CREATED or SUBMITTED) supplies the
    full initial snapshot; every later entry overwrites the fields named in
    its ``new_values`` (last writer wins per field).

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Callers fetch entries with
    ``AuditLedger.claim_history`` and pass them in.

Invariants enforced:
    - Entries are applied in (timestamp, seq) order regardless of input order.
    - Entries before the seed are ignored; no seed means no projection.
    - For every claim written through ``ClaimService`` the replayed snapshot
      equals ``claim.to_snapshot()``.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from reimbursement_engines.tracer import traced_engine
from reimbursement_kernel.domain.audit import SEED_ACTIONS, AuditLogEntry


def ordered(entries: Iterable[AuditLogEntry]) -> list[AuditLogEntry]:
    return sorted(entries, key=lambda e: (e.timestamp, e.seq))


@traced_engine("replay", "1.0")
def replay_claim(entries: Iterable[AuditLogEntry]) -> dict[str, Any] | None:
    """Fold ``entries`` into a claim snapshot, or None when there is no seed."""
    snapshot: dict[str, Any] | None = None
    for entry in ordered(entries):
        if entry.action in SEED_ACTIONS:
            snapshot = entry.new_values_dict()
            continue
        if snapshot is None:
            continue
        snapshot.update(entry.new_values_dict())
    return snapshot
