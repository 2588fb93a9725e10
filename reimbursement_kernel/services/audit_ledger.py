"""
AuditLedger -- authoritative, append-only, hash-chained audit log.

Responsibility:
    Records every state-changing action as an immutable ``AuditLogEntry``.
    Assigns the server timestamp, the ledger sequence and the hash chain at
    append time.  Provides query, per-entity trace, claim history and chain
    validation.

Architecture position:
    Kernel > Services -- imperative shell over an injected ``AuditStore``.
    Called by ClaimService and EscalationService.

Invariants enforced:
    - Append-only: there is no update or delete path.
    - Sequence monotonicity: ``seq`` increases by one per append.
    - Timestamps never decrease in ``seq`` order, so timestamp order and
      append order agree.
    - Chain integrity: ``hash = H(entity_type | entity_id | action |
      timestamp | payload_hash | prev_hash)`` where the payload covers the
      claim link, actor, snapshots and provenance.

Failure modes:
    - AuditChainBrokenError from ``validate_chain`` on tampering.
    - PersistenceUnavailableError from a SQL store.

Two-phase delivery:
    ``append`` is phase 1 and is synchronous: once its unit of work commits,
    every query sees the entry.  If an ``AuditOutbox`` is attached, the
    committed entry is then handed to it for best-effort propagation to the
    durable sink (phase 2), which never blocks or fails the caller.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from reimbursement_kernel.db.base import new_id
from reimbursement_kernel.domain.audit import (
    AuditAction,
    AuditDraft,
    AuditFilter,
    AuditLogEntry,
    freeze,
    thaw,
)
from reimbursement_kernel.domain.claim import ENTITY_TYPE_CLAIM
from reimbursement_kernel.domain.clock import Clock, SystemClock
from reimbursement_kernel.domain.values import datetime_to_wire
from reimbursement_kernel.exceptions import AuditChainBrokenError
from reimbursement_kernel.logging_config import get_logger
from reimbursement_kernel.storage.base import AuditStore
from reimbursement_kernel.utils.hashing import hash_audit_entry, hash_payload

if TYPE_CHECKING:
    from reimbursement_kernel.services.audit_outbox import AuditOutbox

logger = get_logger("services.audit_ledger")


@dataclass(frozen=True)
class AuditTrace:
    """
    Complete audit trace for an entity.

    Contains all entries in append order.
    """

    entity_type: str
    entity_id: str
    entries: tuple[AuditLogEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def first_action(self) -> AuditAction | None:
        return self.entries[0].action if self.entries else None

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


def entry_payload(
    claim_id: str | None,
    user_id: str,
    old_values: Any,
    new_values: Any,
    ip_address: str | None,
    user_agent: str | None,
) -> dict[str, Any]:
    """The hashed portion of an entry besides the chain key fields."""
    return {
        "claimId": claim_id,
        "userId": user_id,
        "oldValues": thaw(old_values) if old_values is not None else None,
        "newValues": thaw(new_values) if new_values is not None else None,
        "ipAddress": ip_address,
        "userAgent": user_agent,
    }


def compute_entry_hash(entry: AuditLogEntry) -> str:
    """Recompute the chain hash of a stored entry from its fields."""
    payload_hash = hash_payload(entry_payload(
        entry.claim_id, entry.user_id, entry.old_values, entry.new_values,
        entry.ip_address, entry.user_agent,
    ))
    return hash_audit_entry(
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        action=entry.action.value,
        timestamp=datetime_to_wire(entry.timestamp),
        payload_hash=payload_hash,
        prev_hash=entry.prev_hash,
    )


class AuditLedger:
    """
    Service for appending and validating tamper-evident audit entries.

    Contract:
        Accepts ``AuditDraft`` records and stores frozen ``AuditLogEntry``
        values with server-assigned ``entry_id``, ``seq``, ``timestamp``
        and hash chain linkage.

    Non-goals:
        - Does NOT interpret entries (replay lives in
          ``reimbursement_engines.replay``).
    """

    def __init__(
        self,
        store: AuditStore,
        clock: Clock | None = None,
        outbox: AuditOutbox | None = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._outbox = outbox
        self._lock = threading.RLock()
        self._pending: list[AuditLogEntry] | None = None

    def attach_outbox(self, outbox: AuditOutbox | None) -> None:
        self._outbox = outbox

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        One unit of work for entity writes and the entries that record them.

        Holds the ledger lock throughout, so sequence numbers are handed out
        and committed in order.  Entries appended inside reach the outbox
        only after the store commits; if the body raises, the store rolls
        back every write made through it and nothing is delivered.  Nested
        calls join the outer unit of work.
        """
        with self._lock:
            if self._pending is not None:
                yield
                return
            self._pending = []
            try:
                with self._store.transaction():
                    yield
                committed = self._pending
            finally:
                self._pending = None
            if self._outbox is not None:
                for entry in committed:
                    self._outbox.enqueue(entry)

    def append(self, draft: AuditDraft) -> AuditLogEntry:
        """
        Append a draft to the ledger.

        Postconditions:
            - The returned entry is visible to every subsequent query.
            - ``entry.prev_hash`` equals the previous entry's ``hash``.
        """
        provenance = draft.provenance
        ip_address = provenance.ip_address if provenance else None
        user_agent = provenance.user_agent if provenance else None
        old_values = freeze(dict(draft.old_values)) if draft.old_values is not None else None
        new_values = freeze(dict(draft.new_values)) if draft.new_values is not None else None

        with self.transaction():
            last = self._store.last()
            seq = last.seq + 1 if last is not None else 1
            prev_hash = last.hash if last is not None else None
            timestamp = self._clock.now_utc()
            if last is not None and timestamp < last.timestamp:
                timestamp = last.timestamp

            payload_hash = hash_payload(entry_payload(
                draft.claim_id, draft.user_id, old_values, new_values,
                ip_address, user_agent,
            ))
            entry_hash = hash_audit_entry(
                entity_type=draft.entity_type,
                entity_id=draft.entity_id,
                action=draft.action.value,
                timestamp=datetime_to_wire(timestamp),
                payload_hash=payload_hash,
                prev_hash=prev_hash,
            )
            entry = AuditLogEntry(
                entry_id=new_id(),
                seq=seq,
                action=draft.action,
                entity_type=draft.entity_type,
                entity_id=draft.entity_id,
                user_id=draft.user_id,
                timestamp=timestamp,
                payload_hash=payload_hash,
                hash=entry_hash,
                claim_id=draft.claim_id,
                old_values=old_values,
                new_values=new_values,
                ip_address=ip_address,
                user_agent=user_agent,
                prev_hash=prev_hash,
            )
            self._store.insert(entry)
            self._pending.append(entry)

        logger.info(
            "audit_entry_appended",
            extra={
                "entity_type": entry.entity_type,
                "entity_id": entry.entity_id,
                "action": entry.action.value,
                "seq": entry.seq,
            },
        )

        return entry

    # Query methods

    def query(self, audit_filter: AuditFilter | None = None) -> list[AuditLogEntry]:
        """Entries matching ``audit_filter`` in ascending timestamp order."""
        return self._store.query(audit_filter or AuditFilter())

    def entries_for_claim(self, claim_id: str) -> list[AuditLogEntry]:
        """Every entry linked to a claim, including escalation entries."""
        return self._store.query(AuditFilter(claim_id=claim_id))

    def claim_history(self, claim_id: str) -> list[AuditLogEntry]:
        """The claim's own lifecycle entries, the input to projection replay."""
        return self._store.query(
            AuditFilter(entity_type=ENTITY_TYPE_CLAIM, entity_id=claim_id)
        )

    def trace(self, entity_type: str, entity_id: str) -> AuditTrace:
        entries = self._store.query(
            AuditFilter(entity_type=entity_type, entity_id=entity_id)
        )
        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(sorted(entries, key=lambda e: e.seq)),
        )

    def recent(self, limit: int = 100) -> list[AuditLogEntry]:
        """Most recent entries, newest first."""
        return list(reversed(self._store.all()[-limit:])) if limit > 0 else []

    # Chain validation

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        entries = self._store.all()
        if not entries:
            return True

        if entries[0].prev_hash is not None:
            logger.critical(
                "audit_chain_broken",
                extra={"entry_id": entries[0].entry_id, "seq": entries[0].seq},
            )
            raise AuditChainBrokenError(entries[0].entry_id, "None", entries[0].prev_hash)

        for i, entry in enumerate(entries):
            expected_hash = compute_entry_hash(entry)
            if entry.hash != expected_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"entry_id": entry.entry_id, "seq": entry.seq},
                )
                raise AuditChainBrokenError(entry.entry_id, expected_hash, entry.hash)

            if i > 0:
                expected_prev = entries[i - 1].hash
                if entry.prev_hash != expected_prev:
                    logger.critical(
                        "audit_chain_broken",
                        extra={"entry_id": entry.entry_id, "seq": entry.seq},
                    )
                    raise AuditChainBrokenError(
                        entry.entry_id, expected_prev, entry.prev_hash or "None",
                    )

        logger.info("audit_chain_valid", extra={"entry_count": len(entries)})
        return True
