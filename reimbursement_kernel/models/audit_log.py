"""
Module: reimbursement_kernel.models.audit_log
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Audit rows are append-only; no UPDATE or DELETE (ORM listeners).
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      timestamp | payload_hash | prev_hash).  Validated by AuditLedger.
    - seq is unique and monotonically increasing.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - IntegrityError on a duplicate seq (concurrent writer lost the race).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from reimbursement_kernel.db.base import Base, UTCDateTime
from reimbursement_kernel.domain.audit import AuditAction, AuditLogEntry, freeze, thaw


class AuditLogModel(Base):
    """
    Audit log entry with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis entry.
    """

    __tablename__ = "audit_log"

    __table_args__ = (
        Index("idx_audit_log_entity", "entity_type", "entity_id"),
        Index("idx_audit_log_claim", "claim_id", "timestamp"),
        Index("idx_audit_log_action", "action"),
        Index("idx_audit_log_timestamp", "timestamp"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    claim_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    old_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLog #{self.seq} {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None

    def to_dto(self) -> AuditLogEntry:
        return AuditLogEntry(
            entry_id=self.id,
            seq=self.seq,
            action=AuditAction(self.action),
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            user_id=self.user_id,
            timestamp=self.timestamp,
            payload_hash=self.payload_hash,
            hash=self.hash,
            claim_id=self.claim_id,
            old_values=freeze(self.old_values) if self.old_values is not None else None,
            new_values=freeze(self.new_values) if self.new_values is not None else None,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            prev_hash=self.prev_hash,
        )

    @classmethod
    def from_dto(cls, dto: AuditLogEntry) -> AuditLogModel:
        return cls(
            id=dto.entry_id,
            seq=dto.seq,
            action=dto.action.value,
            entity_type=dto.entity_type,
            entity_id=dto.entity_id,
            claim_id=dto.claim_id,
            user_id=dto.user_id,
            timestamp=dto.timestamp,
            old_values=thaw(dto.old_values) if dto.old_values is not None else None,
            new_values=thaw(dto.new_values) if dto.new_values is not None else None,
            ip_address=dto.ip_address,
            user_agent=dto.user_agent,
            payload_hash=dto.payload_hash,
            prev_hash=dto.prev_hash,
            hash=dto.hash,
        )
