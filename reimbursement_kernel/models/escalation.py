"""
Module: reimbursement_kernel.models.escalation
Responsibility: ORM persistence for SLA breach escalations.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - At most one unresolved escalation per claim: partial unique index on
      claim_id WHERE resolved_at IS NULL (PostgreSQL and SQLite).
    - level >= 1.
    - Escalations are never deleted (ORM listener in db/immutability.py).

Failure modes:
    - IntegrityError on a second open escalation for the same claim; the SQL
      escalation store translates it to DuplicateEscalationError.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from reimbursement_kernel.db.base import Base, UTCDateTime
from reimbursement_kernel.domain.escalation import Escalation, EscalationReason


class EscalationModel(Base):
    """Persistent escalation record."""

    __tablename__ = "escalations"

    __table_args__ = (
        CheckConstraint("level >= 1", name="ck_escalations_level"),
        Index(
            "ix_escalations_open_unique",
            "claim_id",
            unique=True,
            postgresql_where=text("resolved_at IS NULL"),
            sqlite_where=text("resolved_at IS NULL"),
        ),
        Index("ix_escalations_claim", "claim_id", "escalated_at"),
    )

    claim_id: Mapped[str] = mapped_column(String(36), nullable=False)
    escalated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    escalated_by: Mapped[str] = mapped_column(String(64), nullable=False)
    escalated_to: Mapped[str] = mapped_column(String(64), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    details: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    resolution: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<Escalation {self.id} claim={self.claim_id} level={self.level}>"

    def to_dto(self) -> Escalation:
        return Escalation(
            escalation_id=self.id,
            claim_id=self.claim_id,
            escalated_at=self.escalated_at,
            escalated_by=self.escalated_by,
            escalated_to=self.escalated_to,
            level=self.level,
            reason=EscalationReason(self.reason),
            details=self.details,
            resolution=self.resolution,
            resolved_at=self.resolved_at,
        )

    @classmethod
    def from_dto(cls, dto: Escalation) -> EscalationModel:
        return cls(
            id=dto.escalation_id,
            claim_id=dto.claim_id,
            escalated_at=dto.escalated_at,
            escalated_by=dto.escalated_by,
            escalated_to=dto.escalated_to,
            level=dto.level,
            reason=dto.reason.value,
            details=dto.details,
            resolution=dto.resolution,
            resolved_at=dto.resolved_at,
        )
