"""
Module: reimbursement_kernel.models.claim
Responsibility: ORM persistence for the reimbursement claim projection.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - version starts at 1 and is bumped by exactly one per mutation; the SQL
      claim store writes with ``UPDATE ... WHERE id = :id AND version = :v``.
    - submitted_at, due_date and escalation_due_date are write-once
      (ORM listener in db/immutability.py).
    - Claims are never deleted (ORM listener).

Failure modes:
    - ImmutabilityViolationError on DELETE or on a write-once field change.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, CheckConstraint, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from reimbursement_kernel.db.base import Base, UTCDateTime
from reimbursement_kernel.domain.claim import Claim, ClaimCategory, ClaimStatus


class ClaimModel(Base):
    """Persistent claim projection.  One row per claim, never deleted."""

    __tablename__ = "reimbursement_claims"

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'SUBMITTED', 'UNDER_REVIEW', 'APPROVED', "
            "'REJECTED', 'PAID')",
            name="ck_reimbursement_claims_valid_status",
        ),
        CheckConstraint("version >= 1", name="ck_reimbursement_claims_version"),
        Index("ix_reimbursement_claims_user", "user_id"),
        Index("ix_reimbursement_claims_department_status", "department_id", "status"),
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    department_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sla_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(String(4000), nullable=False)
    attachments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    amount_approved: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9), nullable=True,
    )
    rejection_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    due_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    escalation_due_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<Claim {self.id} status={self.status} v{self.version}>"

    def to_dto(self) -> Claim:
        """Convert ORM model to frozen domain object."""
        return Claim(
            claim_id=self.id,
            user_id=self.user_id,
            department_id=self.department_id,
            sla_id=self.sla_id,
            amount=self.amount,
            currency=self.currency,
            category=ClaimCategory(self.category),
            description=self.description,
            status=ClaimStatus(self.status),
            submitted_at=self.submitted_at,
            due_date=self.due_date,
            escalation_due_date=self.escalation_due_date,
            version=self.version,
            created_at=self.created_at,
            attachments=tuple(self.attachments or ()),
            amount_approved=self.amount_approved,
            rejection_reason=self.rejection_reason,
            approved_at=self.approved_at,
            approved_by=self.approved_by,
            rejected_at=self.rejected_at,
            rejected_by=self.rejected_by,
            paid_at=self.paid_at,
        )

    @classmethod
    def from_dto(cls, dto: Claim) -> ClaimModel:
        """Create ORM model from domain object."""
        return cls(
            id=dto.claim_id,
            user_id=dto.user_id,
            department_id=dto.department_id,
            sla_id=dto.sla_id,
            submitted_at=dto.submitted_at,
            due_date=dto.due_date,
            escalation_due_date=dto.escalation_due_date,
            created_at=dto.created_at,
            **mutable_columns(dto),
        )


def mutable_columns(dto: Claim) -> dict:
    """Column values a transition may change (the CAS ``SET`` clause)."""
    return {
        "amount": dto.amount,
        "currency": dto.currency,
        "category": dto.category.value,
        "description": dto.description,
        "attachments": list(dto.attachments),
        "status": dto.status.value,
        "amount_approved": dto.amount_approved,
        "rejection_reason": dto.rejection_reason,
        "approved_at": dto.approved_at,
        "approved_by": dto.approved_by,
        "rejected_at": dto.rejected_at,
        "rejected_by": dto.rejected_by,
        "paid_at": dto.paid_at,
        "version": dto.version,
    }
