"""
Module: reimbursement_kernel.models.sla_policy
Responsibility: ORM persistence for per-department SLA policies.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - escalation_threshold_days <= approval_deadline_days (check constraint,
      and again when the row is converted back to a domain SLAPolicy).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from reimbursement_kernel.db.base import Base, UTCDateTime
from reimbursement_kernel.domain.sla import SLAPolicy


class SLAPolicyModel(Base):
    """Persistent SLA policy."""

    __tablename__ = "sla_policies"

    __table_args__ = (
        CheckConstraint(
            "escalation_threshold_days <= approval_deadline_days",
            name="ck_sla_policies_threshold_within_deadline",
        ),
        CheckConstraint(
            "escalation_threshold_days > 0 AND approval_deadline_days > 0",
            name="ck_sla_policies_positive_days",
        ),
        Index("ix_sla_policies_department", "department_id", "effective_from"),
    )

    department_id: Mapped[str] = mapped_column(String(64), nullable=False)
    approval_deadline_days: Mapped[int] = mapped_column(Integer, nullable=False)
    escalation_threshold_days: Mapped[int] = mapped_column(Integer, nullable=False)
    max_reimbursement: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    effective_from: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    effective_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<SLAPolicy {self.id} department={self.department_id}>"

    def to_dto(self) -> SLAPolicy:
        return SLAPolicy(
            sla_id=self.id,
            department_id=self.department_id,
            approval_deadline_days=self.approval_deadline_days,
            escalation_threshold_days=self.escalation_threshold_days,
            max_reimbursement=self.max_reimbursement,
            effective_from=self.effective_from,
            effective_until=self.effective_until,
        )

    @classmethod
    def from_dto(cls, dto: SLAPolicy) -> SLAPolicyModel:
        return cls(
            id=dto.sla_id,
            department_id=dto.department_id,
            approval_deadline_days=dto.approval_deadline_days,
            escalation_threshold_days=dto.escalation_threshold_days,
            max_reimbursement=dto.max_reimbursement,
            effective_from=dto.effective_from,
            effective_until=dto.effective_until,
        )
