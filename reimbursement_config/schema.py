"""
Reimbursement configuration schema.

Defines the human-authored configuration artifact: SLA policies per
department, escalation routing, and audit sink delivery settings.  YAML
configuration sets are parsed into these types by the loader.

The kernel never imports this package; ``reimbursement_services.bootstrap``
translates these definitions into kernel objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from reimbursement_kernel.domain.permissions import Role
from reimbursement_kernel.domain.sla import SLAPolicy

# ---------------------------------------------------------------------------
# SLA policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SLAPolicyDef:
    """One department's SLA policy as authored in YAML."""

    sla_id: str
    department_id: str
    approval_deadline_days: int
    escalation_threshold_days: int
    max_reimbursement: Decimal
    effective_from: datetime
    effective_until: datetime | None = None

    def to_policy(self) -> SLAPolicy:
        return SLAPolicy(
            sla_id=self.sla_id,
            department_id=self.department_id,
            approval_deadline_days=self.approval_deadline_days,
            escalation_threshold_days=self.escalation_threshold_days,
            max_reimbursement=self.max_reimbursement,
            effective_from=self.effective_from,
            effective_until=self.effective_until,
        )


# ---------------------------------------------------------------------------
# Escalation and audit delivery
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EscalationSettings:
    """Where breached claims are routed and who the automatic trigger acts as."""

    target_role: Role = Role.ESCALATION_AUTHORITY
    assignee_id: str = "escalation-authority-pool"
    system_actor_id: str = "system"


@dataclass(frozen=True)
class AuditSinkSettings:
    """Best-effort delivery of audit entries to a JSON-lines file.

    ``path`` of None disables the outbox.
    """

    path: str | None = None
    max_attempts: int = 5
    base_delay: float = 0.1
    max_delay: float = 5.0
    max_queue_size: int = 0


@dataclass(frozen=True)
class KernelConfig:
    """A complete, validated configuration set."""

    config_id: str
    version: int
    policies: tuple[SLAPolicyDef, ...]
    escalation: EscalationSettings = field(default_factory=EscalationSettings)
    audit_sink: AuditSinkSettings = field(default_factory=AuditSinkSettings)
    database_url: str | None = None
    checksum: str = ""

    def policy(self, sla_id: str) -> SLAPolicyDef | None:
        for p in self.policies:
            if p.sla_id == sla_id:
                return p
        return None
