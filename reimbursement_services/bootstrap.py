"""
reimbursement_services.bootstrap -- Wire a kernel from configuration.

Responsibility:
    Build the stores (in-memory, or SQLAlchemy when a database URL is
    configured), the audit ledger with its optional outbox, and the
    services, all sharing one injected clock.  Seeds the SLA policy store
    from the configuration set, recording each new policy with an
    SLA_UPDATED audit entry by the system actor.

Architecture position:
    Services layer.  The only place ``reimbursement_config`` objects are
    turned into kernel objects.
"""

from __future__ import annotations

from dataclasses import dataclass

from reimbursement_config import KernelConfig
from reimbursement_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from reimbursement_kernel.domain.audit import AuditAction, AuditDraft
from reimbursement_kernel.domain.clock import Clock, SystemClock
from reimbursement_kernel.logging_config import get_logger
from reimbursement_kernel.services.audit_ledger import AuditLedger
from reimbursement_kernel.services.audit_outbox import AuditOutbox, JsonLinesAuditSink
from reimbursement_kernel.services.claim_service import ClaimService
from reimbursement_kernel.storage.base import (
    AuditStore,
    ClaimStore,
    EscalationStore,
    SLAPolicyStore,
)
from reimbursement_kernel.storage.memory import (
    InMemoryAuditStore,
    InMemoryClaimStore,
    InMemoryEscalationStore,
    InMemorySLAPolicyStore,
    InMemoryTransactions,
)
from reimbursement_kernel.storage.sql import (
    SqlAuditStore,
    SqlClaimStore,
    SqlEscalationStore,
    SqlSLAPolicyStore,
)
from reimbursement_services.dashboard_service import DashboardService
from reimbursement_services.escalation_service import EscalationService
from reimbursement_services.workflow_executor import WorkflowExecutor

logger = get_logger("services.bootstrap")

ENTITY_TYPE_SLA_POLICY = "SLAPolicy"


@dataclass
class Stores:
    claims: ClaimStore
    escalations: EscalationStore
    audit: AuditStore
    policies: SLAPolicyStore


@dataclass
class Kernel:
    """Everything a caller needs, wired."""

    config: KernelConfig
    clock: Clock
    stores: Stores
    ledger: AuditLedger
    outbox: AuditOutbox | None
    claims: ClaimService
    escalations: EscalationService
    executor: WorkflowExecutor
    dashboards: DashboardService

    def close(self) -> None:
        """Stop the outbox worker after delivering what is queued."""
        if self.outbox is not None:
            self.outbox.stop(drain=True)


def memory_stores() -> Stores:
    """In-memory stores sharing one lock and undo log."""
    transactions = InMemoryTransactions()
    return Stores(
        claims=InMemoryClaimStore(transactions),
        escalations=InMemoryEscalationStore(transactions),
        audit=InMemoryAuditStore(transactions),
        policies=InMemorySLAPolicyStore(transactions=transactions),
    )


def sql_stores(database_url: str) -> Stores:
    """SQLAlchemy-backed stores; creates the schema if missing."""
    init_engine_from_url(database_url)
    create_tables()
    factory = get_session_factory()
    return Stores(
        claims=SqlClaimStore(factory),
        escalations=SqlEscalationStore(factory),
        audit=SqlAuditStore(factory),
        policies=SqlSLAPolicyStore(factory),
    )


def sync_policies(config: KernelConfig, policies: SLAPolicyStore, ledger: AuditLedger) -> int:
    """
    Add configured policies missing from the store.  Returns the count added.

    Stored policies are never rewritten; a configured policy that differs
    from its stored version is logged and left alone.
    """
    added = 0
    system_actor = config.escalation.system_actor_id
    for definition in config.policies:
        policy = definition.to_policy()
        existing = policies.get(policy.sla_id)
        if existing is not None:
            if existing != policy:
                logger.warning(
                    "sla_policy_config_drift",
                    extra={"sla_id": policy.sla_id, "config_id": config.config_id},
                )
            continue
        with ledger.transaction():
            policies.add(policy)
            ledger.append(AuditDraft(
                action=AuditAction.SLA_UPDATED,
                entity_type=ENTITY_TYPE_SLA_POLICY,
                entity_id=policy.sla_id,
                user_id=system_actor,
                old_values=None,
                new_values=policy.to_wire(),
            ))
        added += 1
    logger.info(
        "sla_policies_synced",
        extra={"config_id": config.config_id, "added": added, "configured": len(config.policies)},
    )
    return added


def build_kernel(
    config: KernelConfig,
    *,
    clock: Clock | None = None,
    stores: Stores | None = None,
    start_outbox: bool = True,
) -> Kernel:
    """
    Wire every service from ``config``.

    ``stores`` overrides the store choice; otherwise SQL stores are used
    when ``config.database_url`` is set and in-memory stores when it is not.
    """
    clock = clock or SystemClock()
    if stores is None:
        stores = sql_stores(config.database_url) if config.database_url else memory_stores()

    outbox = None
    sink_settings = config.audit_sink
    if sink_settings.path is not None:
        outbox = AuditOutbox(
            JsonLinesAuditSink(sink_settings.path),
            max_attempts=sink_settings.max_attempts,
            base_delay=sink_settings.base_delay,
            max_delay=sink_settings.max_delay,
            max_queue_size=sink_settings.max_queue_size,
        )
        if start_outbox:
            outbox.start()

    ledger = AuditLedger(stores.audit, clock, outbox=outbox)
    sync_policies(config, stores.policies, ledger)

    claims = ClaimService(stores.claims, stores.policies, ledger, clock)
    escalations = EscalationService(
        stores.claims,
        stores.escalations,
        stores.policies,
        ledger,
        clock,
        assignee_id=config.escalation.assignee_id,
        system_actor_id=config.escalation.system_actor_id,
    )
    executor = WorkflowExecutor(claims, escalations, ledger, clock)
    dashboards = DashboardService(stores.claims, stores.policies, stores.escalations, clock)

    logger.info(
        "kernel_bootstrapped",
        extra={
            "config_id": config.config_id,
            "checksum": config.checksum,
            "claim_store": type(stores.claims).__name__,
            "outbox": outbox is not None,
        },
    )
    return Kernel(
        config=config,
        clock=clock,
        stores=stores,
        ledger=ledger,
        outbox=outbox,
        claims=claims,
        escalations=escalations,
        executor=executor,
        dashboards=dashboards,
    )
