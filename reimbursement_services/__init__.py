"""
reimbursement_services -- Orchestration above the kernel.

Permission gate, identity boundary, workflow executor (the external
interface), escalation service, dashboards, timeline and bootstrap wiring.

Usage:
    from reimbursement_config import get_active_config
    from reimbursement_services import build_kernel, resolve_actor

    kernel = build_kernel(get_active_config())
    student = resolve_actor("u-1", "student", "dept-cs")
    claim = kernel.executor.submit({...}, student)
"""

from reimbursement_services.bootstrap import Kernel, Stores, build_kernel, memory_stores
from reimbursement_services.dashboard_service import AdminMetrics, ClaimView, DashboardService
from reimbursement_services.escalation_service import EscalationService, SweepReport
from reimbursement_services.identity import resolve_actor, resolve_role
from reimbursement_services.timeline import TimelineEntry, build_timeline
from reimbursement_services.workflow_executor import (
    GuardExecutor,
    WorkflowExecutor,
    default_guard_executor,
)

__all__ = [
    "AdminMetrics",
    "ClaimView",
    "DashboardService",
    "EscalationService",
    "GuardExecutor",
    "Kernel",
    "Stores",
    "SweepReport",
    "TimelineEntry",
    "WorkflowExecutor",
    "build_kernel",
    "build_timeline",
    "default_guard_executor",
    "memory_stores",
    "resolve_actor",
    "resolve_role",
]
