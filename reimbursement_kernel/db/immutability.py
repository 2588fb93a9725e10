"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The audit log is the permanent record of every claim: the current-state
projection can be rebuilt from it, so it must never be edited.  Claims and
escalations are never deleted either, and a claim's submission timestamp and
SLA-derived due dates are fixed when it is submitted.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_update event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

If a check fails, we raise ImmutabilityViolationError and the transaction
is aborted.  Bulk ``UPDATE`` statements bypass mapper events; the SQL claim
store's compare-and-set only ever writes the mutable columns.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | Rule
----------------|----------------------------------------------------------
AuditLog        | ALWAYS immutable, never deleted
Claim           | Never deleted; write-once fields never change
Escalation      | Never deleted; identity fields never change

===============================================================================
USAGE
===============================================================================

Called automatically by ``init_engine_from_url``:

    from reimbursement_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY - never in production):

    from reimbursement_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from reimbursement_kernel.exceptions import ImmutabilityViolationError
from reimbursement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Column names, which match the Claim attribute names except for the key.
CLAIM_WRITE_ONCE_COLUMNS = frozenset({
    "user_id",
    "department_id",
    "sla_id",
    "submitted_at",
    "due_date",
    "escalation_due_date",
    "created_at",
})

ESCALATION_WRITE_ONCE_COLUMNS = frozenset({
    "claim_id",
    "escalated_at",
    "escalated_by",
    "escalated_to",
    "level",
    "reason",
})


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _changed_fields(target, fields: frozenset[str]) -> list[str]:
    insp = inspect(target)
    return sorted(
        attr.key for attr in insp.attrs
        if attr.key in fields and attr.history.has_changes()
    )


def _check_audit_log_immutability(mapper, connection, target):
    """Prevent any updates to audit log rows."""
    _blocked(
        "AuditLog", str(target.id), "UPDATE",
        "Audit log entries are immutable and cannot be modified",
    )


def _check_audit_log_delete(mapper, connection, target):
    """Prevent deletion of audit log rows."""
    _blocked(
        "AuditLog", str(target.id), "DELETE",
        "Audit log entries cannot be deleted",
    )


def _check_claim_immutability(mapper, connection, target):
    """
    Prevent changes to a claim's write-once fields.

    Status, decision metadata, attachments and version remain mutable; the
    claim service moves them only through the workflow table.
    """
    changed = _changed_fields(target, CLAIM_WRITE_ONCE_COLUMNS)
    if changed:
        _blocked(
            "Claim", str(target.id), "UPDATE",
            f"Cannot modify write-once field '{changed[0]}' on a claim",
            fields=changed,
        )


def _check_claim_delete(mapper, connection, target):
    """Claims are archived, never deleted."""
    _blocked("Claim", str(target.id), "DELETE", "Claims cannot be deleted")


def _check_escalation_immutability(mapper, connection, target):
    """Only resolution fields of an escalation may change."""
    changed = _changed_fields(target, ESCALATION_WRITE_ONCE_COLUMNS)
    if changed:
        _blocked(
            "Escalation", str(target.id), "UPDATE",
            f"Cannot modify field '{changed[0]}' on an escalation",
            fields=changed,
        )


def _check_escalation_delete(mapper, connection, target):
    _blocked("Escalation", str(target.id), "DELETE", "Escalations cannot be deleted")


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are left in place.
    """
    from reimbursement_kernel.models.audit_log import AuditLogModel
    from reimbursement_kernel.models.claim import ClaimModel
    from reimbursement_kernel.models.escalation import EscalationModel

    for target, event_name, listener_fn in _listeners(
        AuditLogModel, ClaimModel, EscalationModel,
    ):
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _listeners(audit_model, claim_model, escalation_model):
    return (
        (audit_model, "before_update", _check_audit_log_immutability),
        (audit_model, "before_delete", _check_audit_log_delete),
        (claim_model, "before_update", _check_claim_immutability),
        (claim_model, "before_delete", _check_claim_delete),
        (escalation_model, "before_update", _check_escalation_immutability),
        (escalation_model, "before_delete", _check_escalation_delete),
    )


def _safe_remove_listener(target, event_name, listener_fn):
    """
    Safely remove an event listener, ignoring if not registered.
    """
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    from reimbursement_kernel.models.audit_log import AuditLogModel
    from reimbursement_kernel.models.claim import ClaimModel
    from reimbursement_kernel.models.escalation import EscalationModel

    for target, event_name, listener_fn in _listeners(
        AuditLogModel, ClaimModel, EscalationModel,
    ):
        _safe_remove_listener(target, event_name, listener_fn)
