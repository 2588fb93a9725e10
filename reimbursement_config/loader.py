"""
Configuration Loader (``reimbursement_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into typed
``reimbursement_config.schema`` dataclass instances.  Runtime callers go
through ``reimbursement_config.get_active_config()`` instead.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* ``escalation_threshold_days <= approval_deadline_days``; both positive.
* Policy ids are unique within a set.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from reimbursement_config.schema import (
    AuditSinkSettings,
    EscalationSettings,
    KernelConfig,
    SLAPolicyDef,
)
from reimbursement_kernel.domain.permissions import Role


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a timestamp from YAML.

    Dates become midnight UTC; naive datetimes are taken as UTC.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time.min)
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Cannot parse timestamp from {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_amount(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Cannot parse amount from {value!r}") from None


def parse_policy(data: dict[str, Any]) -> SLAPolicyDef:
    """Parse an ``SLAPolicyDef`` from a dict and validate its day counts."""
    policy = SLAPolicyDef(
        sla_id=str(data["id"]),
        department_id=str(data["department_id"]),
        approval_deadline_days=int(data["approval_deadline_days"]),
        escalation_threshold_days=int(data["escalation_threshold_days"]),
        max_reimbursement=_parse_amount(data["max_reimbursement"]),
        effective_from=parse_timestamp(data["effective_from"]),
        effective_until=(
            parse_timestamp(data["effective_until"])
            if data.get("effective_until") else None
        ),
    )
    if policy.approval_deadline_days <= 0:
        raise ValueError(f"Policy {policy.sla_id}: approval_deadline_days must be positive")
    if policy.escalation_threshold_days <= 0:
        raise ValueError(f"Policy {policy.sla_id}: escalation_threshold_days must be positive")
    if policy.escalation_threshold_days > policy.approval_deadline_days:
        raise ValueError(
            f"Policy {policy.sla_id}: escalation_threshold_days "
            f"({policy.escalation_threshold_days}) exceeds approval_deadline_days "
            f"({policy.approval_deadline_days})"
        )
    if policy.max_reimbursement <= 0:
        raise ValueError(f"Policy {policy.sla_id}: max_reimbursement must be positive")
    if (
        policy.effective_until is not None
        and policy.effective_until <= policy.effective_from
    ):
        raise ValueError(f"Policy {policy.sla_id}: effective_until must be after effective_from")
    return policy


def parse_escalation(data: dict[str, Any]) -> EscalationSettings:
    defaults = EscalationSettings()
    return EscalationSettings(
        target_role=Role(data.get("target_role", defaults.target_role.value)),
        assignee_id=str(data.get("assignee_id", defaults.assignee_id)),
        system_actor_id=str(data.get("system_actor_id", defaults.system_actor_id)),
    )


def parse_audit_sink(data: dict[str, Any]) -> AuditSinkSettings:
    defaults = AuditSinkSettings()
    settings = AuditSinkSettings(
        path=data.get("path"),
        max_attempts=int(data.get("max_attempts", defaults.max_attempts)),
        base_delay=float(data.get("base_delay", defaults.base_delay)),
        max_delay=float(data.get("max_delay", defaults.max_delay)),
        max_queue_size=int(data.get("max_queue_size", defaults.max_queue_size)),
    )
    if settings.max_attempts <= 0:
        raise ValueError("audit_sink.max_attempts must be positive")
    return settings


def parse_config(data: dict[str, Any]) -> KernelConfig:
    """
    Parse a whole configuration set.

    Raises:
        KeyError: missing ``config_id`` or a required policy key.
        ValueError: invalid values or duplicate policy ids.
    """
    policies = tuple(parse_policy(p) for p in data.get("sla_policies", []))
    seen: set[str] = set()
    for p in policies:
        if p.sla_id in seen:
            raise ValueError(f"Duplicate SLA policy id: {p.sla_id}")
        seen.add(p.sla_id)

    return KernelConfig(
        config_id=str(data["config_id"]),
        version=int(data.get("version", 1)),
        policies=policies,
        escalation=parse_escalation(data.get("escalation") or {}),
        audit_sink=parse_audit_sink(data.get("audit_sink") or {}),
        database_url=data.get("database_url"),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> KernelConfig:
    return parse_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
