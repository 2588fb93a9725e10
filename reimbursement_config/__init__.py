"""
reimbursement_config -- single public entrypoint for kernel configuration.

Responsibility:
    Provides the runtime way to obtain configuration through
    ``get_active_config()``.  Returns a frozen ``KernelConfig``.

Architecture position:
    Configuration -- YAML-driven settings.  Sits above
    ``reimbursement_kernel`` and below ``reimbursement_services``.  The
    kernel MUST NEVER import from ``reimbursement_config``.

Invariants enforced:
    - Every SLA policy passes validation (positive days, threshold not above
      deadline, unique ids) before a config is returned.
    - Deterministic: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` / ``KeyError`` -- validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``reimbursement_config_loaded`` log entry with the config id, version,
    checksum and policy count.
"""

from __future__ import annotations

import logging
from pathlib import Path

from reimbursement_config.loader import compute_checksum, load_config
from reimbursement_config.schema import (
    AuditSinkSettings,
    EscalationSettings,
    KernelConfig,
    SLAPolicyDef,
)

_logger = logging.getLogger("reimbursement_kernel.config")

# Default configuration set
DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> KernelConfig:
    """
    Load and validate the active configuration set.

    Args:
        config_path: Override path to a YAML configuration set.  Defaults to
            ``reimbursement_config/sets/default.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If validation fails.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = load_config(path)

    _logger.info(
        "reimbursement_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "policy_count": len(config.policies),
            "audit_sink_enabled": config.audit_sink.path is not None,
        },
    )
    return config


__all__ = [
    "AuditSinkSettings",
    "DEFAULT_CONFIG_PATH",
    "EscalationSettings",
    "KernelConfig",
    "SLAPolicyDef",
    "compute_checksum",
    "get_active_config",
]
