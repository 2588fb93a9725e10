"""
Hashing for the audit chain.

The same entry must hash identically on every process and every backend,
so values are rendered to one canonical JSON text before digesting: keys
sorted, no whitespace, Decimals normalized (``120.50`` and ``120.5`` hash
alike), timestamps in ISO 8601, enums by value.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_MARKER = "GENESIS"
CHAIN_SEPARATOR = "|"


def _canonical_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value.normalize())
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    raise TypeError(f"Cannot canonicalize {type(value).__name__}")


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_canonical_default)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict | None) -> str:
    """SHA-256 of the canonical JSON of ``payload`` (``{}`` when None)."""
    return sha256_hex(canonicalize_json(payload or {}))


def hash_audit_entry(
    entity_type: str,
    entity_id: str,
    action: str,
    timestamp: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Chain hash of one ledger entry.

    ``prev_hash`` is None only for the first entry of the ledger, which
    links to :data:`GENESIS_MARKER` instead.
    """
    return sha256_hex(CHAIN_SEPARATOR.join((
        entity_type,
        str(entity_id),
        action,
        timestamp,
        payload_hash,
        prev_hash or GENESIS_MARKER,
    )))
