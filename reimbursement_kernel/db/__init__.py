"""Database layer - engine, base classes, and immutability listeners."""

from reimbursement_kernel.db.base import Base, UTCDateTime, new_id
from reimbursement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)

__all__ = [
    "Base",
    "UTCDateTime",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "new_id",
    "reset_engine",
    "session_scope",
]
