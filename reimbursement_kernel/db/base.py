"""
Module: reimbursement_kernel.db.base
Responsibility: Declarative base for all SQLAlchemy ORM models.  Provides the
    string primary key convention, the type annotation map for consistent
    column types, and the UTC-normalising datetime column type.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, storage/, services/, or outer layers.

Invariants enforced:
    - Opaque string primary keys: every model carries an ``id`` of at most 36
      characters, defaulting to a uuid4 string.
    - Decimal precision: Decimal maps to Numeric(38, 9).  NEVER use float for
      monetary amounts.
    - Datetimes are always returned timezone-aware in UTC, on every backend
      (SQLite drops tzinfo on storage; UTCDateTime restores it).

Failure modes:
    - ValueError on binding a naive datetime.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def new_id() -> str:
    """Generate an opaque identifier."""
    return str(uuid4())


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored in UTC.

    Contract:
        Binding requires an aware datetime; it is normalised to UTC.  On load
        a naive value (SQLite) is interpreted as UTC and an aware value
        (PostgreSQL) is converted to UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("UTCDateTime requires a timezone-aware datetime")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is a String(36) primary key, uuid4 string by default.
        - Decimal maps to Numeric(38, 9).
        - datetime maps to UTCDateTime -- always timezone-aware.
        - int maps to BigInteger -- safe for monotonic sequences.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        int: BigInteger,
    }

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_id,
    )
