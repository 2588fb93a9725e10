"""
SQLAlchemy store implementations.

Each operation runs in its own transaction (``session_scope``) opened from
an injected session factory, unless a ``transaction()`` on the same factory
is open in the current context; then it joins that session, and the writes
commit or roll back together.  Driver and connection failures surface as
``PersistenceUnavailableError``; integrity violations are translated to the
typed conflict the protocol promises.

Claim compare-and-set is a single ``UPDATE ... WHERE id = :id AND
version = :expected`` whose rowcount decides the outcome, so two writers
holding the same version cannot both succeed.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Generator, Iterable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from reimbursement_kernel.db.engine import session_scope
from reimbursement_kernel.domain.audit import AuditFilter, AuditLogEntry
from reimbursement_kernel.domain.claim import Claim, ClaimStatus
from reimbursement_kernel.domain.escalation import Escalation
from reimbursement_kernel.domain.sla import SLAPolicy
from reimbursement_kernel.exceptions import (
    ClaimNotFoundError,
    DuplicateClaimError,
    DuplicateEscalationError,
    EscalationAlreadyResolvedError,
    EscalationNotFoundError,
    PersistenceUnavailableError,
    VersionConflictError,
)
from reimbursement_kernel.logging_config import get_logger
from reimbursement_kernel.models.audit_log import AuditLogModel
from reimbursement_kernel.models.claim import ClaimModel, mutable_columns
from reimbursement_kernel.models.escalation import EscalationModel
from reimbursement_kernel.models.sla_policy import SLAPolicyModel

logger = get_logger("storage.sql")

_unit_of_work: ContextVar[tuple[sessionmaker[Session], Session] | None] = ContextVar(
    "reimbursement_sql_unit_of_work", default=None,
)


class _SqlStore:
    """Shared transaction handling."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def _ambient_session(self) -> Session | None:
        active = _unit_of_work.get()
        if active is not None and active[0] is self._session_factory:
            return active[1]
        return None

    @contextmanager
    def _transaction(self, operation: str) -> Generator[Session, None, None]:
        ambient = self._ambient_session()
        try:
            if ambient is not None:
                yield ambient
            else:
                with session_scope(self._session_factory) as session:
                    yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error(
                "persistence_unavailable",
                extra={"operation": operation, "error": str(exc)},
            )
            raise PersistenceUnavailableError(operation, str(exc)) from exc

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """
        Run every store call on this session factory in one transaction.

        Nested calls join the outer transaction.  The session is bound to
        the current context only, so other threads keep their own.
        """
        if self._ambient_session() is not None:
            yield
            return
        with self._transaction("unit_of_work") as session:
            token = _unit_of_work.set((self._session_factory, session))
            try:
                yield
            finally:
                _unit_of_work.reset(token)


class SqlClaimStore(_SqlStore):

    def get(self, claim_id: str) -> Claim | None:
        with self._transaction("claim.get") as session:
            row = session.get(ClaimModel, claim_id)
            return row.to_dto() if row is not None else None

    def list(
        self,
        *,
        user_id: str | None = None,
        department_id: str | None = None,
        statuses: Iterable[ClaimStatus] | None = None,
    ) -> list[Claim]:
        stmt = select(ClaimModel)
        if user_id is not None:
            stmt = stmt.where(ClaimModel.user_id == user_id)
        if department_id is not None:
            stmt = stmt.where(ClaimModel.department_id == department_id)
        if statuses is not None:
            stmt = stmt.where(ClaimModel.status.in_([s.value for s in statuses]))
        stmt = stmt.order_by(ClaimModel.submitted_at, ClaimModel.id)
        with self._transaction("claim.list") as session:
            return [row.to_dto() for row in session.scalars(stmt)]

    def add(self, claim: Claim) -> Claim:
        try:
            with self._transaction("claim.add") as session:
                if session.get(ClaimModel, claim.claim_id) is not None:
                    raise DuplicateClaimError(claim.claim_id)
                session.add(ClaimModel.from_dto(claim))
                session.flush()
        except IntegrityError as exc:
            raise DuplicateClaimError(claim.claim_id) from exc
        return claim

    def compare_and_set(
        self, claim_id: str, expected_version: int, updated: Claim,
    ) -> Claim:
        if updated.claim_id != claim_id:
            raise ValueError("compare_and_set cannot change a claim's id")
        stmt = (
            update(ClaimModel)
            .where(ClaimModel.id == claim_id, ClaimModel.version == expected_version)
            .values(**mutable_columns(updated))
            .execution_options(synchronize_session=False)
        )
        with self._transaction("claim.compare_and_set") as session:
            result = session.execute(stmt)
            if result.rowcount == 1:
                return updated
            actual = session.scalar(
                select(ClaimModel.version).where(ClaimModel.id == claim_id)
            )
        if actual is None:
            raise ClaimNotFoundError(claim_id)
        raise VersionConflictError(claim_id, expected_version, actual)


def _open_for_claim(claim_id: str):
    return select(EscalationModel).where(
        EscalationModel.claim_id == claim_id,
        EscalationModel.resolved_at.is_(None),
    )


class SqlEscalationStore(_SqlStore):

    def get(self, escalation_id: str) -> Escalation | None:
        with self._transaction("escalation.get") as session:
            row = session.get(EscalationModel, escalation_id)
            return row.to_dto() if row is not None else None

    def find_open(self, claim_id: str) -> Escalation | None:
        with self._transaction("escalation.find_open") as session:
            row = session.scalars(_open_for_claim(claim_id)).first()
            return row.to_dto() if row is not None else None

    def list_for_claim(self, claim_id: str) -> list[Escalation]:
        stmt = (
            select(EscalationModel)
            .where(EscalationModel.claim_id == claim_id)
            .order_by(EscalationModel.escalated_at, EscalationModel.level)
        )
        with self._transaction("escalation.list_for_claim") as session:
            return [row.to_dto() for row in session.scalars(stmt)]

    def list_open(self) -> list[Escalation]:
        stmt = (
            select(EscalationModel)
            .where(EscalationModel.resolved_at.is_(None))
            .order_by(EscalationModel.escalated_at)
        )
        with self._transaction("escalation.list_open") as session:
            return [row.to_dto() for row in session.scalars(stmt)]

    def add(self, escalation: Escalation) -> Escalation:
        try:
            with self._transaction("escalation.add") as session:
                if escalation.is_open:
                    existing = session.scalars(
                        _open_for_claim(escalation.claim_id)
                    ).first()
                    if existing is not None:
                        raise DuplicateEscalationError(
                            escalation.claim_id, existing.to_dto().escalation_id,
                        )
                session.add(EscalationModel.from_dto(escalation))
                session.flush()
        except IntegrityError as exc:
            # a failed flush poisons a shared session; leave the lookup to the caller
            existing = (
                self.find_open(escalation.claim_id)
                if self._ambient_session() is None else None
            )
            if existing is None:
                raise PersistenceUnavailableError("escalation.add", str(exc)) from exc
            raise DuplicateEscalationError(
                escalation.claim_id, existing.escalation_id,
            ) from exc
        return escalation

    def resolve(
        self, escalation_id: str, resolution: str, resolved_at: datetime,
    ) -> Escalation:
        with self._transaction("escalation.resolve") as session:
            row = session.get(EscalationModel, escalation_id)
            if row is None:
                raise EscalationNotFoundError(escalation_id)
            if row.resolved_at is not None:
                raise EscalationAlreadyResolvedError(escalation_id)
            row.resolution = resolution
            row.resolved_at = resolved_at
            session.flush()
            return row.to_dto()


class SqlAuditStore(_SqlStore):

    def last(self) -> AuditLogEntry | None:
        stmt = select(AuditLogModel).order_by(AuditLogModel.seq.desc()).limit(1)
        with self._transaction("audit.last") as session:
            row = session.scalars(stmt).first()
            return row.to_dto() if row is not None else None

    def insert(self, entry: AuditLogEntry) -> AuditLogEntry:
        try:
            with self._transaction("audit.insert") as session:
                session.add(AuditLogModel.from_dto(entry))
                session.flush()
        except IntegrityError as exc:
            raise PersistenceUnavailableError(
                "audit.insert", f"sequence {entry.seq} already taken",
            ) from exc
        return entry

    def all(self) -> list[AuditLogEntry]:
        stmt = select(AuditLogModel).order_by(AuditLogModel.seq)
        with self._transaction("audit.all") as session:
            return [row.to_dto() for row in session.scalars(stmt)]

    def query(self, audit_filter: AuditFilter) -> list[AuditLogEntry]:
        stmt = select(AuditLogModel)
        if audit_filter.claim_id is not None:
            stmt = stmt.where(AuditLogModel.claim_id == audit_filter.claim_id)
        if audit_filter.entity_type is not None:
            stmt = stmt.where(AuditLogModel.entity_type == audit_filter.entity_type)
        if audit_filter.entity_id is not None:
            stmt = stmt.where(AuditLogModel.entity_id == audit_filter.entity_id)
        if audit_filter.user_id is not None:
            stmt = stmt.where(AuditLogModel.user_id == audit_filter.user_id)
        if audit_filter.actions is not None:
            stmt = stmt.where(
                AuditLogModel.action.in_([a.value for a in audit_filter.actions])
            )
        if audit_filter.since is not None:
            stmt = stmt.where(AuditLogModel.timestamp >= audit_filter.since)
        if audit_filter.until is not None:
            stmt = stmt.where(AuditLogModel.timestamp < audit_filter.until)
        stmt = stmt.order_by(AuditLogModel.timestamp, AuditLogModel.seq)
        with self._transaction("audit.query") as session:
            return [row.to_dto() for row in session.scalars(stmt)]


class SqlSLAPolicyStore(_SqlStore):

    def get(self, sla_id: str) -> SLAPolicy | None:
        with self._transaction("sla_policy.get") as session:
            row = session.get(SLAPolicyModel, sla_id)
            return row.to_dto() if row is not None else None

    def list(self, *, department_id: str | None = None) -> list[SLAPolicy]:
        stmt = select(SLAPolicyModel)
        if department_id is not None:
            stmt = stmt.where(SLAPolicyModel.department_id == department_id)
        stmt = stmt.order_by(SLAPolicyModel.department_id, SLAPolicyModel.effective_from)
        with self._transaction("sla_policy.list") as session:
            return [row.to_dto() for row in session.scalars(stmt)]

    def add(self, policy: SLAPolicy) -> SLAPolicy:
        try:
            with self._transaction("sla_policy.add") as session:
                session.add(SLAPolicyModel.from_dto(policy))
                session.flush()
        except IntegrityError as exc:
            raise ValueError(f"SLA policy already exists: {policy.sla_id}") from exc
        return policy
