"""
Engine and session management for the SQL stores.

One engine per process, set up by :func:`init_engine_from_url` from the
configured ``database_url``. PostgreSQL is the production backend and runs
at READ COMMITTED; the claim store's compare-and-set update is what keeps
concurrent transitions honest, not the isolation level. SQLite is accepted
for tests: an in-memory database is shared through a single connection so
every session sees the same schema.

Initialising an engine also installs the ORM listeners that refuse updates
and deletes of audit rows.
"""

import atexit
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from reimbursement_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


class _State:
    engine: Engine | None = None
    session_factory: sessionmaker[Session] | None = None


def _engine_options(url: URL, pool_size: int, max_overflow: int, pool_timeout: int) -> dict[str, Any]:
    if url.get_backend_name() == "sqlite":
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    return {
        "poolclass": QueuePool,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,
        "pool_timeout": pool_timeout,
        "pool_recycle": 1800,
        "isolation_level": "READ COMMITTED",
    }


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
) -> Engine:
    """Create the process engine; a second call replaces the first."""
    url = make_url(database_url)
    if _State.engine is not None:
        _State.engine.dispose()

    engine = create_engine(url, echo=echo, **_engine_options(url, pool_size, max_overflow, pool_timeout))
    _State.engine = engine
    _State.session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    from reimbursement_kernel.db.immutability import register_immutability_listeners

    register_immutability_listeners()

    configure_logging()
    logger.info("engine_initialized", extra={
        "dialect": url.get_backend_name(),
        "database": url.database,
        "echo": echo,
    })
    return engine


def get_engine() -> Engine:
    if _State.engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _State.engine


def get_session_factory() -> sessionmaker[Session]:
    if _State.session_factory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _State.session_factory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    One transaction: commit on normal exit, roll back and re-raise otherwise.

    ``factory`` defaults to the process session factory; the SQL stores pass
    their own so they can be pointed at any engine.
    """
    session = factory() if factory is not None else get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _metadata():
    from reimbursement_kernel.db.base import Base
    import reimbursement_kernel.models  # noqa: F401  (registers tables)

    return Base.metadata


def create_tables() -> None:
    """Create any missing kernel tables; existing tables are left alone."""
    metadata = _metadata()
    metadata.create_all(get_engine())
    logger.info("tables_created", extra={"tables": sorted(metadata.tables)})


def drop_tables() -> None:
    """Drop every kernel table. Tests only."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    if _State.engine is not None:
        _State.engine.dispose()
    _State.engine = None
    _State.session_factory = None


@atexit.register
def _dispose_at_exit() -> None:
    if _State.engine is None:
        return
    try:
        _State.engine.dispose()
    except SQLAlchemyError:
        logger.warning("engine_dispose_failed", exc_info=True)
