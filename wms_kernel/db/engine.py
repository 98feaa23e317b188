"""
Engine and session management for the snapshot store.

One process-wide engine, created by ``init_engine_from_url``.  Callers work
inside ``session_scope()``, which commits on success and rolls back on any
exception.

Backends:
    postgresql://...   QueuePool, READ COMMITTED.  Concurrent writers are
                       separated by the ``version`` column on PO and
                       shipment headers, not by isolation level.
    sqlite://          StaticPool with one shared connection, so an
                       in-memory database is visible to every session.
                       Used by the test suite.

Calling any helper before ``init_engine_from_url`` raises RuntimeError.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from wms_kernel.db.base import Base
from wms_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_sessions: sessionmaker[Session] | None = None


def _build_engine(database_url: str, echo: bool, pool_size: int) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        return create_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=pool_size // 2,
        pool_pre_ping=True,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(database_url: str, *, echo: bool = False, pool_size: int = 20) -> Engine:
    """Create (or replace) the process engine and its session factory."""
    global _engine, _sessions
    if _engine is not None:
        _engine.dispose()
    _engine = _build_engine(database_url, echo, pool_size)
    _sessions = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    if _sessions is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _sessions()


@contextmanager
def session_scope() -> Iterator[Session]:
    """One transaction: commit on clean exit, roll back and re-raise otherwise."""
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.warning(
            "transaction_rolled_back",
            extra={"error": type(exc).__name__, "error_code": getattr(exc, "code", None)},
        )
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every table registered on ``Base.metadata``.

    ORM modules register their tables on import; use
    ``wms_modules._orm_registry.create_all_tables`` for the full schema.
    """
    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _sessions
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _sessions = None
