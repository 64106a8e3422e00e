"""
Module: payables_kernel.db.engine
Responsibility: Owns the process-wide SQLAlchemy engine and session factory
    used by the SQL budget-line store, plus the commit-or-rollback
    ``session_scope`` every store operation runs inside.
Architecture position: Kernel > DB.  Services reach the database only
    through ``get_session_factory`` and ``session_scope``.

Invariants enforced:
    - ``sqlite://`` and ``sqlite:///:memory:`` URLs run on a single shared
      connection so the schema created by ``create_tables`` is visible to
      every session and every thread.
    - A scope either commits everything written in it or nothing.

Failure modes:
    - RuntimeError from any accessor before ``init_engine_from_url``.
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from payables_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")


@dataclass
class _Database:
    engine: Engine
    sessions: sessionmaker[Session]


_current: _Database | None = None


def _require() -> _Database:
    if _current is None:
        raise RuntimeError("Database not initialized. Call init_engine_from_url() first.")
    return _current


def _engine_options(database_url: str, pool_pre_ping: bool) -> dict:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": pool_pre_ping}


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_pre_ping: bool = True,
) -> Engine:
    """
    Create the engine for ``database_url`` and make it current.

    A previous engine is disposed first.
    """
    global _current
    reset_engine()

    engine = create_engine(database_url, echo=echo, **_engine_options(database_url, pool_pre_ping))
    _current = _Database(engine, sessionmaker(bind=engine, expire_on_commit=False))

    configure_logging()
    logger.info(
        "database_engine_ready",
        extra={"dialect": engine.dialect.name, "pool": type(engine.pool).__name__},
    )
    return engine


def get_engine() -> Engine:
    return _require().engine


def get_session_factory() -> sessionmaker[Session]:
    return _require().sessions


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """
    Yield a session that commits on clean exit and rolls back on error.

    ``factory`` defaults to the current engine's session factory.
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("session_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create the budget line, monthly balance and history tables."""
    import payables_kernel.models  # noqa: F401
    from payables_kernel.db.base import Base

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    import payables_kernel.models  # noqa: F401
    from payables_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the current engine, if any. Used between tests."""
    global _current
    if _current is not None:
        _current.engine.dispose()
        _current = None


atexit.register(reset_engine)
