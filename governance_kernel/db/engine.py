"""
Module: governance_kernel.db.engine
Responsibility: SQLAlchemy engine construction, session factories and the
    transactional scope used by the SQL repositories.
Architecture position: Kernel > DB. May import from db/base.py and models/
    (create_tables only).

Invariants enforced:
    - No module-level engine: callers own the Engine and sessionmaker they
      create and pass them to the repositories explicitly.
    - Server databases and file-backed SQLite use a QueuePool, so every
      session (and every thread) gets its own connection and its own
      transaction. SQLite writers wait on the file lock for
      ``sqlite_busy_timeout`` seconds, which serializes the
      version-conditional UPDATEs of concurrent saves.
    - Only in-memory SQLite (tests) shares one StaticPool connection, so
      the database survives across sessions. It is not safe for concurrent
      writers.

Failure modes:
    - sqlalchemy.exc.ArgumentError for malformed URLs.
    - Connection pool exhaustion if pool_size + max_overflow is exceeded.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from governance_kernel.logging_config import get_logger

logger = get_logger("db.engine")


def is_memory_sqlite(url: URL) -> bool:
    """True for ``sqlite://``, ``sqlite:///:memory:`` and ``mode=memory`` URIs."""
    if url.get_backend_name() != "sqlite":
        return False
    database = url.database or ""
    return database in ("", ":memory:") or url.query.get("mode") == "memory"


def create_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 5,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """
    Build an Engine for a PostgreSQL or SQLite URL.

    Pool arguments apply to every database except in-memory SQLite.
    """
    url = make_url(database_url)
    connect_args: dict = {}
    if url.get_backend_name() == "sqlite":
        connect_args = {"check_same_thread": False, "timeout": sqlite_busy_timeout}

    if is_memory_sqlite(url):
        engine = create_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            connect_args=connect_args,
        )

    logger.info(
        "engine_created",
        extra={
            "backend": url.get_backend_name(),
            "database": url.database,
            "pool": type(engine.pool).__name__,
        },
    )
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, the session is committed and closed.
        On exception, it is rolled back and closed, and the exception is
        re-raised to the caller.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """Create every governance table that does not exist yet."""
    from governance_kernel.db.base import Base
    import governance_kernel.models  # noqa: F401  registers the tables

    Base.metadata.create_all(engine)
    logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})


def drop_tables(engine: Engine) -> None:
    from governance_kernel.db.base import Base
    import governance_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine)
