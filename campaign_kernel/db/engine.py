"""
Engine and session management for the off-chain store.

PostgreSQL (psycopg2) in production, SQLite for local runs and tests.

Concurrency notes:
    - PostgreSQL connections run at READ COMMITTED.  A compare-and-set
      ``UPDATE ... WHERE status = :read_status`` is re-evaluated against the
      latest committed row at that level, so of two racing writers exactly
      one matches.
    - SQLite connections get WAL and a busy timeout: readers never block the
      writer, and a second writer waits instead of failing immediately.

Services that talk to the ledger take a sessionmaker (``get_session_factory``)
rather than a session and wrap each step in ``session_scope(factory)``, so
no transaction stays open across an RPC.  The CLI initializes the
process-wide engine once with ``init_engine_from_url``; tests build their
own engine with ``build_engine`` and never touch the module state.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from campaign_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _install_sqlite_pragmas(engine: Engine, busy_timeout_ms: int) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.close()


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 5,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout_ms: int = 10_000,
) -> Engine:
    """Create an engine for ``database_url`` without touching module state."""
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            url,
            echo=echo,
            pool_pre_ping=True,
            connect_args={
                "check_same_thread": False,
                "timeout": sqlite_busy_timeout_ms / 1000,
            },
        )
        _install_sqlite_pragmas(engine, sqlite_busy_timeout_ms)
        return engine

    return create_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    **engine_options,
) -> Engine:
    """
    Build the process-wide engine and session factory.

    A second call replaces the first.  Sessions from the factory keep
    attribute values after commit (``expire_on_commit=False``) so DTOs can
    be built from rows after their transaction closed.
    """
    global _engine, _SessionFactory

    _engine = build_engine(database_url, echo=echo, pool_size=pool_size, **engine_options)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "pool_size": pool_size, "echo": echo},
    )
    return _engine


def _not_initialized() -> RuntimeError:
    return RuntimeError("database engine not initialized; call init_engine_from_url() first")


def get_engine() -> Engine:
    if _engine is None:
        raise _not_initialized()
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise _not_initialized()
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    One transaction: commit on normal exit, roll back and re-raise on error.

    ``factory`` defaults to the process-wide one.  A compare-and-set write
    and its audit event issued inside one scope commit together.
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


def create_tables(engine: Engine | None = None) -> None:
    """Create the submissions and audit_events tables if missing."""
    from campaign_kernel.db.base import Base
    import campaign_kernel.models  # noqa: F401  (registers tables)

    target = engine or get_engine()
    Base.metadata.create_all(target)
    logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})


def drop_tables(engine: Engine | None = None) -> None:
    """Drop all kernel tables. For tests."""
    from campaign_kernel.db.base import Base
    import campaign_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose the process-wide engine. For tests."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None
