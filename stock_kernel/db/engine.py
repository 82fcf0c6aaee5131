"""
Module: stock_kernel.db.engine
Responsibility: Engine and session factory for the stock database, plus
    schema setup (tables, immutability triggers) and a commit/rollback scope.
Architecture position: Kernel > DB.  Models, listeners and triggers are
    imported lazily so that importing the engine never drags in the ORM.

Backends:
    - PostgreSQL (production): READ COMMITTED, pooled.  Concurrent writers
      are serialized by FOR UPDATE on order rows and by the atomic
      ``quantity_on_hand = quantity_on_hand + :q`` balance update.
    - SQLite (tests, local use): pysqlite's implicit transactions are
      disabled so SAVEPOINT works for lazy balance-row creation, and
      foreign keys are switched on.  ``sqlite://`` shares one connection.

Failure modes:
    - RuntimeError from every accessor before init_engine_from_url().
    - OperationalError if trigger installation still deadlocks after retries.
"""

import atexit
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from stock_kernel.logging_config import configure_logging, get_logger

if TYPE_CHECKING:
    from stock_config.schema import DatabaseConfig

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_TRIGGER_INSTALL_ATTEMPTS = 3


def _sqlite_engine(database_url: str, echo: bool) -> Engine:
    url = make_url(database_url)
    kwargs: dict = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, echo=echo, **kwargs)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the process-wide engine and session factory.

    Pool arguments apply to PostgreSQL only.  A second call without
    reset_engine() replaces the first engine.  ORM immutability listeners
    are registered and structured logging is installed (at its current
    level) as a side effect.
    """
    global _engine, _SessionFactory

    if make_url(database_url).get_backend_name() == "sqlite":
        _engine = _sqlite_engine(database_url, echo)
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    from stock_kernel.db.immutability import register_immutability_listeners

    register_immutability_listeners()
    configure_logging()

    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )
    return _engine


def init_engine_from_config(config: "DatabaseConfig") -> Engine:
    """Create the engine from the ``database`` section of a StockConfig."""
    return init_engine_from_url(
        config.url,
        echo=config.echo,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_timeout=config.pool_timeout,
    )


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """One factory for the process; each thread creates its own Session from it."""
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Commit on success, roll back on error, always close.

    The FulfillmentEngine owns its own commit/rollback; this scope is for
    callers doing catalog or order maintenance outside it.

    Usage:
        with session_scope() as session:
            BomResolver(session).add_component(parent_id, component_id, 2)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _install_triggers(engine: Engine) -> None:
    """Install PostgreSQL triggers, retrying when parallel test workers deadlock."""
    from stock_kernel.db.triggers import install_immutability_triggers

    for attempt in range(1, _TRIGGER_INSTALL_ATTEMPTS + 1):
        try:
            install_immutability_triggers(engine)
            return
        except OperationalError as exc:
            if "deadlock" not in str(exc).lower() or attempt == _TRIGGER_INSTALL_ATTEMPTS:
                raise
            logger.warning(
                "trigger_install_deadlock_retry",
                extra={"attempt": attempt, "max_attempts": _TRIGGER_INSTALL_ATTEMPTS},
            )
            engine.dispose()
            time.sleep(0.5 * attempt)


def create_tables(install_triggers: bool = True) -> None:
    """
    Create every stock table; on PostgreSQL also install the triggers that
    reject UPDATE/DELETE on movements and reopening of fulfilled orders.
    """
    from stock_kernel.db.base import Base
    import stock_kernel.models  # noqa: F401  (registers tables on Base.metadata)

    engine = get_engine()
    Base.metadata.create_all(engine)
    logger.info("tables_created", extra={"table_count": len(Base.metadata.sorted_tables)})

    if install_triggers and is_postgres():
        _install_triggers(engine)


def drop_tables() -> None:
    """Drop triggers and tables.  Tests and local resets only."""
    from stock_kernel.db.base import Base
    import stock_kernel.models  # noqa: F401

    engine = get_engine()
    if is_postgres():
        from stock_kernel.db.triggers import uninstall_immutability_triggers

        uninstall_immutability_triggers(engine)
    Base.metadata.drop_all(engine)


def reset_engine() -> None:
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
