"""
DocVault Database Session Management.

Provides the single entry point for database initialisation plus
context managers for transactional work:

- init_db():       build the engine + sessionmaker (optionally create tables)
- session_scope(): unit of work with auto-commit/rollback
- atomic():        transaction, or savepoint when one is already open
- storage_errors(): re-raise engine failures as StorageFailureError
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from docvault.db.base import Base
from docvault.engine.errors import StorageFailureError

logger = logging.getLogger("docvault.db.session")


def _is_sqlite(db_url: str) -> bool:
    return db_url.startswith("sqlite")


def _is_memory_sqlite(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:")


def _configure_sqlite(engine: Engine) -> None:
    """
    Register connection listeners for SQLite.

    pysqlite's own transaction handling breaks SAVEPOINT, so it is disabled
    and every transaction is opened explicitly with BEGIN IMMEDIATE. Writers
    then take the database lock up front and concurrent share-link
    redemptions queue behind each other instead of failing mid-transaction.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(
    db_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
) -> Engine:
    """Create an engine for ``db_url`` with dialect-appropriate pooling."""
    kwargs: Dict[str, Any] = {"echo": echo}

    if _is_sqlite(db_url):
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": pool_timeout}
        if _is_memory_sqlite(db_url):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(db_url, **kwargs)
        _configure_sqlite(engine)
        return engine

    return create_engine(
        db_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
        **kwargs,
    )


def init_db(
    db_url: str,
    create_tables: bool = False,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
) -> sessionmaker:
    """
    Single entry point for database initialisation.

    All callers (CLI, embedding applications, tests) go through this
    function.

    Args:
        db_url:        SQLAlchemy connection URL.
        create_tables: When True, run Base.metadata.create_all(). Use for
                       ``docvault init-db`` and tests only.
        echo:          Log emitted SQL.
        pool_*:        Pool settings (ignored for SQLite).

    Returns:
        A ``sessionmaker`` bound to the initialised engine.
    """
    # Models must be imported so their tables are registered on Base.metadata
    from docvault.db import models  # noqa: F401

    engine = create_db_engine(
        db_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
    )

    if create_tables:
        Base.metadata.create_all(engine)
        logger.info("Created DocVault tables")

    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for DB sessions with auto-commit/rollback.

    Usage:
        with session_scope(factory) as session:
            page = QueryComposer(session).search(criteria, requester_id=4)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def atomic(session: Session) -> Generator[Session, None, None]:
    """
    Run a block as one atomic unit.

    Opens a transaction that commits on exit, or a savepoint when the
    session already has a transaction in progress (the outer unit of work
    then owns the commit). Any exception rolls the unit back and propagates.
    """
    if session.in_transaction():
        with session.begin_nested():
            yield session
    else:
        with session.begin():
            yield session


@contextmanager
def storage_errors(operation: str, **context: Any) -> Generator[None, None, None]:
    """
    Re-raise SQLAlchemy failures inside the block as StorageFailureError.

    Usage:
        with storage_errors("search"):
            total = session.execute(count_query).scalar_one()
    """
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"{operation} failed: {e}")
        raise StorageFailureError(f"{operation} failed: {e}", operation=operation, **context) from e
