"""
core/db.py -- Engine construction and storage-error translation shared by the stores.

Uses SQLAlchemy Core so swapping SQLite for PostgreSQL is a connection string
change, not a rewrite. Both otp.store and sessions.store build their engine
here so SQLite gets the same WAL, threading and transaction setup everywhere.

storage_guard() is the single place where SQLAlchemy exceptions become
StorageUnavailable. Store methods wrap their bodies in it, so callers only
ever see LoginGuard's own error types -- a dropped connection or a lock
timeout must never be mistaken for "credential invalid".
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import StorageUnavailable

logger = logging.getLogger("loginguard.db")

_BEGIN_OPTION = "loginguard_begin"


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and hand transaction control to SQLAlchemy.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. With isolation_level=None pysqlite stops
    emitting its own deferred BEGIN, and _begin() below issues it instead.
    """
    dbapi_conn.isolation_level = None
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _begin(conn) -> None:
    conn.exec_driver_sql(conn.get_execution_options().get(_BEGIN_OPTION, "BEGIN"))


def create_store_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _configure_sqlite)
        event.listen(engine, "begin", _begin)
    return engine


@contextmanager
def write_transaction(engine: Engine) -> Iterator[Connection]:
    """Like engine.begin(), but holds the database write lock from the start.

    On SQLite the transaction opens with BEGIN IMMEDIATE, so a second writer
    (another store object, another process) waits for this one to commit
    before it can read. Other engines get a plain transaction and callers
    lock rows with SELECT ... FOR UPDATE.
    """
    with engine.connect() as conn:
        conn.execution_options(**{_BEGIN_OPTION: "BEGIN IMMEDIATE"})
        with conn.begin():
            yield conn


@contextmanager
def storage_guard(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy failures inside the block into StorageUnavailable."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Storage failure during %s: %s", operation, exc.__class__.__name__)
        raise StorageUnavailable(f"storage unavailable during {operation}") from exc
