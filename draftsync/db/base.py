"""SQLAlchemy engine construction and lifecycle.

The service targets PostgreSQL in production but supports SQLite for local
development and CI. No declarative models are defined here; this module only
manages the connection pool. The application factory builds one Engine at
startup, stores it on `app.state`, and disposes it at shutdown; nothing here
caches an engine at module scope.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

DEFAULT_DSN = "sqlite+pysqlite:///:memory:"


def _normalize_url(url: str) -> str:
    # Hosted Postgres providers hand out postgres:// URLs
    if url.startswith("postgres://"):
        return "postgresql+psycopg2://" + url[len("postgres://"):]
    return url


def build_engine(url: str | None = None) -> Engine:
    """Create an Engine for `url`.

    For SQLite in-memory URLs, use a StaticPool to keep a single connection
    alive across sessions and threads; checkouts of that connection are
    serialized so one thread's transaction never runs inside another's.
    File-backed SQLite gets a busy timeout so concurrent writers wait for the
    lock instead of failing immediately.
    """
    resolved_url = _normalize_url(url or DEFAULT_DSN)
    kwargs: Dict[str, Any] = {"future": True, "pool_pre_ping": True}
    is_sqlite = resolved_url.startswith("sqlite")
    in_memory = is_sqlite and ":memory:" in resolved_url
    if in_memory:
        kwargs.update({
            "poolclass": StaticPool,
            "pool_pre_ping": False,
            "connect_args": {"check_same_thread": False},
        })
    elif is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    engine = create_engine(resolved_url, **kwargs)
    if in_memory:
        _serialize_static_connection(engine)
    elif is_sqlite:
        _install_sqlite_transaction_hooks(engine)
    logger.info("db.engine_built dialect=%s", engine.dialect.name)
    return engine


def _serialize_static_connection(engine: Engine) -> None:
    """Hand the single in-memory connection to one thread at a time.

    The lock is held from pool checkout to checkin; the pool rolls back any
    open transaction before checkin fires.
    """
    lock = threading.RLock()

    @event.listens_for(engine, "checkout")
    def _acquire(dbapi_connection, connection_record, connection_proxy):  # type: ignore[no-untyped-def]
        lock.acquire()

    @event.listens_for(engine, "checkin")
    def _release(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        lock.release()


def _install_sqlite_transaction_hooks(engine: Engine) -> None:
    """Let SQLAlchemy own BEGIN so writes take the database lock up front.

    pysqlite otherwise defers BEGIN until the first DML statement, which lets
    two UPDATE-then-INSERT transactions interleave in ways PostgreSQL would
    serialize on the unique index.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def dispose_engine(engine: Engine | None) -> None:
    """Drain the connection pool; safe to call with None."""
    if engine is None:
        return
    engine.dispose()
    logger.info("db.engine_disposed")


__all__ = ["DEFAULT_DSN", "build_engine", "dispose_engine"]
