"""Lightweight SQL migrations runner.

Applies .sql files in lexical order from the dialect's migrations directory
(`migrations/` for PostgreSQL, `sqlite_migrations/` for SQLite) shipped
beside this module. Skips rollback files and records applied filenames in a
`schema_migrations` journal table to avoid reapplying the same migration.
Intended for local development and CI; production environments may run the
same files through the platform's migration mechanism.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

from sqlalchemy import text as sql_text
from sqlalchemy.engine import Connection, Engine

from draftsync.logic.timestamps import format_timestamp

logger = logging.getLogger(__name__)

_HERE = Path(__file__).resolve().parent


def default_migrations_dir(engine: Engine) -> Path:
    name = (getattr(engine.dialect, "name", "") or "").lower()
    return _HERE / ("sqlite_migrations" if "sqlite" in name else "migrations")


def _iter_sql_files(root: Path) -> Iterable[Path]:
    for p in sorted(root.glob("*.sql")):
        # Skip rollback scripts in forward runs
        if "rollback" in p.name.lower():
            continue
        yield p


def _split_statements(sql: str) -> list[str]:
    """Split a script on ';' after dropping full-line comments."""
    lines = [ln for ln in sql.splitlines() if not ln.strip().startswith("--")]
    statements = []
    for stmt in "\n".join(lines).split(";"):
        s = stmt.strip()
        if not s or s.upper() in {"BEGIN", "COMMIT", "END"}:
            continue
        statements.append(s)
    return statements


def _exec_sql_compat(conn: Connection, sql: str) -> None:
    """Execute SQL text, tolerating multi-statement files on SQLite.

    SQLite's DB-API (pysqlite) does not allow multiple statements in a single
    execute() call, so statements are issued one by one. Other dialects
    receive the full script as-is.
    """
    name = (getattr(conn.dialect, "name", "") or "").lower()
    if "sqlite" in name:
        for stmt in _split_statements(sql):
            conn.exec_driver_sql(stmt)
        return
    conn.exec_driver_sql(sql)


def _ensure_journal(conn: Connection) -> set[str]:
    conn.exec_driver_sql(
        "CREATE TABLE IF NOT EXISTS schema_migrations ("
        "filename TEXT PRIMARY KEY, applied_at TEXT NOT NULL)"
    )
    rows = conn.execute(sql_text("SELECT filename FROM schema_migrations")).fetchall()
    return {str(r[0]) for r in rows}


def apply_migrations(engine: Engine, migrations_dir: str | os.PathLike[str] | None = None) -> list[str]:
    """Apply pending migrations; return the filenames applied in this run."""
    root = Path(migrations_dir) if migrations_dir is not None else default_migrations_dir(engine)
    if not root.exists():
        logger.warning("migrations_dir_missing path=%s", str(root))
        return []

    applied_now: list[str] = []
    with engine.begin() as conn:
        applied = _ensure_journal(conn)
        for sql_path in _iter_sql_files(root):
            fname = sql_path.name
            if fname in applied:
                continue
            sql = sql_path.read_text(encoding="utf-8")
            if not sql.strip():
                continue
            _exec_sql_compat(conn, sql)
            conn.execute(
                sql_text("INSERT INTO schema_migrations (filename, applied_at) VALUES (:f, :at)"),
                {"f": fname, "at": format_timestamp()},
            )
            applied_now.append(fname)
            logger.info("migration_applied file=%s", fname)
    return applied_now


__all__ = ["apply_migrations", "default_migrations_dir"]
