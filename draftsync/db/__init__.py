"""Database bootstrap utilities for the draft synchronization service.

This module exposes convenience imports for engine construction and the
migrations runner that applies SQL files shipped beside it. The DB layer is
intentionally minimal and does not leak ORM models into route handlers.
"""

from draftsync.db.base import build_engine, dispose_engine
from draftsync.db.migrations_runner import apply_migrations

__all__ = [
    "build_engine",
    "dispose_engine",
    "apply_migrations",
]
