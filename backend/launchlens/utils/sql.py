"""Dialect helpers for atomic insert-or-update statements.

PostgreSQL runs in production and SQLite in tests; both support
`INSERT ... ON CONFLICT`, but through dialect-specific `insert` constructs.
"""

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def dialect_insert(db: Session, table):
    """Return an `insert(table)` that supports `on_conflict_do_*` for the session's dialect."""
    name = db.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upserts are not supported on dialect '{name}'")
