"""Dialect-aware INSERT ... ON CONFLICT constructs."""

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def dialect_insert(db: Session, model: Any) -> Any:
    """
    Return an INSERT for ``model`` that supports ``on_conflict_do_update``.

    PostgreSQL and SQLite expose the same upsert API (``excluded``,
    ``index_elements``, ``set_``), so callers write one statement for both.

    Raises:
        NotImplementedError: If the bound dialect has no upsert support
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert is not supported for dialect '{dialect}'")
