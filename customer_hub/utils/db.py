"""Database helpers shared by the identity and sync layers."""

from __future__ import annotations

from typing import Any, Callable

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

_UPSERT_INSERTS: dict[str, Callable[..., Any]] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_name(session: Session) -> str:
    return session.get_bind().dialect.name


def upsert_insert(session: Session, entity: Any):
    """
    Return the dialect's ``INSERT`` construct supporting ``ON CONFLICT``.

    Identity and cursor writes rely on the database's native conflict
    resolution, so only backends that provide it are accepted.
    """

    name = dialect_name(session)
    try:
        factory = _UPSERT_INSERTS[name]
    except KeyError:
        raise RuntimeError(f"ON CONFLICT upserts are not supported for database dialect '{name}'") from None
    return factory(entity)
