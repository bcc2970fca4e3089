"""Custom SQLAlchemy column types for multi-database compatibility."""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import JSON
from sqlalchemy.dialects import postgresql
from sqlalchemy.types import CHAR, TypeDecorator


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses the native ``UUID`` type in PostgreSQL and a 36-character string
    elsewhere. Values always come back as strings so identifiers can be
    compared with request parameters directly.
    """

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):  # type: ignore[override]
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.UUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value: Any, dialect):  # type: ignore[override]
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value)

    def process_result_value(self, value: Any, dialect):  # type: ignore[override]
        if value is None:
            return value
        return str(value)


class JSONDocument(TypeDecorator):
    """JSON column stored as ``JSONB`` in PostgreSQL.

    Invoice item metadata is queried by the idempotency scan, so PostgreSQL
    gets the indexable binary representation while SQLite keeps plain JSON.
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):  # type: ignore[override]
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.JSONB())
        return dialect.type_descriptor(JSON())


def new_uuid() -> str:
    """Default factory for ``GUID`` primary keys."""

    return str(uuid.uuid4())


def normalize_uuid(value: Any) -> str:
    """Return the canonical string form of an identifier or raise ``ValueError``."""

    if isinstance(value, uuid.UUID):
        return str(value)
    if not isinstance(value, str):
        raise ValueError("Identifier must be a UUID string")
    return str(uuid.UUID(value.strip()))
