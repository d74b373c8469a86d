from datetime import datetime
from typing import Optional
from sqlalchemy import DateTime
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.types import TypeDecorator
from storefront.common.utils import as_utc


def _normalize_db_url(url: str | None) -> str | None:
    # hosted postgres often hands out "postgres://..." ; asyncpg/SQLAlchemy needs "postgresql+asyncpg://..."
    if not url:
        return None
    if url.startswith("postgres://",):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


class TZDateTime(TypeDecorator):
    """timezone aware timestamps on every backend (sqlite stores them naive)."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect):
        return as_utc(value)

    def process_result_value(self, value: Optional[datetime], dialect):
        return as_utc(value)


def upsert_insert(session, model):
    """Dialect specific INSERT so callers can use ON CONFLICT DO NOTHING ... RETURNING."""
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)
