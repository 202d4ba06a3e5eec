"""SQLAlchemy table metadata for synchronization state."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, Dialect, String, Table, TypeDecorator, orm


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# tenant- and source-scoped attributes; source "" holds tenant-level values
sync_attribute_table = Table(
    "sync_attribute",
    mapper_registry.metadata,
    Column("tenant", String(255), primary_key=True),
    Column("name", String(64), primary_key=True),
    Column("source", String(255), primary_key=True, default=""),
    Column("value", JSON, nullable=True),
    Column("updated_at", UTCDateTime(), nullable=False),
)

sync_lock_table = Table(
    "sync_lock",
    mapper_registry.metadata,
    Column("name", String(255), primary_key=True),
    Column("token", String(64), nullable=False),
    Column("owner", String(255), nullable=False),
    Column("expires_at", UTCDateTime(), nullable=False),
)
