"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, insert, select, update

from tenantsync.adapters.sqlalchemy.mappings import sync_attribute_table, sync_lock_table
from tenantsync.domain.ports import RepositoryCollection

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from tenantsync.domain.ports import AttributeKey


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SqlAlchemySyncAttributeRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, key: AttributeKey) -> object | None:
        stmt = select(sync_attribute_table.c.value).where(
            sync_attribute_table.c.tenant == key.tenant,
            sync_attribute_table.c.name == str(key.name),
            sync_attribute_table.c.source == key.source,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def put(self, key: AttributeKey, value: object) -> None:
        self.remove(key)
        self.session.execute(
            insert(sync_attribute_table).values(
                tenant=key.tenant,
                name=str(key.name),
                source=key.source,
                value=value,
                updated_at=_utcnow(),
            )
        )

    def remove(self, key: AttributeKey) -> None:
        self.session.execute(
            delete(sync_attribute_table).where(
                sync_attribute_table.c.tenant == key.tenant,
                sync_attribute_table.c.name == str(key.name),
                sync_attribute_table.c.source == key.source,
            )
        )

    def clear(self, tenant: str, name: str) -> None:
        """Remove ``name`` for the tenant and every one of its sources."""

        self.session.execute(
            delete(sync_attribute_table).where(
                sync_attribute_table.c.tenant == tenant,
                sync_attribute_table.c.name == str(name),
            )
        )


@dataclass(frozen=True, slots=True)
class LockRow:
    name: str
    token: str
    owner: str
    expires_at: datetime


class SqlAlchemySyncLockRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, name: str) -> LockRow | None:
        row = (
            self.session.execute(select(sync_lock_table).where(sync_lock_table.c.name == name))
            .mappings()
            .one_or_none()
        )
        if row is None:
            return None
        return LockRow(
            name=row["name"], token=row["token"], owner=row["owner"], expires_at=row["expires_at"]
        )

    def insert(self, lock: LockRow) -> None:
        self.session.execute(
            insert(sync_lock_table).values(
                name=lock.name, token=lock.token, owner=lock.owner, expires_at=lock.expires_at
            )
        )

    def take_over(self, lock: LockRow, *, expired_before: datetime) -> bool:
        """Replace an expired holder; ``False`` when the lock is still live."""

        result = self.session.execute(
            update(sync_lock_table)
            .where(sync_lock_table.c.name == lock.name)
            .where(sync_lock_table.c.expires_at <= expired_before)
            .values(token=lock.token, owner=lock.owner, expires_at=lock.expires_at)
        )
        return result.rowcount == 1

    def extend(self, name: str, token: str, expires_at: datetime) -> bool:
        result = self.session.execute(
            update(sync_lock_table)
            .where(sync_lock_table.c.name == name)
            .where(sync_lock_table.c.token == token)
            .values(expires_at=expires_at)
        )
        return result.rowcount == 1

    def delete(self, name: str, token: str) -> bool:
        result = self.session.execute(
            delete(sync_lock_table)
            .where(sync_lock_table.c.name == name)
            .where(sync_lock_table.c.token == token)
        )
        return result.rowcount == 1


@dataclass(slots=True)
class SyncStateRepositories(RepositoryCollection):
    attributes: SqlAlchemySyncAttributeRepository
    locks: SqlAlchemySyncLockRepository
