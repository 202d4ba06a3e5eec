"""Checkpoint store on the ``sync_attribute`` table."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from tenantsync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncStateUnitOfWork

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from tenantsync.domain.ports import AttributeKey

type SyncStateUnitOfWorkFactory = Callable[[], SqlAlchemySyncStateUnitOfWork]


class SqlAlchemyCheckpointStore:
    def __init__(
        self, unit_of_work_factory: SyncStateUnitOfWorkFactory | None = None
    ) -> None:
        self._unit_of_work_factory = unit_of_work_factory or SqlAlchemySyncStateUnitOfWork

    def get(self, key: AttributeKey) -> object | None:
        with self._unit_of_work_factory() as uow:
            return uow.repositories.attributes.get(key)

    def write(
        self,
        updates: Mapping[AttributeKey, object | None],
        *,
        clear: Iterable[tuple[str, str]] = (),
    ) -> None:
        with self._unit_of_work_factory() as uow:
            attributes = uow.repositories.attributes
            for tenant, name in clear:
                attributes.clear(tenant, name)
            for key, value in updates.items():
                if value is None:
                    attributes.remove(key)
                else:
                    attributes.put(key, value)
            uow.commit()


if TYPE_CHECKING:
    from tenantsync.domain.ports import CheckpointStore

    _store_check: CheckpointStore = SqlAlchemyCheckpointStore()
