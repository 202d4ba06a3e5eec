"""SQLAlchemy adapter package for tenantsync."""

from __future__ import annotations

from .checkpoints import SqlAlchemyCheckpointStore
from .locking import SqlAlchemyLockService
from .mappings import mapper_registry, sync_attribute_table, sync_lock_table
from .repositories import (
    SqlAlchemySyncAttributeRepository,
    SqlAlchemySyncLockRepository,
    SyncStateRepositories,
)
from .unit_of_work import (
    SqlAlchemySyncStateUnitOfWork,
    StartupError,
    configured_engine,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyCheckpointStore",
    "SqlAlchemyLockService",
    "SqlAlchemySyncAttributeRepository",
    "SqlAlchemySyncLockRepository",
    "SqlAlchemySyncStateUnitOfWork",
    "StartupError",
    "SyncStateRepositories",
    "configured_engine",
    "mapper_registry",
    "shutdown",
    "startup",
    "sync_attribute_table",
    "sync_lock_table",
]
