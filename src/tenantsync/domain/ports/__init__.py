"""Domain port definitions for adapters."""

from __future__ import annotations

from .checkpoints import TENANT_SCOPE, AttributeKey, CheckpointStore
from .directory import (
    DirectorySession,
    DirectorySessionProvider,
    RawEntry,
    SearchPage,
    SearchRequest,
)
from .identity import AuthorityRepository, PersonRepository
from .locking import LockRefreshCallback, LockService
from .unit_of_work import (
    IdentityRepositories,
    IdentityUnitOfWork,
    IdentityUnitOfWorkFactory,
    RepositoryCollection,
    UnitOfWork,
)

__all__ = [
    "TENANT_SCOPE",
    "AttributeKey",
    "AuthorityRepository",
    "CheckpointStore",
    "DirectorySession",
    "DirectorySessionProvider",
    "IdentityRepositories",
    "IdentityUnitOfWork",
    "IdentityUnitOfWorkFactory",
    "LockRefreshCallback",
    "LockService",
    "PersonRepository",
    "RawEntry",
    "RepositoryCollection",
    "SearchPage",
    "SearchRequest",
    "UnitOfWork",
]
