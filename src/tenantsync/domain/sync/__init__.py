"""Differential synchronization of directory sources into the identity store."""

from __future__ import annotations

from .analyzer import GroupAnalyzer
from .batch import BatchProcessor, chunked
from .containment import ContainmentCache
from .context import SyncContext
from .ledger import LedgerAttribute, SyncLedger
from .mutations import MutationSet, ParentsMap, Watermark
from .orchestrator import LOCK_NAME, RunLockCallback, TenantSynchronizer, lock_name_for
from .persons import PersonWorker
from .sources import SourceCapabilities, SourceHandle, SourceRegistry, TenantPolicy
from .workers import (
    AuthorityDeleter,
    GroupCreationAndParentRemovalWorker,
    GroupParentAdditionWorker,
    UserParentWorker,
)
from .zones import ZoneDecision, decide, update_zones

__all__ = [
    "LOCK_NAME",
    "AuthorityDeleter",
    "BatchProcessor",
    "ContainmentCache",
    "GroupAnalyzer",
    "GroupCreationAndParentRemovalWorker",
    "GroupParentAdditionWorker",
    "LedgerAttribute",
    "MutationSet",
    "ParentsMap",
    "PersonWorker",
    "RunLockCallback",
    "SourceCapabilities",
    "SourceHandle",
    "SourceRegistry",
    "SyncContext",
    "SyncLedger",
    "TenantPolicy",
    "TenantSynchronizer",
    "UserParentWorker",
    "Watermark",
    "ZoneDecision",
    "chunked",
    "decide",
    "lock_name_for",
    "update_zones",
]
