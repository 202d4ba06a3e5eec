"""Run phases, status values and run reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime


class EntityClass(StrEnum):
    GROUP = "GROUP"
    PERSON = "PERSON"


class SyncStatus(StrEnum):
    WAITING = "WAITING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETE = "COMPLETE"
    COMPLETE_ERROR = "COMPLETE_ERROR"


class SyncPhase(StrEnum):
    """Per-source phases, executed strictly in declaration order."""

    GROUP_ANALYSIS = "GROUP_ANALYSIS"
    GROUP_CREATE_AND_PARENT_REMOVAL = "GROUP_CREATE_AND_PARENT_REMOVAL"
    GROUP_PARENT_ADDITION = "GROUP_PARENT_ADDITION"
    PERSON_UPSERT = "PERSON_UPSERT"
    USER_PARENT_ASSOCIATION = "USER_PARENT_ASSOCIATION"
    AUTHORITY_DELETION = "AUTHORITY_DELETION"

    @property
    def title(self) -> str:
        return _PHASE_TITLES[self]


_PHASE_TITLES: dict[SyncPhase, str] = {
    SyncPhase.GROUP_ANALYSIS: "1 Group Analysis",
    SyncPhase.GROUP_CREATE_AND_PARENT_REMOVAL: "2 Group Creation and Association Deletion",
    SyncPhase.GROUP_PARENT_ADDITION: "3 Group Association Creation",
    SyncPhase.PERSON_UPSERT: "4 User Update and Creation",
    SyncPhase.USER_PARENT_ASSOCIATION: "5 User Association",
    SyncPhase.AUTHORITY_DELETION: "6 Authority Deletion",
}


@dataclass(frozen=True, slots=True, kw_only=True)
class SyncCheckpoint:
    """Snapshot of persisted run metadata for a tenant or one of its sources."""

    tenant: str
    source_id: str | None = None
    status: SyncStatus | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    last_error: str | None = None
    summary: str | None = None
    last_run_host: str | None = None
    group_last_modified: datetime | None = None
    person_last_modified: datetime | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class SyncDiagnostic:
    """Read-only probe result for one directory source."""

    source_id: str
    active: bool
    group_names: frozenset[str]
    person_names: frozenset[str]
    group_last_synced: datetime | None
    person_last_synced: datetime | None


@dataclass(slots=True, kw_only=True)
class SourceRunSummary:
    source_id: str
    groups_processed: int = 0
    persons_processed: int = 0
    groups_deleted: int = 0
    persons_deleted: int = 0
    group_last_modified: datetime | None = None
    person_last_modified: datetime | None = None

    def describe(self) -> str:
        text = f"{self.persons_processed} user(s) and {self.groups_processed} group(s) processed"
        if self.groups_deleted or self.persons_deleted:
            text += (
                f", {self.persons_deleted} user(s) and {self.groups_deleted} group(s) removed"
            )
        return text


@dataclass(slots=True, kw_only=True)
class SyncRunResult:
    tenant: str
    lock_acquired: bool
    sources: list[SourceRunSummary] = field(default_factory=list["SourceRunSummary"])
