"""Explicit per-source run context."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from tenantsync.domain.model import qualify_authority, source_zone, target_zones

if TYPE_CHECKING:
    from tenantsync.domain.model import SyncPhase


@dataclass(frozen=True, slots=True, kw_only=True)
class SyncContext:
    """Everything the analyzer and workers need to know about the current run.

    Passed as an argument to every call instead of living in ambient state.
    ``source_ids`` is the tenant's whole precedence chain and
    ``visited_source_ids`` the sources completed earlier in this run.
    """

    tenant: str
    source_id: str
    source_ids: tuple[str, ...]
    visited_source_ids: frozenset[str] = frozenset()
    allow_deletions: bool = True
    is_full_sync: bool = False
    phase: SyncPhase | None = None

    @property
    def zone(self) -> str:
        return source_zone(self.source_id)

    @property
    def target_zones(self) -> frozenset[str]:
        return target_zones(self.source_id)

    @property
    def label(self) -> str:
        return f"{self.tenant}/{self.source_id}"

    def in_phase(self, phase: SyncPhase) -> SyncContext:
        return replace(self, phase=phase)

    def qualify(self, authority_name: str) -> str:
        return qualify_authority(authority_name, self.tenant)
