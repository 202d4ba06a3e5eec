"""Provenance precedence decisions and zone rewriting."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from tenantsync.domain.model import external_sources, is_sticky_zone

if TYPE_CHECKING:
    from collections.abc import Set

    from tenantsync.domain.ports import AuthorityRepository
    from tenantsync.domain.sync.context import SyncContext


class ZoneDecision(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    REZONE = "rezone"
    RECREATE = "recreate"
    SKIP = "skip"


def decide(zones: Set[str] | None, context: SyncContext) -> ZoneDecision:
    """Choose how the current source treats an authority with ``zones``.

    - no zones: the authority does not exist yet, create it
    - tagged with this source: update it
    - claimed by a configured source already visited this run: that source
      has precedence, leave it alone
    - claimed by no configured source (local, neutral or from a source that
      was removed), or deletions disabled: take it over and update it
    - otherwise a lower precedence source created it: recreate it so no
      stale membership is inherited
    """

    if zones is None:
        return ZoneDecision.CREATE
    if context.zone in zones:
        return ZoneDecision.UPDATE

    intersection = external_sources(zones) & set(context.source_ids)
    if intersection & context.visited_source_ids:
        return ZoneDecision.SKIP
    if not context.allow_deletions or not intersection:
        return ZoneDecision.REZONE
    return ZoneDecision.RECREATE


def update_zones(
    authorities: AuthorityRepository,
    name: str,
    old_zones: Set[str],
    new_zones: Set[str],
) -> None:
    """Move ``name`` into ``new_zones``; the neutral and ``APP.*`` zones are kept."""

    to_remove = {zone for zone in old_zones if zone not in new_zones and not is_sticky_zone(zone)}
    to_add = set(new_zones) - set(old_zones)
    if to_remove:
        authorities.remove_authority_from_zones(name, to_remove)
    if to_add:
        authorities.add_authority_to_zones(name, to_add)
