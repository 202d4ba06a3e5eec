"""Authority naming, tenants and provenance zones."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Iterable

DEFAULT_TENANT: Final[str] = "-default-"

GROUP_PREFIX: Final[str] = "GROUP_"

ZONE_AUTH_EXT_PREFIX: Final[str] = "AUTH.EXT."
ZONE_AUTH_DEFAULT: Final[str] = "AUTH.ALF"
ZONE_APP_PREFIX: Final[str] = "APP."
ZONE_APP_DEFAULT: Final[str] = "APP.DEFAULT"


class AuthorityKind(StrEnum):
    USER = "user"
    GROUP = "group"


def group_authority_name(short_name: str) -> str:
    if short_name.startswith(GROUP_PREFIX):
        return short_name
    return GROUP_PREFIX + short_name


def authority_kind(name: str) -> AuthorityKind:
    return AuthorityKind.GROUP if name.startswith(GROUP_PREFIX) else AuthorityKind.USER


def short_name(name: str) -> str:
    if name.startswith(GROUP_PREFIX):
        return name[len(GROUP_PREFIX) :]
    return name


def source_zone(source_id: str) -> str:
    """Return the provenance zone claimed by ``source_id``."""

    return ZONE_AUTH_EXT_PREFIX + source_id


def target_zones(source_id: str) -> frozenset[str]:
    return frozenset({ZONE_APP_DEFAULT, source_zone(source_id)})


def source_id_of_zone(zone: str) -> str | None:
    if zone.startswith(ZONE_AUTH_EXT_PREFIX):
        return zone[len(ZONE_AUTH_EXT_PREFIX) :]
    return None


def external_sources(zones: Iterable[str]) -> set[str]:
    """Source ids behind every external provenance zone in ``zones``."""

    sources: set[str] = set()
    for zone in zones:
        source_id = source_id_of_zone(zone)
        if source_id is not None:
            sources.add(source_id)
    return sources


def is_sticky_zone(zone: str) -> bool:
    """Zones that survive re-provenancing: the neutral zone and application zones."""

    return zone == ZONE_AUTH_DEFAULT or zone.startswith(ZONE_APP_PREFIX)


def tenant_of_user(user_name: str) -> str:
    _, separator, domain = user_name.rpartition("@")
    return domain if separator else DEFAULT_TENANT


def qualify_user(user_name: str, tenant: str) -> str:
    """Return the tenant-qualified form of ``user_name``.

    Users of the default tenant keep their bare name; other tenants use
    ``user@tenant`` unless the name already carries that suffix.
    """

    if tenant == DEFAULT_TENANT or tenant_of_user(user_name) == tenant:
        return user_name
    return f"{user_name}@{tenant}"


def qualify_authority(name: str, tenant: str) -> str:
    if authority_kind(name) is AuthorityKind.GROUP:
        return name
    return qualify_user(name, tenant)
