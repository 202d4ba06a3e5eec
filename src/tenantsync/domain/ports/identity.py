"""Ports onto the local identity store (consumed, not implemented here)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Set

    from tenantsync.domain.model import AuthorityKind, AvatarBlob


@runtime_checkable
class AuthorityRepository(Protocol):
    """Groups, users-as-authorities, their zones and containment edges."""

    def authority_exists(self, name: str) -> bool: ...

    def create_authority(
        self,
        kind: AuthorityKind,
        short_name: str,
        display_name: str | None,
        zones: Set[str],
    ) -> str: ...

    def add_authority(self, parent: str, child: str) -> None: ...

    def remove_authority(self, parent: str, child: str) -> None: ...

    def delete_authority(self, name: str) -> None: ...

    def get_authority_display_name(self, name: str) -> str | None: ...

    def set_authority_display_name(self, name: str, display_name: str) -> None: ...

    def get_authority_zones(self, name: str) -> set[str] | None: ...

    def add_authority_to_zones(self, name: str, zones: Set[str]) -> None: ...

    def remove_authority_from_zones(self, name: str, zones: Set[str]) -> None: ...

    def get_contained_authorities(
        self,
        kind: AuthorityKind | None,
        name: str,
        *,
        immediate: bool = True,
    ) -> set[str]: ...

    def get_containing_authorities(
        self,
        kind: AuthorityKind | None,
        name: str,
        *,
        immediate: bool = True,
    ) -> set[str]: ...

    def get_all_authorities_in_zone(self, zone: str, kind: AuthorityKind | None) -> set[str]: ...


@runtime_checkable
class PersonRepository(Protocol):
    @property
    def user_names_case_sensitive(self) -> bool: ...

    def person_exists(self, user_name: str) -> bool: ...

    def create_person(self, properties: Mapping[str, object], zones: Set[str]) -> None: ...

    def set_person_properties(self, user_name: str, properties: Mapping[str, object]) -> None: ...

    def delete_person(self, user_name: str) -> None: ...

    def get_person(self, user_name: str) -> Mapping[str, object] | None: ...

    def get_avatar(self, user_name: str) -> bytes | None: ...

    def set_avatar(self, user_name: str, avatar: AvatarBlob) -> None: ...
