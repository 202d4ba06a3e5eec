"""Ports onto directory sources, modelled as paginated query capabilities."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


@dataclass(frozen=True, slots=True)
class RawEntry:
    """One directory row as returned by a session.

    Attribute names are kept as delivered, including options such as
    ``member;range=0-1499``; lookups are case-insensitive.
    """

    dn: str
    attributes: Mapping[str, Sequence[object]] = field(default_factory=dict)

    def values(self, name: str) -> list[object]:
        wanted = name.lower()
        for key, values in self.attributes.items():
            if key.lower() == wanted:
                return list(values)
        return []

    def first(self, name: str) -> object | None:
        values = self.values(name)
        return values[0] if values else None

    def with_options(self, name: str) -> tuple[str, list[object]] | None:
        """Return the attribute ``name`` with any options, e.g. a range marker."""

        wanted = name.lower()
        for key, values in self.attributes.items():
            lowered = key.lower()
            if lowered == wanted or lowered.startswith(wanted + ";"):
                return key, list(values)
        return None


@dataclass(frozen=True, slots=True, kw_only=True)
class SearchRequest:
    base: str
    filter: str
    attributes: tuple[str, ...]
    page_size: int = 0


@dataclass(frozen=True, slots=True)
class SearchPage:
    entries: tuple[RawEntry, ...]
    cookie: bytes | None = None


@runtime_checkable
class DirectorySession(Protocol):
    """An authenticated session; raises ``DirectoryCommunicationError`` on transport loss."""

    def search_page(self, request: SearchRequest, cookie: bytes | None) -> SearchPage: ...

    def read_entry(self, dn: str, attributes: Sequence[str]) -> RawEntry | None: ...

    def close(self) -> None: ...


@runtime_checkable
class DirectorySessionProvider(Protocol):
    def open_session(self) -> DirectorySession: ...
