"""Value objects produced by the directory client."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from datetime import datetime

# well-known person and group property keys
PROP_USER_NAME: Final[str] = "userName"
PROP_FIRST_NAME: Final[str] = "firstName"
PROP_LAST_NAME: Final[str] = "lastName"
PROP_EMAIL: Final[str] = "email"
PROP_ENABLED: Final[str] = "enabled"
PROP_AVATAR: Final[str] = "avatar"
PROP_ACCOUNT_STATUS: Final[str] = "userAccountStatusProperty"
PROP_AUTHORITY_NAME: Final[str] = "authorityName"
PROP_AUTHORITY_DISPLAY_NAME: Final[str] = "authorityDisplayName"


@dataclass(frozen=True, slots=True)
class AvatarBlob:
    """Binary image payload decoded from a directory attribute."""

    content: bytes = field(repr=False)
    mimetype: str = "image/jpeg"

    @property
    def digest(self) -> str:
        return hashlib.md5(self.content, usedforsecurity=False).hexdigest()


@dataclass(frozen=True, slots=True, kw_only=True)
class DirectoryEntry:
    """One group or person row, resolved to identity-store vocabulary.

    ``id`` is the authority name (``GROUP_`` prefixed for groups) and
    ``child_associations`` lists member authority names in directory order.
    """

    source_id: str
    id: str
    properties: Mapping[str, object] = field(default_factory=dict)
    last_modified: datetime | None = None
    child_associations: tuple[str, ...] = ()

    def merged_with(self, other: DirectoryEntry) -> DirectoryEntry:
        """Combine a duplicate row: union of children, later properties win."""

        children = dict.fromkeys(self.child_associations)
        children.update(dict.fromkeys(other.child_associations))
        properties = dict(self.properties)
        properties.update(other.properties)
        return DirectoryEntry(
            source_id=self.source_id,
            id=self.id,
            properties=properties,
            last_modified=latest(self.last_modified, other.last_modified),
            child_associations=tuple(children),
        )


def latest(*values: datetime | None) -> datetime | None:
    present = [value for value in values if value is not None]
    return max(present) if present else None


def ordered_unique(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))
