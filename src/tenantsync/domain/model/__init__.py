"""Domain value objects for directory synchronization."""

from __future__ import annotations

from .authority import (
    DEFAULT_TENANT,
    GROUP_PREFIX,
    ZONE_APP_DEFAULT,
    ZONE_AUTH_DEFAULT,
    ZONE_AUTH_EXT_PREFIX,
    AuthorityKind,
    authority_kind,
    external_sources,
    group_authority_name,
    is_sticky_zone,
    qualify_authority,
    qualify_user,
    short_name,
    source_zone,
    target_zones,
)
from .entry import (
    PROP_ACCOUNT_STATUS,
    PROP_AUTHORITY_DISPLAY_NAME,
    PROP_AUTHORITY_NAME,
    PROP_AVATAR,
    PROP_EMAIL,
    PROP_ENABLED,
    PROP_FIRST_NAME,
    PROP_LAST_NAME,
    PROP_USER_NAME,
    AvatarBlob,
    DirectoryEntry,
    latest,
)
from .errors import (
    DirectoryCommunicationError,
    DirectoryError,
    DirectoryUnavailableError,
    DuplicateEntryError,
    InvalidNameError,
    LockAcquisitionError,
    LockLostError,
    MissingAttributeError,
    SynchronizationError,
    UnknownSourceError,
    UnresolvedMemberError,
)
from .status import (
    EntityClass,
    SourceRunSummary,
    SyncCheckpoint,
    SyncDiagnostic,
    SyncPhase,
    SyncRunResult,
    SyncStatus,
)

__all__ = [
    "DEFAULT_TENANT",
    "GROUP_PREFIX",
    "PROP_ACCOUNT_STATUS",
    "PROP_AUTHORITY_DISPLAY_NAME",
    "PROP_AUTHORITY_NAME",
    "PROP_AVATAR",
    "PROP_EMAIL",
    "PROP_ENABLED",
    "PROP_FIRST_NAME",
    "PROP_LAST_NAME",
    "PROP_USER_NAME",
    "ZONE_APP_DEFAULT",
    "ZONE_AUTH_DEFAULT",
    "ZONE_AUTH_EXT_PREFIX",
    "AuthorityKind",
    "AvatarBlob",
    "DirectoryCommunicationError",
    "DirectoryEntry",
    "DirectoryError",
    "DirectoryUnavailableError",
    "DuplicateEntryError",
    "EntityClass",
    "InvalidNameError",
    "LockAcquisitionError",
    "LockLostError",
    "MissingAttributeError",
    "SourceRunSummary",
    "SyncCheckpoint",
    "SyncDiagnostic",
    "SyncPhase",
    "SyncRunResult",
    "SyncStatus",
    "SynchronizationError",
    "UnknownSourceError",
    "UnresolvedMemberError",
    "authority_kind",
    "external_sources",
    "group_authority_name",
    "is_sticky_zone",
    "latest",
    "qualify_authority",
    "qualify_user",
    "short_name",
    "source_zone",
    "target_zones",
]
