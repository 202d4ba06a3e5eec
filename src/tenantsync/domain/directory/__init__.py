"""Directory access: paged queries, name handling and attribute decoding."""

from __future__ import annotations

from .accounts import AccountInterpreter, ActiveDirectoryAccountInterpreter, LdapAccountInterpreter
from .client import (
    DirectoryClient,
    DirectoryLayout,
    EntitySchema,
    GroupSchema,
    QueryPolicy,
    merge_duplicates,
)
from .mapping import AttributeMapperRegistry, AttributeValueMapper, map_avatar, map_sid
from .names import DistinguishedName, are_disjoint, parse_or_none
from .paging import PagingState, ResumableQuery, ResumePolicy, resume

__all__ = [
    "AccountInterpreter",
    "ActiveDirectoryAccountInterpreter",
    "AttributeMapperRegistry",
    "AttributeValueMapper",
    "DirectoryClient",
    "DirectoryLayout",
    "DistinguishedName",
    "EntitySchema",
    "GroupSchema",
    "LdapAccountInterpreter",
    "PagingState",
    "QueryPolicy",
    "ResumableQuery",
    "ResumePolicy",
    "are_disjoint",
    "map_avatar",
    "map_sid",
    "merge_duplicates",
    "parse_or_none",
    "resume",
]
