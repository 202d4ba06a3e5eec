"""Directory client streaming groups and persons as ``DirectoryEntry`` values."""

from __future__ import annotations

import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from tenantsync.domain.directory.mapping import AttributeMapperRegistry
from tenantsync.domain.directory.names import DistinguishedName, are_disjoint, parse_or_none
from tenantsync.domain.directory.paging import ResumableQuery, ResumePolicy
from tenantsync.domain.model import (
    PROP_AUTHORITY_NAME,
    PROP_USER_NAME,
    DirectoryEntry,
    DuplicateEntryError,
    MissingAttributeError,
    UnresolvedMemberError,
    group_authority_name,
)
from tenantsync.domain.model.entry import ordered_unique
from tenantsync.domain.ports import SearchRequest

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Mapping

    from tenantsync.domain.ports import DirectorySession, DirectorySessionProvider, RawEntry

log = logging.getLogger(__name__)

_RANGE_OPTION = re.compile(r";range=(\d+)-(\d+|\*)", re.IGNORECASE)
_OBJECT_CLASS = "objectClass"


@dataclass(frozen=True, slots=True, kw_only=True)
class EntitySchema:
    search_base: str
    query: str
    differential_query: str
    id_attribute: str
    object_class: str
    attribute_mapping: Mapping[str, str] = field(default_factory=dict)
    attribute_defaults: Mapping[str, object] = field(default_factory=dict)


@dataclass(frozen=True, slots=True, kw_only=True)
class GroupSchema(EntitySchema):
    member_attribute: str = "member"


@dataclass(frozen=True, slots=True, kw_only=True)
class QueryPolicy:
    """Strictness flags; a strict flag turns a skipped row into a phase failure."""

    error_on_missing_members: bool = False
    error_on_duplicate_gid: bool = False
    error_on_missing_gid: bool = False
    error_on_duplicate_uid: bool = False
    error_on_missing_uid: bool = False


@dataclass(frozen=True, slots=True, kw_only=True)
class DirectoryLayout:
    groups: GroupSchema
    persons: EntitySchema
    modify_timestamp_attribute: str = "modifyTimestamp"
    timestamp_format: str = "%Y%m%d%H%M%SZ"
    query_batch_size: int = 1000
    attribute_batch_size: int = 0
    policy: QueryPolicy = field(default_factory=QueryPolicy)
    resume: ResumePolicy = field(default_factory=ResumePolicy)


def merge_duplicates(
    entries: Iterable[DirectoryEntry],
    expected: Mapping[str, int],
    *,
    strict: bool = False,
) -> Iterator[DirectoryEntry]:
    """Withhold rows sharing an id until all ``expected`` copies have merged.

    Ids whose copies never all arrive are flushed, merged, once ``entries`` is
    exhausted. Copies arriving after an id was emitted are dropped with a warning.
    """

    pending: dict[str, DirectoryEntry] = {}
    arrivals: Counter[str] = Counter()
    emitted: set[str] = set()
    for entry in entries:
        arrivals[entry.id] += 1
        if entry.id in emitted:
            if strict:
                raise DuplicateEntryError(
                    f"Duplicate directory entry {entry.id} at {entry.source_id}"
                )
            log.warning(
                "%s returned more often than counted; ignoring late copy at %s",
                entry.id,
                entry.source_id,
            )
            continue
        held = pending.pop(entry.id, None)
        merged = held.merged_with(entry) if held is not None else entry
        wanted = expected.get(entry.id, 1)
        if arrivals[entry.id] >= wanted:
            if wanted > 1:
                log.debug("Merged %s rows for %s", wanted, entry.id)
            emitted.add(entry.id)
            yield merged
        else:
            pending[entry.id] = merged

    for entry_id, merged in pending.items():
        log.warning(
            "Expected %s rows for %s but received %s; emitting merged entry",
            expected.get(entry_id, 1),
            entry_id,
            arrivals[entry_id],
        )
        yield merged


class DirectoryClient:
    """Queries one directory source.

    Each call to ``groups``/``persons`` opens its own session and yields a
    lazy, single-use sequence of entries that survives transient session loss.
    """

    def __init__(
        self,
        provider: DirectorySessionProvider,
        layout: DirectoryLayout,
        *,
        mappers: AttributeMapperRegistry | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._provider = provider
        self._layout = layout
        self._mappers = mappers or AttributeMapperRegistry()
        self._sleep = sleep
        self._group_base = parse_or_none(layout.groups.search_base)
        self._person_base = parse_or_none(layout.persons.search_base)
        self._bases_disjoint = (
            self._group_base is not None
            and self._person_base is not None
            and are_disjoint(self._group_base, self._person_base)
        )

    @property
    def layout(self) -> DirectoryLayout:
        return self._layout

    @property
    def person_property_names(self) -> frozenset[str]:
        return frozenset({PROP_USER_NAME, *self._layout.persons.attribute_mapping})

    # -- queries ---------------------------------------------------------------

    def groups(self, since: datetime | None = None) -> Iterator[DirectoryEntry]:
        """Groups modified after ``since`` (all groups when ``None``)."""

        schema = self._layout.groups
        search_filter = self._filter(schema, since)
        counts = Counter(self._scan_ids(schema, search_filter, group_authority_name))
        duplicates = sorted(entry_id for entry_id, count in counts.items() if count > 1)
        if duplicates:
            if self._layout.policy.error_on_duplicate_gid:
                raise DuplicateEntryError(f"Duplicate group ids: {', '.join(duplicates)}")
            log.warning("Merging duplicate group rows for %s", ", ".join(duplicates))

        attributes = [
            schema.id_attribute,
            self._layout.modify_timestamp_attribute,
            self._member_attribute_request(0),
            *schema.attribute_mapping.values(),
        ]
        query = ResumableQuery(
            self._provider,
            self._request(schema, search_filter, attributes),
            row_key=self._key_reader(schema, group_authority_name),
            process=self._group_entry,
            policy=self._layout.resume,
            sleep=self._sleep,
            label="group query",
        )
        yield from merge_duplicates(
            query, counts, strict=self._layout.policy.error_on_duplicate_gid
        )

    def persons(self, since: datetime | None = None) -> Iterator[DirectoryEntry]:
        """Persons modified after ``since`` (all persons when ``None``)."""

        schema = self._layout.persons
        attributes = [
            schema.id_attribute,
            self._layout.modify_timestamp_attribute,
            *schema.attribute_mapping.values(),
        ]
        query = ResumableQuery(
            self._provider,
            self._request(schema, self._filter(schema, since), attributes),
            row_key=self._key_reader(schema, str),
            process=self._person_entry,
            policy=self._layout.resume,
            sleep=self._sleep,
            label="person query",
        )
        seen: set[str] = set()
        for entry in query:
            if entry.id in seen:
                if self._layout.policy.error_on_duplicate_uid:
                    raise DuplicateEntryError(f"Duplicate person {entry.id} at {entry.source_id}")
                log.warning(
                    "Duplicate person %s at %s; keeping the first row", entry.id, entry.source_id
                )
                continue
            seen.add(entry.id)
            yield entry

    def group_names(self) -> set[str]:
        schema = self._layout.groups
        return set(self._scan_ids(schema, schema.query, group_authority_name))

    def person_names(self) -> set[str]:
        schema = self._layout.persons
        return set(self._scan_ids(schema, schema.query, str))

    # -- row mapping -------------------------------------------------------------

    def _group_entry(self, row: RawEntry, session: DirectorySession) -> DirectoryEntry | None:
        schema = self._layout.groups
        group_id = _text(row.first(schema.id_attribute))
        if group_id is None:
            if self._layout.policy.error_on_missing_gid:
                raise MissingAttributeError(
                    f"Group at {row.dn} has no {schema.id_attribute} attribute"
                )
            log.warning("Skipping group at %s without %s", row.dn, schema.id_attribute)
            return None

        name = group_authority_name(group_id)
        properties = self._map_properties(row, schema)
        properties[PROP_AUTHORITY_NAME] = name
        return DirectoryEntry(
            source_id=row.dn,
            id=name,
            properties=properties,
            last_modified=self._timestamp(row),
            child_associations=self._members(row, session),
        )

    def _person_entry(self, row: RawEntry, _session: DirectorySession) -> DirectoryEntry | None:
        schema = self._layout.persons
        user_name = _text(row.first(schema.id_attribute))
        if user_name is None:
            if self._layout.policy.error_on_missing_uid:
                raise MissingAttributeError(
                    f"Person at {row.dn} has no {schema.id_attribute} attribute"
                )
            log.warning("Skipping person at %s without %s", row.dn, schema.id_attribute)
            return None

        properties = self._map_properties(row, schema)
        properties[PROP_USER_NAME] = user_name
        return DirectoryEntry(
            source_id=row.dn,
            id=user_name,
            properties=properties,
            last_modified=self._timestamp(row),
        )

    def _map_properties(self, row: RawEntry, schema: EntitySchema) -> dict[str, object]:
        properties: dict[str, object] = {}
        for property_name, attribute in schema.attribute_mapping.items():
            values = [
                mapped
                for mapped in (self._mappers.map(attribute, raw) for raw in row.values(attribute))
                if mapped is not None and mapped != ""
            ]
            if not values:
                # absent attribute clears the property unless a default is configured
                properties[property_name] = schema.attribute_defaults.get(property_name)
            elif len(values) == 1:
                properties[property_name] = values[0]
            else:
                properties[property_name] = values
        return properties

    def _timestamp(self, row: RawEntry) -> datetime | None:
        raw = row.first(self._layout.modify_timestamp_attribute)
        if raw is None:
            return None
        if isinstance(raw, datetime):
            return raw.astimezone(UTC) if raw.tzinfo else raw.replace(tzinfo=UTC)
        text = _text(raw)
        if text is None:
            return None
        try:
            return datetime.strptime(text, self._layout.timestamp_format).replace(tzinfo=UTC)
        except ValueError:
            log.warning(
                "Unparseable %s %r at %s", self._layout.modify_timestamp_attribute, text, row.dn
            )
            return None

    # -- membership ----------------------------------------------------------------

    def _member_attribute_request(self, start: int) -> str:
        attribute = self._layout.groups.member_attribute
        size = self._layout.attribute_batch_size
        if size <= 0:
            return attribute
        return f"{attribute};range={start}-{start + size - 1}"

    def _members(self, row: RawEntry, session: DirectorySession) -> tuple[str, ...]:
        attribute = self._layout.groups.member_attribute
        members: list[str] = []
        resolved_cache: dict[str, str | None] = {}
        found = row.with_options(attribute)
        while found is not None:
            key, values = found
            for value in values:
                member = _text(value)
                if member is None:
                    continue
                if member not in resolved_cache:
                    resolved_cache[member] = self._resolve_member(row.dn, member, session)
                resolved = resolved_cache[member]
                if resolved is not None:
                    members.append(resolved)

            marker = _RANGE_OPTION.search(key)
            if self._layout.attribute_batch_size <= 0 or marker is None or marker.group(2) == "*":
                break
            follow_up = session.read_entry(
                row.dn, [self._member_attribute_request(int(marker.group(2)) + 1)]
            )
            found = follow_up.with_options(attribute) if follow_up is not None else None
        return ordered_unique(members)

    def _resolve_member(self, group_dn: str, member: str, session: DirectorySession) -> str | None:
        groups = self._layout.groups
        persons = self._layout.persons
        name = parse_or_none(member)
        if name is None:
            # posix-style memberUid values are plain user names
            return member

        if self._bases_disjoint:
            resolved = self._resolve_by_rdn(name)
            if resolved is not None:
                return resolved

        entry = session.read_entry(
            member, [_OBJECT_CLASS, groups.id_attribute, persons.id_attribute]
        )
        if entry is not None:
            classes = {str(_text(value)).lower() for value in entry.values(_OBJECT_CLASS)}
            if groups.object_class.lower() in classes:
                group_id = _text(entry.first(groups.id_attribute))
                if group_id is not None:
                    return group_authority_name(group_id)
            if persons.object_class.lower() in classes:
                user_name = _text(entry.first(persons.id_attribute))
                if user_name is not None:
                    return user_name

        if self._layout.policy.error_on_missing_members:
            raise UnresolvedMemberError(f"Cannot resolve member {member} of {group_dn}")
        log.warning("Ignoring unresolvable member %s of %s", member, group_dn)
        return None

    def _resolve_by_rdn(self, name: DistinguishedName) -> str | None:
        groups = self._layout.groups
        persons = self._layout.persons
        attribute = name.rdn_attribute.lower()
        if (
            self._group_base is not None
            and name.is_under(self._group_base)
            and attribute == groups.id_attribute.lower()
        ):
            return group_authority_name(name.rdn_value)
        if (
            self._person_base is not None
            and name.is_under(self._person_base)
            and attribute == persons.id_attribute.lower()
        ):
            return name.rdn_value
        return None

    # -- helpers ---------------------------------------------------------------------

    def _filter(self, schema: EntitySchema, since: datetime | None) -> str:
        if since is None:
            return schema.query
        stamp = since.astimezone(UTC).strftime(self._layout.timestamp_format)
        return schema.differential_query.format(stamp)

    def _request(
        self, schema: EntitySchema, search_filter: str, attributes: Iterable[str]
    ) -> SearchRequest:
        return SearchRequest(
            base=schema.search_base,
            filter=search_filter,
            attributes=tuple(dict.fromkeys(attributes)),
            page_size=self._layout.query_batch_size,
        )

    def _key_reader(
        self, schema: EntitySchema, to_name: Callable[[str], str]
    ) -> Callable[[RawEntry], str | None]:
        def read(row: RawEntry) -> str | None:
            value = _text(row.first(schema.id_attribute))
            return to_name(value) if value is not None else None

        return read

    def _scan_ids(
        self, schema: EntitySchema, search_filter: str, to_name: Callable[[str], str]
    ) -> list[str]:
        read_key = self._key_reader(schema, to_name)
        query = ResumableQuery(
            self._provider,
            self._request(schema, search_filter, [schema.id_attribute]),
            row_key=read_key,
            process=lambda row, _session: read_key(row),
            policy=self._layout.resume,
            sleep=self._sleep,
            label="id scan",
        )
        return list(query)


def _text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes | bytearray):
        value = bytes(value).decode("utf-8", errors="replace")
    text = str(value).strip()
    return text or None
