"""Pluggable per-attribute value decoders."""

from __future__ import annotations

import struct
from typing import TYPE_CHECKING, Protocol

from tenantsync.domain.model import AvatarBlob

if TYPE_CHECKING:
    from collections.abc import Mapping

_SID_HEADER_LENGTH = 8
_PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
_GIF_MAGIC = (b"GIF87a", b"GIF89a")


class AttributeValueMapper(Protocol):
    def __call__(self, value: object) -> object: ...


def map_avatar(value: object) -> object:
    """Wrap binary image payloads so the person worker can diff them."""

    if not isinstance(value, bytes | bytearray | memoryview):
        return value
    content = bytes(value)
    if content.startswith(_PNG_MAGIC):
        mimetype = "image/png"
    elif content.startswith(_GIF_MAGIC):
        mimetype = "image/gif"
    else:
        mimetype = "image/jpeg"
    return AvatarBlob(content=content, mimetype=mimetype)


def map_sid(value: object) -> object:
    """Render a binary security identifier as ``S-<rev>-<authority>-<sub>...``."""

    if not isinstance(value, bytes | bytearray | memoryview):
        return value
    content = bytes(value)
    if len(content) < _SID_HEADER_LENGTH:
        raise ValueError(f"SID payload too short: {len(content)} bytes")
    revision = content[0]
    declared = content[1]
    authority = int.from_bytes(content[2:8], "big")
    available = (len(content) - _SID_HEADER_LENGTH) // 4
    count = min(declared, available)
    sub_authorities = struct.unpack_from(f"<{count}I", content, _SID_HEADER_LENGTH)
    parts = [f"S-{revision}-{authority}", *(str(sub) for sub in sub_authorities)]
    return "-".join(parts)


BUILTIN_MAPPERS: dict[str, AttributeValueMapper] = {
    "avatar": map_avatar,
    "sid": map_sid,
}


class AttributeMapperRegistry:
    """Registry keyed by attribute id; unmapped attributes pass through unchanged."""

    def __init__(self, mappers: Mapping[str, AttributeValueMapper] | None = None) -> None:
        self._mappers: dict[str, AttributeValueMapper] = {}
        for attribute_id, mapper in (mappers or {}).items():
            self.register(attribute_id, mapper)

    @classmethod
    def from_names(cls, names: Mapping[str, str]) -> AttributeMapperRegistry:
        mappers: dict[str, AttributeValueMapper] = {}
        for attribute_id, mapper_name in names.items():
            try:
                mappers[attribute_id] = BUILTIN_MAPPERS[mapper_name]
            except KeyError as exc:
                raise ValueError(f"Unknown attribute mapper {mapper_name!r}") from exc
        return cls(mappers)

    def register(self, attribute_id: str, mapper: AttributeValueMapper) -> None:
        self._mappers[attribute_id.lower()] = mapper

    def map(self, attribute_id: str, value: object) -> object:
        mapper = self._mappers.get(attribute_id.lower())
        if mapper is None or value is None:
            return value
        return mapper(value)

    def __contains__(self, attribute_id: str) -> bool:
        return attribute_id.lower() in self._mappers
