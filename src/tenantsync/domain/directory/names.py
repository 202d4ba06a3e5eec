"""Distinguished-name parsing and comparison."""

from __future__ import annotations

from dataclasses import dataclass
from string import hexdigits

from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.dn import parse_dn

from tenantsync.domain.model import InvalidNameError


def unescape_value(value: str) -> str:
    """Resolve RFC 4514 escapes so ``\\20`` and ``\\ `` compare equal."""

    buffer = bytearray()
    index = 0
    length = len(value)
    while index < length:
        char = value[index]
        if char == "\\" and index + 1 < length:
            pair = value[index + 1 : index + 3]
            if len(pair) == 2 and all(c in hexdigits for c in pair):  # noqa: PLR2004
                buffer += bytes.fromhex(pair)
                index += 3
                continue
            buffer += value[index + 1].encode()
            index += 2
            continue
        buffer += char.encode()
        index += 1
    return buffer.decode("utf-8", errors="replace")


@dataclass(frozen=True, slots=True)
class DistinguishedName:
    """Parsed DN, leaf RDN first.

    Comparison uses ``key``: attribute types and unescaped values folded to
    lower case.
    """

    rdns: tuple[tuple[str, str], ...]

    @classmethod
    def parse(cls, value: str) -> DistinguishedName:
        if "=" not in value:
            raise InvalidNameError(f"Not a distinguished name: {value!r}")
        try:
            components = parse_dn(value, escape=False, strip=True)
        except LDAPInvalidDnError as exc:
            raise InvalidNameError(f"Not a distinguished name: {value!r}") from exc
        if not components:
            raise InvalidNameError(f"Empty distinguished name: {value!r}")
        return cls(
            tuple(
                (attr_type.strip(), unescape_value(attr_value))
                for attr_type, attr_value, _ in components
            )
        )

    @property
    def key(self) -> tuple[tuple[str, str], ...]:
        return tuple((attr.lower(), val.lower()) for attr, val in self.rdns)

    @property
    def rdn_attribute(self) -> str:
        return self.rdns[0][0]

    @property
    def rdn_value(self) -> str:
        return self.rdns[0][1]

    def is_under(self, base: DistinguishedName) -> bool:
        """True when this DN equals ``base`` or lies in its subtree."""

        base_key = base.key
        own_key = self.key
        if len(base_key) > len(own_key):
            return False
        return own_key[len(own_key) - len(base_key) :] == base_key


def parse_or_none(value: str) -> DistinguishedName | None:
    try:
        return DistinguishedName.parse(value)
    except InvalidNameError:
        return None


def are_disjoint(first: DistinguishedName, second: DistinguishedName) -> bool:
    return not first.is_under(second) and not second.is_under(first)
