from dataclasses import dataclass, fields, replace
from typing import Dict, Optional

from cryptography import x509
from cryptography.x509.oid import NameOID

# (short name, dataclass field, OID) in canonical string order
DN_ATTRIBUTES = (
    ("CN", "common_name", NameOID.COMMON_NAME),
    ("O", "organization", NameOID.ORGANIZATION_NAME),
    ("OU", "organizational_unit", NameOID.ORGANIZATIONAL_UNIT_NAME),
    ("C", "country", NameOID.COUNTRY_NAME),
    ("ST", "state", NameOID.STATE_OR_PROVINCE_NAME),
    ("L", "locality", NameOID.LOCALITY_NAME),
)

_SHORT_TO_FIELD = {short: field for short, field, _ in DN_ATTRIBUTES}

# RDN order inside an encoded Name, most general first
_NAME_ENCODING_ORDER = ("C", "ST", "L", "O", "OU", "CN")

_SPECIAL = set(',+"\\<>;')


@dataclass(frozen=True)
class DistinguishedName:
    common_name: Optional[str] = None
    organization: Optional[str] = None
    organizational_unit: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    locality: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, str]]) -> "DistinguishedName":
        """Build from a ``{"CN": ..., "O": ...}`` mapping, ignoring unknown keys."""
        values = {}
        for key, value in (data or {}).items():
            field = _SHORT_TO_FIELD.get(str(key).strip().upper())
            if field and value is not None:
                values[field] = str(value)
        return cls(**values)

    def to_dict(self) -> Dict[str, str]:
        result = {}
        for short, field, _ in DN_ATTRIBUTES:
            value = getattr(self, field)
            if value:
                result[short] = value
        return result

    def with_values(self, **changes) -> "DistinguishedName":
        return replace(self, **changes)

    def __str__(self) -> str:
        return format_dn(self)


def escape_value(value: str) -> str:
    out = []
    last = len(value) - 1
    for index, char in enumerate(value):
        if char in _SPECIAL:
            out.append("\\" + char)
        elif char == "#" and index == 0:
            out.append("\\#")
        elif char.isspace() and (index == 0 or index == last):
            out.append("\\" + char)
        else:
            out.append(char)
    return "".join(out)


def format_dn(dn: DistinguishedName) -> str:
    parts = []
    for short, field, _ in DN_ATTRIBUTES:
        value = getattr(dn, field)
        if value:
            parts.append(f"{short}={escape_value(value)}")
    return ",".join(parts)


def _split_unescaped(text: str):
    """Split on unescaped ``,`` or ``+`` keeping escapes in place."""
    parts = []
    current = []
    escaped = False
    for char in text:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            current.append(char)
            escaped = True
        elif char in ",+":
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


def _unescape_value(raw: str) -> str:
    # Unescaped surrounding whitespace is insignificant, escaped whitespace is kept
    chars = []
    escaped_flags = []
    escaped = False
    for char in raw:
        if escaped:
            chars.append(char)
            escaped_flags.append(True)
            escaped = False
        elif char == "\\":
            escaped = True
        else:
            chars.append(char)
            escaped_flags.append(False)
    if escaped:
        # Dangling backslash, keep it literally
        chars.append("\\")
        escaped_flags.append(True)

    start, end = 0, len(chars)
    while start < end and chars[start].isspace() and not escaped_flags[start]:
        start += 1
    while end > start and chars[end - 1].isspace() and not escaped_flags[end - 1]:
        end -= 1
    return "".join(chars[start:end])


def parse_dn(text: str) -> DistinguishedName:
    """Parse ``CN=...,O=...`` leniently; never raises."""
    if not isinstance(text, str):
        return DistinguishedName()

    values = {}
    for part in _split_unescaped(text):
        key, sep, raw_value = part.partition("=")
        if not sep:
            continue
        field = _SHORT_TO_FIELD.get(key.strip().upper())
        if not field:
            continue
        value = _unescape_value(raw_value)
        if value:
            values[field] = value
    return DistinguishedName(**values)


def dn_equal(a: DistinguishedName, b: DistinguishedName) -> bool:
    return all(getattr(a, f.name) == getattr(b, f.name) for f in fields(DistinguishedName))


def build_name(dn: DistinguishedName) -> x509.Name:
    by_short = {short: (field, oid) for short, field, oid in DN_ATTRIBUTES}
    attrs = []
    for short in _NAME_ENCODING_ORDER:
        field, oid = by_short[short]
        value = getattr(dn, field)
        if value:
            attrs.append(x509.NameAttribute(oid, value))
    return x509.Name(attrs)


def name_to_dn(name: x509.Name) -> DistinguishedName:
    values = {}
    for _, field, oid in DN_ATTRIBUTES:
        attrs = name.get_attributes_for_oid(oid)
        if attrs:
            values[field] = attrs[0].value
    return DistinguishedName(**values)
