"""Small typed DER builder.

Primitive values are encoded by pyasn1; constructed values (SEQUENCE, SET and
context-specific tags) are framed here so callers can nest already encoded
children without declaring an ASN.1 schema for every structure.
"""
from datetime import datetime, timezone
from typing import Iterable, Optional

from pyasn1.codec.der import decoder, encoder
from pyasn1.error import PyAsn1Error
from pyasn1.type import char, univ, useful

from pki_manager.errors import EncodingError

TAG_SEQUENCE = 0x30
TAG_SET = 0x31
CLASS_CONTEXT = 0x80
CONSTRUCTED = 0x20


def encode_length(length: int) -> bytes:
    if length < 0:
        raise ValueError("Length must be non-negative")
    if length < 0x80:
        return bytes([length])
    body = length.to_bytes((length.bit_length() + 7) // 8, "big")
    return bytes([0x80 | len(body)]) + body


def tlv(tag: int, content: bytes) -> bytes:
    return bytes([tag]) + encode_length(len(content)) + content


def sequence(*children: bytes) -> bytes:
    return tlv(TAG_SEQUENCE, b"".join(children))


def sequence_of(children: Iterable[bytes]) -> bytes:
    return tlv(TAG_SEQUENCE, b"".join(children))


def set_of(children: Iterable[bytes]) -> bytes:
    # DER orders SET OF members by their encodings
    return tlv(TAG_SET, b"".join(sorted(children)))


def explicit(tag_number: int, child: bytes) -> bytes:
    """Context-specific constructed tag ``[n]`` wrapping one encoded child."""
    return tlv(CLASS_CONTEXT | CONSTRUCTED | tag_number, child)


def implicit(tag_number: int, primitive: bytes) -> bytes:
    """Re-tag an encoded primitive as context-specific ``[n]``."""
    if not primitive:
        raise ValueError("Cannot re-tag an empty encoding")
    return bytes([CLASS_CONTEXT | tag_number]) + primitive[1:]


def context_constructed(tag_number: int, *children: bytes) -> bytes:
    return tlv(CLASS_CONTEXT | CONSTRUCTED | tag_number, b"".join(children))


def integer(value: int) -> bytes:
    return encoder.encode(univ.Integer(value))


def enumerated(value: int) -> bytes:
    return encoder.encode(univ.Enumerated(value))


def boolean(value: bool) -> bytes:
    return encoder.encode(univ.Boolean(value))


def null() -> bytes:
    return encoder.encode(univ.Null(""))


def oid(dotted: str) -> bytes:
    return encoder.encode(univ.ObjectIdentifier(dotted))


def octet_string(value: bytes) -> bytes:
    return encoder.encode(univ.OctetString(value))


def bit_string(value: bytes) -> bytes:
    """BIT STRING with zero unused bits, as used for signature values."""
    return encoder.encode(univ.BitString.fromOctetString(value))


def ia5_string(value: str) -> bytes:
    return encoder.encode(char.IA5String(value))


def utf8_string(value: str) -> bytes:
    return encoder.encode(char.UTF8String(value))


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def utc_time(moment: datetime) -> bytes:
    stamp = _as_utc(moment).strftime("%y%m%d%H%M%SZ")
    return encoder.encode(useful.UTCTime(stamp))


def generalized_time(moment: datetime) -> bytes:
    stamp = _as_utc(moment).strftime("%Y%m%d%H%M%SZ")
    return encoder.encode(useful.GeneralizedTime(stamp))


def time_value(moment: datetime) -> bytes:
    """RFC 5280 Time: UTCTime through 2049, GeneralizedTime afterwards."""
    if _as_utc(moment).year < 2050:
        return utc_time(moment)
    return generalized_time(moment)


def algorithm_identifier(algorithm_oid: str, parameters: Optional[bytes] = None) -> bytes:
    if parameters is None:
        return sequence(oid(algorithm_oid))
    return sequence(oid(algorithm_oid), parameters)


def decode(data: bytes):
    """Decode one DER value without a schema, rejecting trailing bytes."""
    try:
        value, rest = decoder.decode(data)
    except PyAsn1Error as exc:
        raise EncodingError(f"Malformed DER: {exc}") from exc
    if rest:
        raise EncodingError("Trailing data after DER value")
    return value


def read_tlv(data: bytes, offset: int = 0):
    """Return ``(tag, content, next_offset)`` for the TLV starting at ``offset``."""
    if offset + 2 > len(data):
        raise EncodingError("Truncated DER value")
    tag = data[offset]
    length = data[offset + 1]
    cursor = offset + 2
    if length & 0x80:
        count = length & 0x7F
        if count == 0 or cursor + count > len(data):
            raise EncodingError("Invalid DER length")
        length = int.from_bytes(data[cursor:cursor + count], "big")
        cursor += count
    end = cursor + length
    if end > len(data):
        raise EncodingError("Truncated DER value")
    return tag, data[cursor:end], end
