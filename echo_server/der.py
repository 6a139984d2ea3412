"""ASN.1 DER encoding primitives.

Every encoder is a pure function that returns a complete TLV (tag, length,
value) as ``bytes``. Constructed types take already-encoded children and
concatenate them, so structures are built bottom-up::

    sequence(oid("1.2.840.113549.1.1.11"), null())

Lengths are supported up to 65535 bytes (two length octets). Anything the
encoder cannot represent exactly raises ``DerEncodingError``; a malformed
certificate is worse than none.
"""

import re
from datetime import datetime, timezone
from typing import Tuple

TAG_INTEGER = 0x02
TAG_BIT_STRING = 0x03
TAG_NULL = 0x05
TAG_OID = 0x06
TAG_PRINTABLE_STRING = 0x13
TAG_UTC_TIME = 0x17
TAG_SEQUENCE = 0x30
TAG_SET = 0x31
TAG_CONTEXT_CONSTRUCTED = 0xA0

MAX_LENGTH = 0xFFFF

_OID_RE = re.compile(r"\d+(\.\d+)+", re.ASCII)
_PRINTABLE_RE = re.compile(r"[A-Za-z0-9 '()+,\-./:=?]*")


class DerEncodingError(ValueError):
    """Raised when a value cannot be encoded (or decoded) as valid DER."""


# ---------------------------------------------------------------------------
# Length and generic TLV
# ---------------------------------------------------------------------------

def encode_length(n: int) -> bytes:
    """Encode a content length in short or long form."""
    if n < 0:
        raise DerEncodingError(f"Negative length: {n}")
    if n < 0x80:
        return bytes([n])
    if n > MAX_LENGTH:
        raise DerEncodingError(f"Length {n} exceeds supported maximum of {MAX_LENGTH} bytes")
    body = n.to_bytes((n.bit_length() + 7) // 8, "big")
    return bytes([0x80 | len(body)]) + body


def tlv(tag: int, content: bytes) -> bytes:
    content = bytes(content)
    return bytes([tag]) + encode_length(len(content)) + content


# ---------------------------------------------------------------------------
# Primitive types
# ---------------------------------------------------------------------------

def integer(value: bytes) -> bytes:
    """Encode big-endian unsigned bytes as a DER INTEGER.

    Redundant leading zero octets are dropped and a single 0x00 is
    prepended when the first remaining byte has its high bit set, so the
    value is never read back as negative.
    """
    value = bytes(value)
    if not value:
        raise DerEncodingError("INTEGER content must contain at least one byte")
    value = value.lstrip(b"\x00") or b"\x00"
    if value[0] & 0x80:
        value = b"\x00" + value
    return tlv(TAG_INTEGER, value)


def _base128(value: int) -> bytes:
    out = [value & 0x7F]
    value >>= 7
    while value:
        out.append(0x80 | (value & 0x7F))
        value >>= 7
    return bytes(reversed(out))


def oid(dotted: str) -> bytes:
    """Encode a dotted-decimal OBJECT IDENTIFIER such as ``2.5.4.3``."""
    if not isinstance(dotted, str) or not _OID_RE.fullmatch(dotted):
        raise DerEncodingError(f"Malformed OID: {dotted!r}")
    arcs = [int(part) for part in dotted.split(".")]
    first, second = arcs[0], arcs[1]
    if first > 2:
        raise DerEncodingError(f"Malformed OID: first arc must be 0, 1 or 2 in {dotted!r}")
    if first < 2 and second > 39:
        raise DerEncodingError(f"Malformed OID: second arc must be < 40 in {dotted!r}")
    content = _base128(40 * first + second) + b"".join(_base128(arc) for arc in arcs[2:])
    return tlv(TAG_OID, content)


def printable_string(value: str) -> bytes:
    if not _PRINTABLE_RE.fullmatch(value):
        raise DerEncodingError(f"Not a PrintableString: {value!r}")
    return tlv(TAG_PRINTABLE_STRING, value.encode("ascii"))


def utc_time(moment: datetime) -> bytes:
    """Encode a datetime as UTCTime ``YYMMDDHHMMSSZ``.

    Naive datetimes are taken as UTC. Only 1950-2049 is representable with a
    two-digit year; GeneralizedTime is not supported.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    else:
        moment = moment.astimezone(timezone.utc)
    if not 1950 <= moment.year <= 2049:
        raise DerEncodingError(f"Year {moment.year} is outside the UTCTime range 1950-2049")
    return tlv(TAG_UTC_TIME, moment.strftime("%y%m%d%H%M%SZ").encode("ascii"))


def bit_string(data: bytes) -> bytes:
    # Leading byte is the unused-bits count; signatures are whole octets.
    return tlv(TAG_BIT_STRING, b"\x00" + bytes(data))


def null() -> bytes:
    return bytes([TAG_NULL, 0x00])


# ---------------------------------------------------------------------------
# Constructed types
# ---------------------------------------------------------------------------

def sequence(*children: bytes) -> bytes:
    return tlv(TAG_SEQUENCE, b"".join(children))


def set_of(*children: bytes) -> bytes:
    return tlv(TAG_SET, b"".join(children))


def explicit(tag_number: int, *children: bytes) -> bytes:
    """Wrap children in a context-specific constructed tag ``[n]``."""
    if not 0 <= tag_number <= 30:
        raise DerEncodingError(f"Unsupported context tag number: {tag_number}")
    return tlv(TAG_CONTEXT_CONSTRUCTED | tag_number, b"".join(children))


# ---------------------------------------------------------------------------
# Decoding (verification helpers)
# ---------------------------------------------------------------------------

def read_tlv(data: bytes) -> Tuple[int, bytes, bytes]:
    """Split the first TLV off ``data``.

    Returns ``(tag, content, rest)``. Only single-byte tags and definite
    lengths are accepted.
    """
    data = bytes(data)
    if len(data) < 2:
        raise DerEncodingError("Truncated TLV header")
    tag, first = data[0], data[1]
    offset = 2
    if first & 0x80:
        count = first & 0x7F
        if count == 0:
            raise DerEncodingError("Indefinite length is not allowed in DER")
        if len(data) < offset + count:
            raise DerEncodingError("Truncated long-form length")
        length = int.from_bytes(data[offset:offset + count], "big")
        offset += count
    else:
        length = first
    if len(data) < offset + length:
        raise DerEncodingError(f"Declared length {length} exceeds available {len(data) - offset} bytes")
    return tag, data[offset:offset + length], data[offset + length:]


def decode_oid(data: bytes) -> str:
    """Decode a single encoded OID TLV back to dotted-decimal form."""
    tag, content, rest = read_tlv(data)
    if tag != TAG_OID:
        raise DerEncodingError(f"Expected OID tag 0x06, got 0x{tag:02x}")
    if rest:
        raise DerEncodingError("Trailing bytes after OID")
    if not content or content[-1] & 0x80:
        raise DerEncodingError("Truncated OID subidentifier")

    subids = []
    value = 0
    for byte in content:
        value = (value << 7) | (byte & 0x7F)
        if not byte & 0x80:
            subids.append(value)
            value = 0

    head = subids[0]
    if head < 80:
        arcs = [head // 40, head % 40]
    else:
        arcs = [2, head - 80]
    arcs.extend(subids[1:])
    return ".".join(str(arc) for arc in arcs)
