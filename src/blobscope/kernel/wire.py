"""Schema-less protobuf wire-format scanner.

Tokenizes a blob into (field number, wire type, value) records without any
schema. Length-delimited payloads are never interpreted here: without a schema
they are ambiguous between ``bytes``, ``string`` and a nested message.

Rules:
- Empty input is a valid empty message (no records, no error)
- Field number 0 and numbers above 2^29-1 are rejected
- Group wire types (3/4) and the reserved types (6/7) are rejected
- Varints are truncated to 64 bits, as protobuf parsers do
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from blobscope.codes import ScanErrorCode
from .errors import ScanError

logger = logging.getLogger(__name__)

MAX_FIELD_NUMBER = (1 << 29) - 1
MAX_VARINT_BYTES = 10
UINT64_MASK = (1 << 64) - 1

# Nesting limit for the generic wire tree heuristic
WIRE_TREE_MAX_DEPTH = 32

BytesLike = Union[bytes, bytearray, memoryview]


class WireType(enum.IntEnum):
    """Protobuf wire types."""
    VARINT = 0
    FIXED64 = 1
    LENGTH_DELIMITED = 2
    START_GROUP = 3
    END_GROUP = 4
    FIXED32 = 5


_FIXED_WIDTH = {
    WireType.FIXED64: 8,
    WireType.FIXED32: 4,
}


@dataclass(frozen=True)
class RawRecord:
    """A single wire-format record.

    ``raw_bytes`` holds the value bytes only: the varint encoding for VARINT,
    the little-endian word for FIXED32/FIXED64 and the payload (without the
    length prefix) for LENGTH_DELIMITED. ``offset`` is where the tag starts.
    """
    field_number: int
    wire_type: WireType
    raw_bytes: bytes
    varint_value: Optional[int] = None
    offset: int = 0

    def fixed_value(self) -> int:
        """Unsigned little-endian value of a FIXED32/FIXED64 record."""
        return int.from_bytes(self.raw_bytes, "little")


def read_varint(data: bytes, pos: int) -> Tuple[int, int]:
    """Read a LEB128 varint at ``pos``.

    Returns:
        (value, position after the varint)

    Raises:
        ScanError: TRUNCATED if the buffer ends mid-varint, VARINT_OVERFLOW
            if the varint is longer than 10 bytes.
    """
    start = pos
    result = 0
    shift = 0
    while True:
        if pos - start >= MAX_VARINT_BYTES:
            raise ScanError(ScanErrorCode.VARINT_OVERFLOW, "varint longer than 10 bytes", offset=start)
        if pos >= len(data):
            raise ScanError(ScanErrorCode.TRUNCATED, "truncated varint", offset=start)
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & UINT64_MASK, pos
        shift += 7


def scan(data: BytesLike) -> List[RawRecord]:
    """Tokenize ``data`` into wire records in byte order.

    Raises:
        ScanError: if the blob is not valid wire format.
    """
    data = bytes(data)
    records: List[RawRecord] = []
    pos = 0
    end = len(data)

    while pos < end:
        tag_start = pos
        tag, pos = read_varint(data, pos)
        field_number = tag >> 3
        wire_value = tag & 0x7

        if field_number == 0 or field_number > MAX_FIELD_NUMBER:
            raise ScanError(
                ScanErrorCode.INVALID_FIELD_NUMBER,
                f"invalid field number {field_number}",
                offset=tag_start,
            )
        if wire_value in (WireType.START_GROUP, WireType.END_GROUP):
            raise ScanError(
                ScanErrorCode.INVALID_WIRE_TYPE,
                f"group wire type {wire_value} is not supported (field {field_number})",
                offset=tag_start,
            )
        if wire_value > WireType.FIXED32:
            raise ScanError(
                ScanErrorCode.INVALID_WIRE_TYPE,
                f"invalid wire type {wire_value} (field {field_number})",
                offset=tag_start,
            )
        wire_type = WireType(wire_value)

        if wire_type == WireType.VARINT:
            value_start = pos
            value, pos = read_varint(data, pos)
            records.append(RawRecord(field_number, wire_type, data[value_start:pos], value, tag_start))
        elif wire_type == WireType.LENGTH_DELIMITED:
            length, pos = read_varint(data, pos)
            if pos + length > end:
                raise ScanError(
                    ScanErrorCode.TRUNCATED,
                    f"field {field_number} declares {length} bytes, {end - pos} available",
                    offset=tag_start,
                )
            records.append(RawRecord(field_number, wire_type, data[pos:pos + length], None, tag_start))
            pos += length
        else:
            width = _FIXED_WIDTH[wire_type]
            if pos + width > end:
                raise ScanError(
                    ScanErrorCode.TRUNCATED,
                    f"field {field_number} needs {width} bytes, {end - pos} available",
                    offset=tag_start,
                )
            records.append(RawRecord(field_number, wire_type, data[pos:pos + width], None, tag_start))
            pos += width

    logger.debug("scanned %d records from %d bytes", len(records), end)
    return records


def _is_printable_text(payload: bytes) -> bool:
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return all(ch.isprintable() or ch in "\t\r\n" for ch in text)


def _interpret_payload(payload: bytes, depth: int) -> Any:
    if not payload:
        return ""
    # Printable text wins: short ASCII strings frequently scan as valid records.
    if _is_printable_text(payload):
        return payload.decode("utf-8")
    if depth < WIRE_TREE_MAX_DEPTH:
        try:
            nested = scan(payload)
        except ScanError:
            nested = None
        if nested:
            return build_wire_tree(nested, depth + 1)
    return payload.hex()


def _wire_value(record: RawRecord, depth: int) -> Any:
    if record.wire_type == WireType.VARINT:
        return record.varint_value
    if record.wire_type == WireType.LENGTH_DELIMITED:
        return _interpret_payload(record.raw_bytes, depth)
    return record.fixed_value()


def build_wire_tree(records: List[RawRecord], depth: int = 0) -> Dict[str, Any]:
    """Build the generic "Wire Format" tree for a record list.

    Keys are decimal field numbers in first-appearance order. A field number
    seen more than once maps to a list of its values in byte order.
    """
    tree: Dict[str, Any] = {}
    for record in records:
        key = str(record.field_number)
        value = _wire_value(record, depth)
        if key not in tree:
            tree[key] = value
        elif isinstance(tree[key], list):
            tree[key].append(value)
        else:
            tree[key] = [tree[key], value]
    return tree


def try_auto_decode(data: BytesLike) -> Optional[Dict[str, Any]]:
    """Scan and build the wire tree, or return None if the blob does not scan."""
    try:
        records = scan(data)
    except ScanError as exc:
        logger.debug("wire scan failed: %s", exc)
        return None
    return build_wire_tree(records)
