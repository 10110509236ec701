"""Schema-guided decoder: wire records + MessageType -> typed value tree.

Decoding never raises on a bad field. A record that does not fit its field
definition degrades to an ``Unknown`` (or a best-effort scalar for invalid
UTF-8) and decoding continues with the next record. Auto-detection relies on
this: a near-match type still produces a tree that can be scored.
"""

import struct
from typing import Dict, List, Optional, Tuple

from .descriptors import DescriptorEntry, FieldDef, FieldKind, FieldLabel, MessageType
from .errors import ScanError
from .values import DecodedValue, EnumValue, MapValue, Message, Scalar, Unknown, UnknownReason
from .wire import RawRecord, WireType, read_varint, scan

# Recursion limit for nested messages
MAX_DEPTH = 64

_VARINT_KINDS = {
    FieldKind.INT32, FieldKind.INT64, FieldKind.UINT32, FieldKind.UINT64,
    FieldKind.SINT32, FieldKind.SINT64, FieldKind.BOOL, FieldKind.ENUM,
}

_FIXED_FORMATS = {
    FieldKind.FIXED32: "<I",
    FieldKind.SFIXED32: "<i",
    FieldKind.FLOAT: "<f",
    FieldKind.FIXED64: "<Q",
    FieldKind.SFIXED64: "<q",
    FieldKind.DOUBLE: "<d",
}

_FIXED32_KINDS = {FieldKind.FIXED32, FieldKind.SFIXED32, FieldKind.FLOAT}


def expected_wire_type(kind: FieldKind) -> WireType:
    """Wire type a field of ``kind`` uses when not packed."""
    if kind in _VARINT_KINDS:
        return WireType.VARINT
    if kind in _FIXED32_KINDS:
        return WireType.FIXED32
    if kind in _FIXED_FORMATS:
        return WireType.FIXED64
    return WireType.LENGTH_DELIMITED


def _signed(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    if value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


def _zigzag(value: int) -> int:
    return (value >> 1) ^ -(value & 1)


def _from_varint(kind: FieldKind, value: int):
    if kind in (FieldKind.INT32, FieldKind.ENUM):
        return _signed(value, 32)
    if kind == FieldKind.INT64:
        return _signed(value, 64)
    if kind == FieldKind.UINT32:
        return value & 0xFFFFFFFF
    if kind == FieldKind.SINT32:
        return _zigzag(value & 0xFFFFFFFF)
    if kind == FieldKind.SINT64:
        return _zigzag(value)
    if kind == FieldKind.BOOL:
        return value != 0
    return value


def _from_fixed(kind: FieldKind, raw: bytes):
    return struct.unpack(_FIXED_FORMATS[kind], raw)[0]


def _enum_value(field_def: FieldDef, number: int, types: DescriptorEntry) -> EnumValue:
    enum_type = types.find_enum(field_def.type_name or "")
    name = enum_type.value_name(number) if enum_type is not None else None
    return EnumValue(name=name, number=number)


def _varint_value(field_def: FieldDef, value: int, types: DescriptorEntry) -> DecodedValue:
    converted = _from_varint(field_def.kind, value)
    if field_def.kind == FieldKind.ENUM:
        return _enum_value(field_def, converted, types)
    return Scalar(field_def.kind, converted)


def _length_delimited_scalar(kind: FieldKind, payload: bytes) -> Scalar:
    if kind == FieldKind.BYTES:
        return Scalar(kind, payload)
    try:
        return Scalar(kind, payload.decode("utf-8"))
    except UnicodeDecodeError:
        return Scalar(kind, payload.decode("utf-8", errors="backslashreplace"), valid=False)


def _unknown(record: RawRecord, reason: UnknownReason) -> Unknown:
    return Unknown(record.field_number, record.wire_type, record.raw_bytes, reason)


# Unknown records collected outside their field slot, with the offset of their tag
_Extras = List[Tuple[int, Unknown]]


def _decode_nested(field_def: FieldDef, record: RawRecord, payload: bytes,
                   types: DescriptorEntry, depth: int) -> DecodedValue:
    nested_type = types.find_message(field_def.type_name or "")
    if nested_type is None:
        return _unknown(record, UnknownReason.UNRESOLVED_TYPE)
    if depth + 1 > MAX_DEPTH:
        return _unknown(record, UnknownReason.DEPTH_LIMIT)
    try:
        nested_records = scan(payload)
    except ScanError:
        return _unknown(record, UnknownReason.MALFORMED)
    return decode_message(nested_records, nested_type, types, depth + 1)


def _decode_record(field_def: FieldDef, record: RawRecord,
                   types: DescriptorEntry, depth: int) -> DecodedValue:
    """Decode one record whose wire type matches the field's expected wire type."""
    if record.wire_type == WireType.VARINT:
        return _varint_value(field_def, record.varint_value, types)
    if record.wire_type in (WireType.FIXED32, WireType.FIXED64):
        return Scalar(field_def.kind, _from_fixed(field_def.kind, record.raw_bytes))
    if field_def.kind == FieldKind.MESSAGE:
        return _decode_nested(field_def, record, record.raw_bytes, types, depth)
    return _length_delimited_scalar(field_def.kind, record.raw_bytes)


def _unpack(field_def: FieldDef, payload: bytes, types: DescriptorEntry) -> Optional[List[DecodedValue]]:
    """Unpack a packed repeated payload; None if it is malformed."""
    items: List[DecodedValue] = []
    wire_type = expected_wire_type(field_def.kind)
    pos = 0
    if wire_type == WireType.VARINT:
        while pos < len(payload):
            try:
                value, pos = read_varint(payload, pos)
            except ScanError:
                return None
            items.append(_varint_value(field_def, value, types))
        return items
    width = 4 if wire_type == WireType.FIXED32 else 8
    if len(payload) % width:
        return None
    for pos in range(0, len(payload), width):
        items.append(Scalar(field_def.kind, _from_fixed(field_def.kind, payload[pos:pos + width])))
    return items


def _decode_repeated(field_def: FieldDef, records: List[RawRecord],
                     types: DescriptorEntry, depth: int) -> Tuple[DecodedValue, ...]:
    expected = expected_wire_type(field_def.kind)
    items: List[DecodedValue] = []
    for record in records:
        if record.wire_type == expected:
            items.append(_decode_record(field_def, record, types, depth))
        elif record.wire_type == WireType.LENGTH_DELIMITED and field_def.kind.is_packable:
            unpacked = _unpack(field_def, record.raw_bytes, types)
            if unpacked is None:
                items.append(_unknown(record, UnknownReason.MALFORMED))
            else:
                items.extend(unpacked)
        else:
            items.append(_unknown(record, UnknownReason.WIRE_TYPE_MISMATCH))
    return tuple(items)


def _decode_singular(field_def: FieldDef, records: List[RawRecord], types: DescriptorEntry,
                     depth: int, extras: _Extras) -> DecodedValue:
    expected = expected_wire_type(field_def.kind)
    matching = [r for r in records if r.wire_type == expected]
    mismatched = [(r.offset, _unknown(r, UnknownReason.WIRE_TYPE_MISMATCH)) for r in records if r.wire_type != expected]
    if not matching:
        extras.extend(mismatched[:-1])
        return mismatched[-1][1]
    extras.extend(mismatched)
    if field_def.kind == FieldKind.MESSAGE and len(matching) > 1:
        # Repeated occurrences of a singular message merge
        payload = b"".join(r.raw_bytes for r in matching)
        merged = _decode_nested(field_def, matching[-1], payload, types, depth)
        if isinstance(merged, Unknown):
            # Keep every occurrence's bytes; the last one holds the field slot
            extras.extend((r.offset, _unknown(r, merged.reason)) for r in matching[:-1])
        return merged
    return _decode_record(field_def, matching[-1], types, depth)


def default_value(field_def: FieldDef, types: DescriptorEntry) -> DecodedValue:
    """Protobuf default for a field that is absent on the wire."""
    kind = field_def.kind
    if kind == FieldKind.MESSAGE:
        return Message(type_name=field_def.type_name or "")
    if kind == FieldKind.ENUM:
        return _enum_value(field_def, 0, types)
    if kind == FieldKind.BOOL:
        return Scalar(kind, False)
    if kind in (FieldKind.FLOAT, FieldKind.DOUBLE):
        return Scalar(kind, 0.0)
    if kind == FieldKind.STRING:
        return Scalar(kind, "")
    if kind == FieldKind.BYTES:
        return Scalar(kind, b"")
    return Scalar(kind, 0)


def _map_key(value: DecodedValue):
    if isinstance(value, Scalar):
        return (value.kind, value.value)
    return value


def _is_clean_entry(entry: Message, allowed: set) -> bool:
    return all(name in allowed and not isinstance(value, Unknown) for name, value in entry.fields)


def _decode_map(field_def: FieldDef, records: List[RawRecord], types: DescriptorEntry,
                depth: int, extras: _Extras) -> DecodedValue:
    entry_type = types.find_message(field_def.type_name or "")
    if entry_type is None:
        extras.extend((r.offset, _unknown(r, UnknownReason.UNRESOLVED_TYPE)) for r in records)
        return MapValue()
    key_def = entry_type.field_by_number(1)
    value_def = entry_type.field_by_number(2)
    allowed = {d.name for d in (key_def, value_def) if d is not None}
    pairs: Dict[object, Tuple[DecodedValue, DecodedValue]] = {}
    for record in records:
        if record.wire_type != WireType.LENGTH_DELIMITED:
            extras.append((record.offset, _unknown(record, UnknownReason.WIRE_TYPE_MISMATCH)))
            continue
        decoded = _decode_nested(field_def, record, record.raw_bytes, types, depth)
        if not isinstance(decoded, Message) or not _is_clean_entry(decoded, allowed):
            extras.append((record.offset, _unknown(record, UnknownReason.MALFORMED)))
            continue
        key = decoded.get(key_def.name) if key_def else None
        value = decoded.get(value_def.name) if value_def else None
        if key is None and key_def is not None:
            key = default_value(key_def, types)
        if value is None and value_def is not None:
            value = default_value(value_def, types)
        pairs[_map_key(key)] = (key, value)
    return MapValue(entries=tuple(pairs.values()))


def decode_message(records: List[RawRecord], message_type: MessageType,
                   types: DescriptorEntry, depth: int = 0) -> Message:
    """Decode scanned records against ``message_type``.

    Args:
        records: Records from ``wire.scan``
        message_type: Type to decode as
        types: Descriptor entry used to resolve nested message/enum references
        depth: Current nesting depth

    Returns:
        Message value; never raises for data problems.
    """
    grouped: Dict[int, List[RawRecord]] = {}
    extras: _Extras = []
    for record in records:
        if message_type.field_by_number(record.field_number) is None:
            extras.append((record.offset, _unknown(record, UnknownReason.UNKNOWN_FIELD)))
        else:
            grouped.setdefault(record.field_number, []).append(record)

    fields: List[Tuple[str, object]] = []
    for field_def in message_type.fields:
        field_records = grouped.get(field_def.number)
        if not field_records:
            continue
        if field_def.label == FieldLabel.MAP:
            value = _decode_map(field_def, field_records, types, depth, extras)
        elif field_def.label == FieldLabel.REPEATED:
            value = _decode_repeated(field_def, field_records, types, depth)
        else:
            value = _decode_singular(field_def, field_records, types, depth, extras)
        fields.append((field_def.name, value))

    # Unknown records keep their byte order
    extras.sort(key=lambda item: item[0])
    fields.extend((str(u.field_number), u) for _, u in extras)
    return Message(type_name=message_type.name, fields=tuple(fields))


def decode_bytes(data: bytes, message_type: MessageType, types: DescriptorEntry) -> Message:
    """Scan and decode in one step.

    Raises:
        ScanError: if ``data`` is not valid wire format.
    """
    return decode_message(scan(data), message_type, types)
