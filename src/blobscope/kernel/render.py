"""Presentation formatting for decoded values and wire trees.

All functions here are pure: equal inputs give byte-identical output.
"""

import base64
import json
import math
from typing import Any, Dict, List

from .values import DecodedValue, EnumValue, MapValue, Message, Scalar, Unknown, UnknownReason
from .wire import BytesLike

# Bytes shown by the hex view before truncation
HEX_PREVIEW_LIMIT = 256
# Bytes shown inline for unknown records and bytes fields
INLINE_PREVIEW_LIMIT = 16

INDENT = "  "


def hex_preview(data: BytesLike, limit: int = HEX_PREVIEW_LIMIT) -> str:
    """Space-separated lowercase hex of the first ``limit`` bytes.

    >>> hex_preview(b"\\x08\\x96\\x01")
    '08 96 01'
    """
    data = bytes(data)
    text = " ".join(f"{b:02x}" for b in data[:limit])
    if len(data) > limit:
        text += f" ... {len(data) - limit} more bytes"
    return text


def _bytes_text(data: bytes) -> str:
    return f"<{hex_preview(data, INLINE_PREVIEW_LIMIT)}>"


def _unknown_text(value: Unknown) -> str:
    text = f"[{value.wire_type.name}] {_bytes_text(value.raw_bytes)}"
    if value.reason != UnknownReason.UNKNOWN_FIELD:
        text += f" ({value.reason.value})"
    return text


def _scalar_text(value: Scalar) -> str:
    v = value.value
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (bytes, bytearray)):
        return _bytes_text(bytes(v))
    if isinstance(v, str):
        text = json.dumps(v, ensure_ascii=False)
        return text if value.valid else f"{text} (invalid utf-8)"
    return repr(v) if isinstance(v, float) else str(v)


def _inline_text(value: DecodedValue) -> str:
    if isinstance(value, Scalar):
        return _scalar_text(value)
    if isinstance(value, EnumValue):
        return value.name if value.name is not None else str(value.number)
    if isinstance(value, Unknown):
        return _unknown_text(value)
    # Containers are never inlined; callers handle them
    return ""


def _label(name: str) -> str:
    # Unknown records are keyed by their field number
    return f"#{name}" if name.isdigit() else name


def _value_lines(label: str, value: DecodedValue, depth: int, out: List[str]) -> None:
    pad = INDENT * depth
    if isinstance(value, Message):
        if not value.fields:
            out.append(f"{pad}{label} {{}}")
            return
        out.append(f"{pad}{label} {{")
        _message_lines(value, depth + 1, out)
        out.append(f"{pad}}}")
    elif isinstance(value, MapValue):
        if not value.entries:
            out.append(f"{pad}{label} {{}}")
            return
        out.append(f"{pad}{label} {{")
        for key, item in value.entries:
            _value_lines(_inline_text(key), item, depth + 1, out)
        out.append(f"{pad}}}")
    else:
        out.append(f"{pad}{label}: {_inline_text(value)}")


def _message_lines(message: Message, depth: int, out: List[str]) -> None:
    for name, value in message.fields:
        label = _label(name)
        if isinstance(value, tuple):
            for index, item in enumerate(value):
                _value_lines(f"{label}[{index}]", item, depth, out)
        else:
            _value_lines(label, value, depth, out)


def format_value(value: DecodedValue) -> str:
    """Render a decoded value as indentation-stable text.

    A message renders as one ``name: value`` line per field, nested messages
    and maps as indented blocks, repeated fields as ``name[i]`` lines and
    unknown records as ``#<number>: [<WIRE TYPE>] <hex preview>``.
    """
    if isinstance(value, Message):
        out: List[str] = []
        _message_lines(value, 0, out)
        return "\n".join(out)
    if isinstance(value, MapValue):
        out = []
        for key, item in value.entries:
            _value_lines(_inline_text(key), item, 0, out)
        return "\n".join(out)
    return _inline_text(value)


def _json_scalar(value: Scalar) -> Any:
    v = value.value
    if isinstance(v, (bytes, bytearray)):
        return base64.b64encode(bytes(v)).decode("ascii")
    if isinstance(v, float):
        if math.isnan(v):
            return "NaN"
        if math.isinf(v):
            return "Infinity" if v > 0 else "-Infinity"
    return v


def _json_key(value: DecodedValue) -> str:
    if isinstance(value, Scalar):
        v = value.value
        if isinstance(v, bool):
            return "true" if v else "false"
        if isinstance(v, (bytes, bytearray)):
            return bytes(v).hex()
        return str(v)
    return _inline_text(value)


def to_jsonable(value: DecodedValue) -> Any:
    """Project a decoded value onto JSON-compatible types.

    Bytes become base64, non-finite floats become strings, enums become
    their name (or number) and unknown records become small objects. A field
    number that appears more than once among unknown records maps to a list.
    """
    if isinstance(value, Scalar):
        return _json_scalar(value)
    if isinstance(value, EnumValue):
        return value.name if value.name is not None else value.number
    if isinstance(value, Unknown):
        return {
            "fieldNumber": value.field_number,
            "wireType": value.wire_type.name,
            "bytes": value.raw_bytes.hex(),
            "reason": value.reason.value,
        }
    if isinstance(value, MapValue):
        return {_json_key(key): to_jsonable(item) for key, item in value.entries}
    result: Dict[str, Any] = {}
    for name, field_value in value.fields:
        if isinstance(field_value, tuple):
            projected = [to_jsonable(item) for item in field_value]
        else:
            projected = to_jsonable(field_value)
        if name not in result:
            result[name] = projected
        elif isinstance(result[name], list):
            result[name].append(projected)
        else:
            result[name] = [result[name], projected]
    return result


def format_json(obj: Any) -> str:
    """Pretty JSON text (two-space indent, insertion order, UTF-8)."""
    return json.dumps(obj, indent=2, ensure_ascii=False)
