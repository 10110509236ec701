"""Typed value tree produced by the schema decoder."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple, Union

from .descriptors import FieldKind
from .wire import WireType


class UnknownReason(str, Enum):
    """Why a record was surfaced as Unknown instead of a typed value."""
    UNKNOWN_FIELD = "unknown_field"  # field number not in the message type
    WIRE_TYPE_MISMATCH = "wire_type_mismatch"
    MALFORMED = "malformed"  # payload does not scan or unpack
    UNRESOLVED_TYPE = "unresolved_type"
    DEPTH_LIMIT = "depth_limit"


@dataclass(frozen=True)
class Scalar:
    """A scalar value. ``valid`` is False for strings that were not valid UTF-8."""
    kind: FieldKind
    value: Any
    valid: bool = True


@dataclass(frozen=True)
class EnumValue:
    """An enum value; ``name`` is None when the number has no declared name."""
    name: Optional[str]
    number: int


@dataclass(frozen=True)
class Unknown:
    """A record the decoder could not type. Never dropped."""
    field_number: int
    wire_type: WireType
    raw_bytes: bytes
    reason: UnknownReason = UnknownReason.UNKNOWN_FIELD


@dataclass(frozen=True)
class MapValue:
    """A map field: (key, value) pairs in first-appearance order, last write wins."""
    entries: Tuple[Tuple["DecodedValue", "DecodedValue"], ...] = ()


@dataclass(frozen=True)
class Message:
    """A decoded message.

    ``fields`` holds (name, value) pairs: known fields in declaration order,
    then unknown records keyed by their decimal field number. Repeated fields
    hold a tuple of values.
    """
    type_name: str
    fields: Tuple[Tuple[str, Union["DecodedValue", Tuple["DecodedValue", ...]]], ...] = ()

    def get(self, name: str, default: Any = None) -> Any:
        for field_name, value in self.fields:
            if field_name == name:
                return value
        return default

    def field_names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.fields)


DecodedValue = Union[Scalar, EnumValue, Message, MapValue, Unknown]
