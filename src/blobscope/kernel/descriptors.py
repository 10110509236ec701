"""Descriptor registry: compiled schema descriptor sets indexed by message type.

A descriptor set is parsed once into immutable MessageType/EnumType models.
Each loaded set becomes one DescriptorEntry; loading the same name again
replaces the entry wholesale (copy-on-write), so readers always see either the
old or the new snapshot.

Validation rules:
- Every message/enum reference must resolve within the entry or its imports
- Types with unresolved references (directly or transitively) stay in the
  entry but are flagged unusable; unrelated types remain usable
- Map entry types are resolvable but not listed for pickers
"""

import logging
import threading
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from google.protobuf import descriptor_pb2
from google.protobuf.message import DecodeError
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from blobscope.codes import DecodeErrorCode, LoadErrorCode
from .errors import DescriptorLoadError, TypeNotFoundError

logger = logging.getLogger(__name__)

_FDP = descriptor_pb2.FieldDescriptorProto


class FieldKind(str, Enum):
    """Value kind of a field."""
    INT32 = "int32"
    INT64 = "int64"
    UINT32 = "uint32"
    UINT64 = "uint64"
    SINT32 = "sint32"
    SINT64 = "sint64"
    FIXED32 = "fixed32"
    FIXED64 = "fixed64"
    SFIXED32 = "sfixed32"
    SFIXED64 = "sfixed64"
    FLOAT = "float"
    DOUBLE = "double"
    BOOL = "bool"
    STRING = "string"
    BYTES = "bytes"
    MESSAGE = "message"
    ENUM = "enum"

    @property
    def is_scalar(self) -> bool:
        return self not in (FieldKind.MESSAGE, FieldKind.ENUM)

    @property
    def is_packable(self) -> bool:
        """Numeric kinds (and enums) may use packed encoding when repeated."""
        return self not in (FieldKind.MESSAGE, FieldKind.STRING, FieldKind.BYTES)


class FieldLabel(str, Enum):
    OPTIONAL = "optional"
    REPEATED = "repeated"
    MAP = "map"


_PROTO_SCALARS = {
    _FDP.TYPE_INT32: FieldKind.INT32,
    _FDP.TYPE_INT64: FieldKind.INT64,
    _FDP.TYPE_UINT32: FieldKind.UINT32,
    _FDP.TYPE_UINT64: FieldKind.UINT64,
    _FDP.TYPE_SINT32: FieldKind.SINT32,
    _FDP.TYPE_SINT64: FieldKind.SINT64,
    _FDP.TYPE_FIXED32: FieldKind.FIXED32,
    _FDP.TYPE_FIXED64: FieldKind.FIXED64,
    _FDP.TYPE_SFIXED32: FieldKind.SFIXED32,
    _FDP.TYPE_SFIXED64: FieldKind.SFIXED64,
    _FDP.TYPE_FLOAT: FieldKind.FLOAT,
    _FDP.TYPE_DOUBLE: FieldKind.DOUBLE,
    _FDP.TYPE_BOOL: FieldKind.BOOL,
    _FDP.TYPE_STRING: FieldKind.STRING,
    _FDP.TYPE_BYTES: FieldKind.BYTES,
}


class FieldDef(BaseModel):
    """A field definition within a MessageType."""
    number: int
    name: str
    kind: FieldKind
    label: FieldLabel = FieldLabel.OPTIONAL
    type_name: Optional[str] = None  # qualified message/enum reference, no leading dot

    model_config = ConfigDict(frozen=True)

    @property
    def is_repeated(self) -> bool:
        return self.label in (FieldLabel.REPEATED, FieldLabel.MAP)


class EnumType(BaseModel):
    """An enum definition. Aliased numbers keep their first declared name."""
    name: str
    values: Dict[int, str]

    model_config = ConfigDict(frozen=True)

    def value_name(self, number: int) -> Optional[str]:
        return self.values.get(number)


class MessageType(BaseModel):
    """A message definition with fields in declaration order."""
    name: str  # qualified, e.g. "pkg.Outer.Inner"
    package: str = ""
    fields: Tuple[FieldDef, ...] = Field(default_factory=tuple)
    is_map_entry: bool = False

    model_config = ConfigDict(frozen=True)

    _by_number: Dict[int, FieldDef] = PrivateAttr(default_factory=dict)

    @field_validator("fields")
    @classmethod
    def validate_unique_numbers(cls, v: Tuple[FieldDef, ...]) -> Tuple[FieldDef, ...]:
        """Field numbers are unique within one message."""
        seen = set()
        for f in v:
            if f.number in seen:
                raise ValueError(f"duplicate field number {f.number}")
            seen.add(f.number)
        return v

    def model_post_init(self, context: Any) -> None:
        self._by_number = {f.number: f for f in self.fields}

    def field_by_number(self, number: int) -> Optional[FieldDef]:
        return self._by_number.get(number)

    @property
    def simple_name(self) -> str:
        return simplify_type_name(self.name)


class DescriptorEntry(BaseModel):
    """One loaded descriptor set. Read-only after construction."""
    descriptor_name: str
    message_types: Dict[str, MessageType]
    enum_types: Dict[str, EnumType] = Field(default_factory=dict)
    unusable: Dict[str, Tuple[str, ...]] = Field(default_factory=dict)  # type -> reasons
    warnings: Tuple[str, ...] = Field(default_factory=tuple)
    imports: Tuple[str, ...] = Field(default_factory=tuple)
    imported_message_types: Dict[str, MessageType] = Field(default_factory=dict)
    imported_enum_types: Dict[str, EnumType] = Field(default_factory=dict)
    imported_unusable: Dict[str, Tuple[str, ...]] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    def type_names(self) -> List[str]:
        """Listed message types: declaration order, grouped by package.

        Map entry types are excluded.
        """
        package_order: Dict[str, int] = {}
        for mt in self.message_types.values():
            package_order.setdefault(mt.package, len(package_order))
        listed = [mt for mt in self.message_types.values() if not mt.is_map_entry]
        # sorted() is stable, so declaration order holds within a package
        listed = sorted(listed, key=lambda mt: package_order[mt.package])
        return [mt.name for mt in listed]

    def find_message(self, type_name: str) -> Optional[MessageType]:
        name = type_name.lstrip(".")
        found = self.message_types.get(name)
        if found is None:
            found = self.imported_message_types.get(name)
        return found

    def find_enum(self, type_name: str) -> Optional[EnumType]:
        name = type_name.lstrip(".")
        found = self.enum_types.get(name)
        if found is None:
            found = self.imported_enum_types.get(name)
        return found

    def is_usable(self, type_name: str) -> bool:
        """False for types flagged here or by the entry that defines them."""
        name = type_name.lstrip(".")
        return name not in self.unusable and name not in self.imported_unusable

    def unusable_reasons(self, type_name: str) -> Tuple[str, ...]:
        name = type_name.lstrip(".")
        return self.unusable.get(name) or self.imported_unusable.get(name, ())

    def resolve(self, type_name: str) -> MessageType:
        """Resolve a type name to a MessageType.

        Accepts the qualified name with or without a leading dot; when nothing
        matches exactly, a simple name that identifies exactly one listed type.

        Raises:
            TypeNotFoundError: no type (or more than one type) matches.
        """
        found = self.find_message(type_name)
        if found is not None:
            return found
        simple = type_name.lstrip(".")
        candidates = [
            mt for mt in self.message_types.values()
            if not mt.is_map_entry and mt.simple_name == simple
        ]
        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            names = ", ".join(mt.name for mt in candidates)
            raise TypeNotFoundError(
                type_name,
                message=f"message type '{type_name}' is ambiguous in '{self.descriptor_name}': {names}",
            )
        raise TypeNotFoundError(
            type_name,
            message=f"message type '{type_name}' not found in '{self.descriptor_name}'",
        )


def simplify_type_name(full_name: str) -> str:
    """Keep only the part after the last dot: 'pkg.Outer.Inner' -> 'Inner'."""
    return full_name.rsplit(".", 1)[-1]


class _EntryBuilder:
    """Turns a FileDescriptorSet into a DescriptorEntry."""

    def __init__(self, descriptor_name: str, imported: Sequence[DescriptorEntry]):
        self.descriptor_name = descriptor_name
        self.imported_messages: Dict[str, MessageType] = {}
        self.imported_enums: Dict[str, EnumType] = {}
        self.imported_unusable: Dict[str, Tuple[str, ...]] = {}
        for entry in imported:
            self.imported_messages.update(entry.imported_message_types)
            self.imported_messages.update(entry.message_types)
            self.imported_enums.update(entry.imported_enum_types)
            self.imported_enums.update(entry.enum_types)
            self.imported_unusable.update(entry.imported_unusable)
            self.imported_unusable.update(entry.unusable)
        # qualified name -> (package, DescriptorProto)
        self.raw_messages: Dict[str, Tuple[str, descriptor_pb2.DescriptorProto]] = {}
        self.enums: Dict[str, EnumType] = {}
        self.warnings: List[str] = []
        self.reasons: Dict[str, List[str]] = {}

    def collect(self, fds: descriptor_pb2.FileDescriptorSet) -> None:
        for file_proto in fds.file:
            package = file_proto.package
            prefix = f"{package}." if package else ""
            for enum_proto in file_proto.enum_type:
                self._add_enum(prefix + enum_proto.name, enum_proto)
            for msg_proto in file_proto.message_type:
                self._collect_message(prefix + msg_proto.name, package, msg_proto)

    def _add_enum(self, qualified: str, enum_proto: descriptor_pb2.EnumDescriptorProto) -> None:
        values: Dict[int, str] = {}
        for value in enum_proto.value:
            values.setdefault(value.number, value.name)
        self.enums[qualified] = EnumType(name=qualified, values=values)

    def _collect_message(self, qualified: str, package: str,
                         msg_proto: descriptor_pb2.DescriptorProto) -> None:
        self.raw_messages[qualified] = (package, msg_proto)
        for enum_proto in msg_proto.enum_type:
            self._add_enum(f"{qualified}.{enum_proto.name}", enum_proto)
        for nested in msg_proto.nested_type:
            self._collect_message(f"{qualified}.{nested.name}", package, nested)

    def _is_message(self, name: str) -> bool:
        return name in self.raw_messages or name in self.imported_messages

    def _is_enum(self, name: str) -> bool:
        return name in self.enums or name in self.imported_enums

    def _lookup_reference(self, scope: str, type_name: str) -> Optional[str]:
        """Resolve a type reference using protobuf scoping rules."""
        if type_name.startswith("."):
            name = type_name[1:]
            return name if self._is_message(name) or self._is_enum(name) else None
        parts = scope.split(".") if scope else []
        while True:
            candidate = ".".join(parts + [type_name])
            if self._is_message(candidate) or self._is_enum(candidate):
                return candidate
            if not parts:
                return None
            parts.pop()

    def _is_map_entry_type(self, name: str) -> bool:
        if name in self.raw_messages:
            return self.raw_messages[name][1].options.map_entry
        imported = self.imported_messages.get(name)
        return imported is not None and imported.is_map_entry

    def _convert_field(self, owner: str, field_proto: _FDP) -> Optional[FieldDef]:
        label = FieldLabel.REPEATED if field_proto.label == _FDP.LABEL_REPEATED else FieldLabel.OPTIONAL
        if field_proto.type == _FDP.TYPE_GROUP:
            self.warnings.append(f"{owner}.{field_proto.name}: group fields are not supported")
            return None
        if field_proto.type in _PROTO_SCALARS:
            return FieldDef(number=field_proto.number, name=field_proto.name,
                            kind=_PROTO_SCALARS[field_proto.type], label=label)

        resolved = self._lookup_reference(owner, field_proto.type_name)
        if resolved is None:
            self.reasons.setdefault(owner, []).append(
                f"field '{field_proto.name}' references unknown type '{field_proto.type_name}'"
            )
            kind = FieldKind.ENUM if field_proto.type == _FDP.TYPE_ENUM else FieldKind.MESSAGE
            return FieldDef(number=field_proto.number, name=field_proto.name, kind=kind,
                            label=label, type_name=field_proto.type_name.lstrip("."))

        if field_proto.type == _FDP.TYPE_ENUM or (not field_proto.HasField("type") and self._is_enum(resolved)):
            kind = FieldKind.ENUM
        else:
            kind = FieldKind.MESSAGE
            if label == FieldLabel.REPEATED and self._is_map_entry_type(resolved):
                label = FieldLabel.MAP
        return FieldDef(number=field_proto.number, name=field_proto.name, kind=kind,
                        label=label, type_name=resolved)

    def _build_message(self, qualified: str, package: str,
                       msg_proto: descriptor_pb2.DescriptorProto) -> MessageType:
        fields: List[FieldDef] = []
        seen_numbers = set()
        for field_proto in msg_proto.field:
            field_def = self._convert_field(qualified, field_proto)
            if field_def is None:
                continue
            if field_def.number in seen_numbers:
                self.reasons.setdefault(qualified, []).append(
                    f"duplicate field number {field_def.number} ('{field_def.name}')"
                )
                continue
            seen_numbers.add(field_def.number)
            fields.append(field_def)
        return MessageType(
            name=qualified,
            package=package,
            fields=tuple(fields),
            is_map_entry=msg_proto.options.map_entry,
        )

    def _propagate_unusable(self, messages: Dict[str, MessageType]) -> None:
        """Flag types that reference unusable types, until nothing changes."""
        changed = True
        while changed:
            changed = False
            for name, mt in messages.items():
                if name in self.reasons:
                    continue
                for f in mt.fields:
                    if f.kind != FieldKind.MESSAGE:
                        continue
                    if f.type_name in self.reasons or f.type_name in self.imported_unusable:
                        self.reasons[name] = [
                            f"field '{f.name}' references unusable type '{f.type_name}'"
                        ]
                        changed = True
                        break

    def build(self, imports: Tuple[str, ...]) -> DescriptorEntry:
        messages = {
            name: self._build_message(name, package, msg_proto)
            for name, (package, msg_proto) in self.raw_messages.items()
        }
        self._propagate_unusable(messages)
        return DescriptorEntry(
            descriptor_name=self.descriptor_name,
            message_types=messages,
            enum_types=self.enums,
            unusable={name: tuple(reasons) for name, reasons in self.reasons.items()},
            warnings=tuple(self.warnings),
            imports=imports,
            imported_message_types=self.imported_messages,
            imported_enum_types=self.imported_enums,
            imported_unusable=self.imported_unusable,
        )


def build_entry(descriptor_name: str, fds: descriptor_pb2.FileDescriptorSet,
                imported: Sequence[DescriptorEntry] = ()) -> DescriptorEntry:
    """Build a DescriptorEntry from a parsed FileDescriptorSet (pure)."""
    builder = _EntryBuilder(descriptor_name, imported)
    builder.collect(fds)
    return builder.build(tuple(e.descriptor_name for e in imported))


def parse_descriptor_set(descriptor_name: str,
                         data: Union[bytes, bytearray, memoryview]) -> descriptor_pb2.FileDescriptorSet:
    """Parse serialized FileDescriptorSet bytes.

    Raises:
        DescriptorLoadError: MALFORMED_DESCRIPTOR if the payload does not parse
            or defines no files.
    """
    try:
        fds = descriptor_pb2.FileDescriptorSet.FromString(bytes(data))
    except DecodeError as exc:
        raise DescriptorLoadError(descriptor_name, f"not a FileDescriptorSet: {exc}")
    if not fds.file:
        raise DescriptorLoadError(descriptor_name, "descriptor set contains no files")
    return fds


class DescriptorRegistry:
    """Registry of loaded descriptor sets keyed by a caller-chosen name.

    Writers are serialized; readers never lock. Every write swaps in a new
    entries mapping, so a reader holding the old mapping keeps a consistent
    snapshot.
    """

    def __init__(self):
        self._entries: Dict[str, DescriptorEntry] = {}
        self._write_lock = threading.Lock()

    def load(self, name: str, data: Union[bytes, bytearray, memoryview],
             imports: Iterable[str] = ()) -> DescriptorEntry:
        """Parse and register a descriptor set, replacing any entry with the same name.

        Args:
            name: Caller-chosen descriptor name
            data: Serialized FileDescriptorSet
            imports: Names of already-loaded entries whose types may be referenced

        Returns:
            The new DescriptorEntry

        Raises:
            DescriptorLoadError: malformed payload, or an import name that is not loaded
        """
        fds = parse_descriptor_set(name, data)
        with self._write_lock:
            imported = []
            for import_name in imports:
                if import_name not in self._entries:
                    raise DescriptorLoadError(
                        name,
                        f"imported descriptor '{import_name}' is not loaded",
                        code=LoadErrorCode.UNRESOLVED_REFERENCE,
                    )
                imported.append(self._entries[import_name])
            entry = build_entry(name, fds, imported)
            entries = dict(self._entries)
            entries[name] = entry
            self._entries = entries

        logger.info("loaded descriptor '%s': %d message types", name, len(entry.message_types))
        for type_name, reasons in entry.unusable.items():
            logger.warning("descriptor '%s': type '%s' is unusable: %s", name, type_name, "; ".join(reasons))
        for warning in entry.warnings:
            logger.warning("descriptor '%s': %s", name, warning)
        return entry

    def remove(self, name: str) -> bool:
        """Drop an entry. Returns False if no entry had that name."""
        with self._write_lock:
            if name not in self._entries:
                return False
            entries = dict(self._entries)
            del entries[name]
            self._entries = entries
        return True

    def names(self) -> List[str]:
        return list(self._entries)

    def entry(self, name: str) -> DescriptorEntry:
        """Snapshot of one entry.

        Raises:
            TypeNotFoundError: DESCRIPTOR_NOT_FOUND if nothing is loaded under ``name``.
        """
        entry = self._entries.get(name)
        if entry is None:
            raise TypeNotFoundError(
                name,
                code=DecodeErrorCode.DESCRIPTOR_NOT_FOUND,
                message=f"descriptor '{name}' is not loaded",
            )
        return entry

    def message_types(self, name: str) -> List[str]:
        """Qualified message type names of a descriptor (declaration order, grouped by package)."""
        return self.entry(name).type_names()

    def resolve(self, name: str, type_name: str) -> MessageType:
        """Resolve ``type_name`` within descriptor ``name``."""
        return self.entry(name).resolve(type_name)
