"""Per-cell inspection state machine.

A cell moves Idle -> Detecting -> Decoded | Failed. Each transition is an
explicit call on an immutable CellRequest; nothing is recomputed implicitly.

Type-source precedence for the decoded view:
- descriptor disabled (or none configured): no type, wire view
- manual selection
- column mapping (never inspects the blob)
- auto-detection; when nothing clears the floor, wire view
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from blobscope.codes import DecodeErrorCode, ScanErrorCode
from blobscope.contracts import EngineError
from blobscope.kernel.classifier import ScoringWeights, classify
from blobscope.kernel.decoder import decode_message
from blobscope.kernel.descriptors import DescriptorRegistry
from blobscope.kernel.errors import ScanError, TypeNotFoundError
from blobscope.kernel.mapping import ColumnTypeMapping, resolve_mapped_type
from blobscope.kernel.render import format_json, format_value, hex_preview
from blobscope.kernel.wire import build_wire_tree, scan


class ViewMode(str, Enum):
    DECODED = "decoded"
    WIRE = "wire"
    HEX = "hex"


class TypeSource(str, Enum):
    MANUAL = "manual"
    MAPPING = "mapping"
    AUTO = "auto"
    WIRE = "wire"  # no type; generic wire tree


class CellRequest(BaseModel):
    """Everything needed to inspect one cell."""
    value: Optional[bytes] = None  # None for a NULL cell
    descriptor_name: Optional[str] = None
    mapping: Optional[ColumnTypeMapping] = None
    row: Dict[str, Any] = Field(default_factory=dict)
    manual_type: Optional[str] = None
    descriptor_disabled: bool = False
    view_mode: ViewMode = ViewMode.DECODED
    weights: ScoringWeights = Field(default_factory=ScoringWeights)

    model_config = ConfigDict(frozen=True)


@dataclass(frozen=True)
class Idle:
    """Nothing to inspect."""


@dataclass(frozen=True)
class Detecting:
    """Inspection started; ``needs_classification`` when auto-detection will run."""
    descriptor_name: Optional[str]
    needs_classification: bool


@dataclass(frozen=True)
class Decoded:
    view_mode: ViewMode
    source: TypeSource
    type_name: Optional[str]
    value: Any  # Message, wire tree dict, or hex text
    text: str  # copyable rendering
    confidence: Optional[float] = None


@dataclass(frozen=True)
class Failed:
    error: EngineError


CellState = Union[Idle, Detecting, Decoded, Failed]


def select_type_source(request: CellRequest) -> Tuple[Optional[str], TypeSource]:
    """Pick the type for the decoded view without touching the blob.

    Returns (type name, source). Source AUTO means classification must run;
    WIRE means no schema decoding at all.
    """
    if request.descriptor_disabled or not request.descriptor_name:
        return None, TypeSource.WIRE
    if request.manual_type:
        return request.manual_type, TypeSource.MANUAL
    if request.mapping is not None:
        mapped = resolve_mapped_type(request.mapping, request.row)
        if mapped is not None:
            return mapped, TypeSource.MAPPING
    return None, TypeSource.AUTO


def begin(request: CellRequest) -> CellState:
    """Idle for a NULL cell, otherwise Detecting."""
    if request.value is None:
        return Idle()
    _, source = select_type_source(request)
    needs_classification = request.view_mode == ViewMode.DECODED and source == TypeSource.AUTO
    return Detecting(descriptor_name=request.descriptor_name, needs_classification=needs_classification)


def _wire_state(records) -> Decoded:
    tree = build_wire_tree(records)
    return Decoded(ViewMode.WIRE, TypeSource.WIRE, None, tree, format_json(tree))


def complete(request: CellRequest, registry: DescriptorRegistry) -> Union[Decoded, Failed]:
    """Run the inspection for ``request`` against a registry snapshot."""
    if request.value is None:
        return Failed(EngineError(code=ScanErrorCode.EMPTY_INPUT.value, message="cell has no value"))
    data = request.value

    if request.view_mode == ViewMode.HEX:
        text = hex_preview(data)
        return Decoded(ViewMode.HEX, TypeSource.WIRE, None, text, text)

    try:
        records = scan(data)
    except ScanError as exc:
        return Failed(EngineError.from_exception(exc))

    type_name, source = select_type_source(request)
    if request.view_mode == ViewMode.WIRE or source == TypeSource.WIRE:
        return _wire_state(records)

    try:
        entry = registry.entry(request.descriptor_name)
    except TypeNotFoundError as exc:
        return Failed(EngineError.from_exception(exc))

    if source == TypeSource.AUTO:
        result = classify(records, entry, request.weights)
        if result is None:
            return _wire_state(records)
        return Decoded(ViewMode.DECODED, TypeSource.AUTO, result.type_name, result.decoded,
                       format_value(result.decoded), result.confidence)

    try:
        message_type = entry.resolve(type_name)
    except TypeNotFoundError as exc:
        return Failed(EngineError.from_exception(exc))
    if not entry.is_usable(message_type.name):
        return Failed(EngineError(
            code=DecodeErrorCode.TYPE_UNRESOLVED.value,
            message=f"type '{message_type.name}' cannot be decoded: "
                    + "; ".join(entry.unusable_reasons(message_type.name)),
        ))
    decoded = decode_message(records, message_type, entry)
    return Decoded(ViewMode.DECODED, source, message_type.name, decoded, format_value(decoded))


def inspect(request: CellRequest, registry: DescriptorRegistry) -> CellState:
    """Run both transitions: Idle for a NULL cell, else the completed state."""
    state = begin(request)
    if isinstance(state, Idle):
        return state
    return complete(request, registry)
