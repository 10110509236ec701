"""Public API for the blobscope inspection engine.

High-level functions that return complete, tagged results. Input problems
(bad wire format, malformed descriptors, unknown type names) come back as
``ok=False`` results carrying an EngineError, never as exceptions.
"""

import base64
import binascii
import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

from blobscope.codes import DecodeErrorCode, ScanErrorCode
from blobscope.contracts import DecodeResult, EngineError, HexView, LoadResult, ScanResult
from blobscope.kernel.classifier import ClassificationResult, ScoringWeights
from blobscope.kernel.classifier import classify as _classify_records
from blobscope.kernel.decoder import decode_message
from blobscope.kernel.descriptors import DescriptorRegistry, simplify_type_name
from blobscope.kernel.errors import DescriptorLoadError, ScanError, TypeNotFoundError
from blobscope.kernel.mapping import ColumnTypeMapping, resolve_mapped_type
from blobscope.kernel.render import HEX_PREVIEW_LIMIT, format_value, hex_preview, to_jsonable
from blobscope.kernel.wire import BytesLike, scan, try_auto_decode

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_STRICT_BASE64 = re.compile(r"[A-Za-z0-9+/]+=*")
_BLOB_SAMPLE_SIZE = 100
_BLOB_BINARY_RATIO = 0.3

_PROTOBUF_MEDIA_TYPES = frozenset({
    "application/x-protobuf",
    "application/protobuf",
    "application/x-google-protobuf",
    "application/vnd.google.protobuf",
    "application/grpc",
    "application/grpc+proto",
    "application/grpc-web",
    "application/grpc-web+proto",
})

__all__ = [
    "decode_base64",
    "scan_blob",
    "scan_base64",
    "is_base64_blob",
    "is_protobuf_content_type",
    "wire_view",
    "hex_view",
    "load_descriptor",
    "message_types",
    "decode",
    "classify",
    "detect_type",
    "resolve_mapping",
    "format_value",
    "to_jsonable",
    "simplify_type_name",
    "ScanResult",
    "LoadResult",
    "DecodeResult",
    "HexView",
    "ClassificationResult",
    "ScoringWeights",
    "ColumnTypeMapping",
    "DescriptorRegistry",
]


def decode_base64(text: str) -> bytes:
    """Decode base64 transport text into blob bytes.

    Accepts the standard and URL-safe alphabets, ignores whitespace and
    restores missing padding.

    Raises:
        ScanError: INVALID_ENCODING if the text is not base64.
    """
    compact = _WHITESPACE.sub("", text)
    compact += "=" * (-len(compact) % 4)
    altchars = b"-_" if ("-" in compact or "_" in compact) else None
    try:
        return base64.b64decode(compact, altchars=altchars, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ScanError(ScanErrorCode.INVALID_ENCODING, f"not valid base64: {exc}")


def scan_blob(data: BytesLike) -> ScanResult:
    """Tokenize a blob into wire records."""
    try:
        records = scan(data)
    except ScanError as exc:
        return ScanResult(ok=False, error=EngineError.from_exception(exc))
    return ScanResult(ok=True, records=records)


def scan_base64(text: Optional[str]) -> ScanResult:
    """Tokenize a base64-encoded cell value. A missing (None) value is EMPTY_INPUT."""
    if text is None:
        return ScanResult(
            ok=False,
            error=EngineError(code=ScanErrorCode.EMPTY_INPUT.value, message="cell has no value"),
        )
    try:
        data = decode_base64(text)
    except ScanError as exc:
        return ScanResult(ok=False, error=EngineError.from_exception(exc))
    return scan_blob(data)


def is_base64_blob(value: Optional[str]) -> bool:
    """Guess whether a text cell holds base64-encoded binary rather than text.

    The value must be strict standard-alphabet base64 (padded, length a
    multiple of 4, at least 4 characters), and more than 30% of the first
    100 decoded bytes must fall outside printable ASCII.
    """
    if not isinstance(value, str) or len(value) < 4 or len(value) % 4:
        return False
    if not _STRICT_BASE64.fullmatch(value):
        return False
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    sample = decoded[:_BLOB_SAMPLE_SIZE]
    if not sample:
        return False
    binary = sum(1 for b in sample if b < 32 or b > 126)
    return binary / len(sample) > _BLOB_BINARY_RATIO


def is_protobuf_content_type(content_type: Optional[str]) -> bool:
    """True for HTTP content types that carry protobuf bodies.

    Parameters (``; charset=...``) and case are ignored.
    """
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type in _PROTOBUF_MEDIA_TYPES


def wire_view(data: BytesLike) -> Optional[Dict[str, Any]]:
    """Generic "Wire Format" tree, or None if the blob does not scan."""
    return try_auto_decode(data)


def hex_view(data: BytesLike, limit: int = HEX_PREVIEW_LIMIT) -> HexView:
    """Hex preview of the first ``limit`` bytes."""
    data = bytes(data)
    return HexView(text=hex_preview(data, limit), size=len(data), truncated=len(data) > limit)


def load_descriptor(registry: DescriptorRegistry, name: str, data: BytesLike,
                    imports: Iterable[str] = ()) -> LoadResult:
    """Load (or replace) descriptor ``name`` in ``registry``.

    A partially unresolvable descriptor still loads: ``ok`` is True and the
    unusable types are listed with their reasons.
    """
    try:
        entry = registry.load(name, data, imports=imports)
    except DescriptorLoadError as exc:
        return LoadResult(ok=False, descriptor_name=name, error=EngineError.from_exception(exc))
    return LoadResult(
        ok=True,
        descriptor_name=name,
        message_types=entry.type_names(),
        unusable_types={type_name: list(reasons) for type_name, reasons in entry.unusable.items()},
        warnings=list(entry.warnings),
    )


def message_types(registry: DescriptorRegistry, name: str) -> List[str]:
    """Qualified type names for a picker; empty when nothing is loaded under ``name``."""
    try:
        return registry.message_types(name)
    except TypeNotFoundError:
        return []


def decode(registry: DescriptorRegistry, descriptor_name: str, type_name: str,
           data: BytesLike) -> DecodeResult:
    """Decode a blob as ``type_name`` from descriptor ``descriptor_name``."""
    try:
        entry = registry.entry(descriptor_name)
        message_type = entry.resolve(type_name)
    except TypeNotFoundError as exc:
        return DecodeResult(ok=False, type_name=type_name, error=EngineError.from_exception(exc))
    if not entry.is_usable(message_type.name):
        reasons = "; ".join(entry.unusable_reasons(message_type.name))
        return DecodeResult(
            ok=False,
            type_name=message_type.name,
            error=EngineError(
                code=DecodeErrorCode.TYPE_UNRESOLVED.value,
                message=f"type '{message_type.name}' cannot be decoded: {reasons}",
            ),
        )
    try:
        records = scan(data)
    except ScanError as exc:
        return DecodeResult(ok=False, type_name=message_type.name, error=EngineError.from_exception(exc))
    value = decode_message(records, message_type, entry)
    return DecodeResult(ok=True, type_name=message_type.name, value=value, text=format_value(value))


def classify(data: BytesLike, registry: DescriptorRegistry, descriptor_name: str,
             weights: Optional[ScoringWeights] = None) -> Optional[ClassificationResult]:
    """Auto-detect the message type of a blob among a descriptor's types.

    Returns None when the blob does not scan, the descriptor is not loaded,
    or no candidate clears the confidence floor.
    """
    try:
        entry = registry.entry(descriptor_name)
        records = scan(data)
    except (ScanError, TypeNotFoundError) as exc:
        logger.debug("classification skipped: %s", exc)
        return None
    return _classify_records(records, entry, weights)


def resolve_mapping(mapping: Optional[ColumnTypeMapping],
                    row: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Mapped type name for a data row, or None when the mapping does not apply."""
    if mapping is None or row is None:
        return None
    return resolve_mapped_type(mapping, row)


def detect_type(data: BytesLike, registry: DescriptorRegistry, descriptor_name: str,
                mapping: Optional[ColumnTypeMapping] = None,
                row: Optional[Mapping[str, Any]] = None,
                weights: Optional[ScoringWeights] = None) -> Optional[str]:
    """Type for a cell: the column mapping when it applies, else auto-detection.

    The mapping is evaluated first and never looks at the blob.
    """
    mapped = resolve_mapping(mapping, row)
    if mapped is not None:
        return mapped
    result = classify(data, registry, descriptor_name, weights)
    return result.type_name if result is not None else None
