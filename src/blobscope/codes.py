"""Error code constants for the blobscope engine.

These constants prevent stringly-typed error codes and ensure
client code matches on the codes the engine actually emits.
"""

from enum import Enum


class ScanErrorCode(str, Enum):
    """Structural wire-format errors (the blob cannot be tokenized)."""

    TRUNCATED = "TRUNCATED"
    INVALID_WIRE_TYPE = "INVALID_WIRE_TYPE"
    EMPTY_INPUT = "EMPTY_INPUT"

    # Extended structural checks
    INVALID_FIELD_NUMBER = "INVALID_FIELD_NUMBER"
    VARINT_OVERFLOW = "VARINT_OVERFLOW"
    INVALID_ENCODING = "INVALID_ENCODING"


class LoadErrorCode(str, Enum):
    """Descriptor registry errors."""

    MALFORMED_DESCRIPTOR = "MALFORMED_DESCRIPTOR"
    UNRESOLVED_REFERENCE = "UNRESOLVED_REFERENCE"


class DecodeErrorCode(str, Enum):
    """Schema-guided decode errors."""

    TYPE_NOT_FOUND = "TYPE_NOT_FOUND"
    TYPE_UNRESOLVED = "TYPE_UNRESOLVED"
    DESCRIPTOR_NOT_FOUND = "DESCRIPTOR_NOT_FOUND"
