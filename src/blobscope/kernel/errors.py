"""Exception hierarchy raised by the inspection kernel.

The kernel raises; ``blobscope.api`` converts these into tagged results.
"""

from typing import Optional

from blobscope.codes import DecodeErrorCode, LoadErrorCode, ScanErrorCode


class InspectionError(Exception):
    """Base exception for kernel inspection errors."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{getattr(code, 'value', code)}: {message}")


class ScanError(InspectionError):
    """Raised when a byte blob cannot be tokenized as protobuf wire format."""

    def __init__(self, code: ScanErrorCode, message: str, offset: Optional[int] = None):
        self.offset = offset
        if offset is not None:
            message = f"{message} (at byte {offset})"
        super().__init__(code, message)


class DescriptorLoadError(InspectionError):
    """Raised when a descriptor payload cannot be parsed at all."""

    def __init__(self, descriptor_name: str, message: str,
                 code: LoadErrorCode = LoadErrorCode.MALFORMED_DESCRIPTOR):
        self.descriptor_name = descriptor_name
        super().__init__(code, f"descriptor '{descriptor_name}': {message}")


class TypeNotFoundError(InspectionError):
    """Raised when a descriptor or message type name does not resolve."""

    def __init__(self, name: str, code: DecodeErrorCode = DecodeErrorCode.TYPE_NOT_FOUND,
                 message: Optional[str] = None):
        self.name = name
        super().__init__(code, message or f"message type '{name}' not found")
