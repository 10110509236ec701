"""blobscope: protobuf blob inspection with or without a schema."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("blobscope")
except PackageNotFoundError:
    __version__ = "dev"

# Public API exports
# Note: the kernel is importable but blobscope.api is the supported surface
from blobscope.api import classify, decode, decode_base64, detect_type, load_descriptor, scan_blob
from blobscope.contracts import DecodeResult, EngineError, LoadResult, ScanResult
from blobscope.codes import DecodeErrorCode, LoadErrorCode, ScanErrorCode
from blobscope.kernel.descriptors import DescriptorRegistry

__all__ = [
    "__version__",
    "classify",
    "decode",
    "decode_base64",
    "detect_type",
    "load_descriptor",
    "scan_blob",
    "DecodeResult",
    "EngineError",
    "LoadResult",
    "ScanResult",
    "DecodeErrorCode",
    "LoadErrorCode",
    "ScanErrorCode",
    "DescriptorRegistry",
]
