"""Public result models returned across the blobscope API boundary."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from blobscope.kernel.errors import InspectionError, ScanError


class EngineError(BaseModel):
    """A tagged error: callers match on ``code``, humans read ``message``."""
    code: str  # ScanErrorCode | LoadErrorCode | DecodeErrorCode value
    message: str
    offset: Optional[int] = None  # byte offset, scan errors only

    @classmethod
    def from_exception(cls, exc: InspectionError) -> "EngineError":
        offset = exc.offset if isinstance(exc, ScanError) else None
        return cls(code=getattr(exc.code, "value", exc.code), message=exc.message, offset=offset)


class ScanResult(BaseModel):
    """Result of tokenizing a blob."""
    ok: bool
    records: List[Any] = Field(default_factory=list)  # List[RawRecord]
    error: Optional[EngineError] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class LoadResult(BaseModel):
    """Result of loading a descriptor set into a registry."""
    ok: bool
    descriptor_name: str
    message_types: List[str] = Field(default_factory=list)
    unusable_types: Dict[str, List[str]] = Field(default_factory=dict)  # type -> reasons
    warnings: List[str] = Field(default_factory=list)
    error: Optional[EngineError] = None


class DecodeResult(BaseModel):
    """Result of a schema-guided decode."""
    ok: bool
    type_name: Optional[str] = None
    value: Optional[Any] = None  # Message
    text: str = ""
    error: Optional[EngineError] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class HexView(BaseModel):
    """Hex view of a blob. Building it never fails."""
    text: str
    size: int
    truncated: bool
