"""File I/O helpers for the CLI (internal)."""

import json
import sys
from pathlib import Path
from typing import Any, Union

from blobscope.api import decode_base64


def read_blob(path: Union[str, Path], is_base64: bool = False) -> bytes:
    """Read blob bytes from a path, or from stdin when ``path`` is '-'.

    Raises:
        ScanError: INVALID_ENCODING if ``is_base64`` and the text is not base64.
    """
    if str(path) == "-":
        data = sys.stdin.buffer.read()
    else:
        data = Path(path).read_bytes()
    if is_base64:
        return decode_base64(data.decode("ascii", errors="replace"))
    return data


def read_descriptor(path: Union[str, Path]) -> bytes:
    """Read a serialized FileDescriptorSet (e.g. from ``protoc --descriptor_set_out``)."""
    return Path(path).read_bytes()


def read_json(path: Union[str, Path]) -> Any:
    """Load a JSON document (mapping rules, row data)."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
