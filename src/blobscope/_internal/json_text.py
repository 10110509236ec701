"""JSON text for CLI output.

``--json`` output is sorted and compact so two inspections of the same blob
can be diffed or hashed; the default text view keeps field order.
"""

import json
from typing import Any

from blobscope.kernel.render import format_json


def dumps(obj: Any, canonical: bool = False) -> str:
    """Serialize a decoded value or wire tree.

    With ``canonical``, keys are sorted at every level and separators carry no
    whitespace; non-ASCII text is written as-is. Otherwise the output is the
    indented, field-ordered form used by the text views.
    """
    if not canonical:
        return format_json(obj)
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
