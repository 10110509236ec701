"""Column-to-type mapping: pick a message type from a sibling column's value."""

from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class ColumnTypeMapping(BaseModel):
    """A configured rule: the value of ``source_column`` selects the message type."""
    source_column: str
    value_to_type: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_pairs(cls, source_column: str, pairs) -> "ColumnTypeMapping":
        """Build from ``[{"value": ..., "type": ...}, ...]`` rows; later rows win."""
        value_to_type: Dict[str, str] = {}
        for pair in pairs:
            value_to_type[stringify_cell(pair["value"])] = pair["type"]
        return cls(source_column=source_column, value_to_type=value_to_type)


def stringify_cell(value: Any) -> str:
    """Render a cell value the way it is shown in the data grid.

    Booleans are lowercase, integral floats lose their fractional part and
    bytes are decoded as UTF-8 where possible.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def resolve_mapped_type(mapping: ColumnTypeMapping, row: Mapping[str, Any]) -> Optional[str]:
    """Return the mapped type name for ``row``, or None.

    None means: the source column is missing, its value is null, or the value
    has no mapping entry. Callers fall back to classification.
    """
    if mapping.source_column not in row:
        return None
    value = row[mapping.source_column]
    if value is None:
        return None
    return mapping.value_to_type.get(stringify_cell(value))
