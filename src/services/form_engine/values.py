"""Field value kinds and UI-boundary coercion.

Every field type maps to exactly one ValueKind. Engine code dispatches on
the kind instead of guessing from the Python type of whatever the UI sent.
"""

import math
from enum import Enum
from typing import Any, Dict, List, Optional

from src.domain.models.form_schema import FieldType, FieldValue, FormField


class ValueKind(str, Enum):
    """Closed set of value shapes a field can hold."""

    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    LIST = "list"


VALUE_KINDS: Dict[FieldType, ValueKind] = {
    FieldType.TEXT: ValueKind.TEXT,
    FieldType.TEXTAREA: ValueKind.TEXT,
    FieldType.EMAIL: ValueKind.TEXT,
    FieldType.URL: ValueKind.TEXT,
    FieldType.SELECT: ValueKind.TEXT,
    FieldType.RADIO: ValueKind.TEXT,
    FieldType.DATE: ValueKind.TEXT,
    FieldType.DATETIME: ValueKind.TEXT,
    FieldType.NUMBER: ValueKind.NUMBER,
    FieldType.BOOLEAN: ValueKind.BOOLEAN,
    FieldType.CHECKBOX: ValueKind.BOOLEAN,
    FieldType.MULTISELECT: ValueKind.LIST,
    # Ordered ranking of option values
    FieldType.PRIORITY: ValueKind.LIST,
    # Options the user refuses to compromise on
    FieldType.DEALBREAKER: ValueKind.LIST,
}

SINGLE_CHOICE_TYPES = frozenset({FieldType.SELECT, FieldType.RADIO})

_TRUE_STRINGS = frozenset({"true", "yes", "y", "on", "1"})
_FALSE_STRINGS = frozenset({"false", "no", "n", "off", "0"})


def value_kind(field: FormField) -> ValueKind:
    return VALUE_KINDS.get(field.type, ValueKind.TEXT)


def is_empty_value(value: Any) -> bool:
    """None, empty string and empty list count as no answer."""
    if value is None:
        return True
    if isinstance(value, str) and value == "":
        return True
    if isinstance(value, (list, tuple)) and len(value) == 0:
        return True
    return False


def as_number(value: Any) -> Optional[float]:
    """Numeric reading of ``value`` or None. Booleans are not numbers."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def coerce_field_value(field: FormField, raw: Any) -> FieldValue:
    """Convert a raw UI value into the canonical shape for ``field``.

    Values that cannot be converted are passed through unchanged so the
    validator can report them instead of silently dropping input.
    """
    if raw is None:
        return None

    kind = value_kind(field)

    if kind == ValueKind.NUMBER:
        if isinstance(raw, str) and raw.strip() == "":
            return None
        number = as_number(raw)
        if number is None:
            return raw if isinstance(raw, str) else str(raw)
        return int(number) if number.is_integer() else number

    if kind == ValueKind.BOOLEAN:
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, (int, float)) and raw in (0, 1):
            return bool(raw)
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
            if lowered == "":
                return None
        return raw if isinstance(raw, str) else str(raw)

    if kind == ValueKind.LIST:
        if isinstance(raw, (list, tuple, set)):
            return [str(item) for item in raw]
        if isinstance(raw, str):
            return [raw] if raw else []
        return [str(raw)]

    # TEXT
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (list, tuple)):
        return [str(item) for item in raw]
    return str(raw).lower() if isinstance(raw, bool) else str(raw)


def coerce_form_data(fields: List[FormField], raw: Dict[str, Any]) -> Dict[str, FieldValue]:
    """Coerce every known field in ``raw``; unknown keys are kept as-is."""
    by_id = {field.id: field for field in fields}
    coerced: Dict[str, FieldValue] = {}
    for key, value in raw.items():
        field = by_id.get(key)
        coerced[key] = coerce_field_value(field, value) if field else value
    return coerced
