"""Textual snapshots of entity field values for audit records.

Values are written as ``{ "name":value, "other":"text" }``.  Numbers are
unquoted, ``None`` is ``null`` and everything else is its ``str()`` wrapped in
double quotes.  Embedded quotes and control characters are written as-is:
existing audit history uses this format, so it is not escaped.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Mapping

from sqlalchemy import inspect
from sqlalchemy.exc import NoInspectionAvailable

# Every empty snapshot (added ``from``, deleted ``to``, keyless identity)
# renders as this literal.
EMPTY_OBJECT = "{  }"


def is_number(value: Any) -> bool:
    """Return True for integer, float and decimal values (``bool`` excluded)."""
    if isinstance(value, bool):
        return False
    return isinstance(value, (int, float, Decimal))


def format_value(value: Any) -> str:
    if value is None:
        return "null"
    if is_number(value):
        return str(value)
    return f'"{value}"'


def _render(pairs: Iterable[tuple[str, Any]]) -> str:
    body = ", ".join(f'"{name}":{format_value(value)}' for name, value in pairs)
    return f"{{ {body} }}"


def serialize_values(values: Mapping[str, Any] | None) -> str:
    """Serialize *values* in their iteration order.

    ``None`` and empty mappings both give :data:`EMPTY_OBJECT`.
    """
    if not values:
        return EMPTY_OBJECT
    return _render(values.items())


def key_fields(entity_type) -> list[str]:
    """Return the attribute names of *entity_type*'s primary-key columns.

    Unmapped types have no key fields.
    """
    try:
        mapper = inspect(entity_type)
    except NoInspectionAvailable:
        return []
    return [mapper.get_property_by_column(column).key for column in mapper.primary_key]


def extract_identity(entity_type, values: Mapping[str, Any] | None) -> str:
    """Serialize only the primary-key fields of *values*."""
    fields = key_fields(entity_type)
    if not fields:
        return EMPTY_OBJECT
    values = values or {}
    return _render((name, values.get(name)) for name in fields)
