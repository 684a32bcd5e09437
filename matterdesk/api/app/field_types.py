"""
Field type variants for the EAV value store.

A stored value is a tagged variant: the field's declared ``FieldType`` picks
which slot of ``MatterFieldValue`` holds it. The per-type behaviour lives in
dispatch tables keyed by ``FieldType``:

- ``SLOT_RULES`` (here): which column a write targets and how the incoming
  value is coerced for it
- ``SORT_RULES`` / ``SEARCH_RULES`` in ``matter_query``
- ``EXTRACTORS`` in ``field_materializer``
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum as PyEnum
from typing import Any, Callable

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .errors import FieldValueError, UnsupportedFieldTypeError


class FieldType(str, PyEnum):
    TEXT = "text"
    NUMBER = "number"
    SELECT = "select"
    DATE = "date"
    CURRENCY = "currency"
    BOOLEAN = "boolean"
    STATUS = "status"
    USER = "user"


VALUE_SLOTS = (
    "text_value",
    "string_value",
    "number_value",
    "date_value",
    "boolean_value",
    "currency_value",
    "user_value",
    "select_option_id",
    "status_option_id",
)

BOOLEAN_GLYPHS = {True: "✓", False: "✗"}


@dataclass(frozen=True)
class FieldHandle:
    """A field name resolved to its id and declared type."""

    field_id: uuid.UUID
    field_type: FieldType
    name: str


@dataclass
class MaterializedField:
    field_id: uuid.UUID
    field_name: str
    field_type: FieldType
    value: Any
    display_value: str | None = None

    def list_value(self) -> Any:
        """Scalar used in list rows: display value when present, else raw."""
        if self.display_value is not None:
            return self.display_value
        if isinstance(self.value, datetime):
            return self.value.isoformat()
        return self.value


class CurrencyValue(BaseModel):
    amount: float
    currency: str = Field(min_length=3, max_length=3)


def parse_field_type(raw: Any) -> FieldType:
    if isinstance(raw, FieldType):
        return raw
    try:
        return FieldType(raw)
    except ValueError:
        raise UnsupportedFieldTypeError(raw)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (SQLite round trips) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_grouped_number(value: float | int) -> str:
    """Thousands-grouped rendering with at most three fraction digits."""
    number = float(value)
    if number.is_integer():
        return f"{int(number):,}"
    return f"{number:,.3f}".rstrip("0").rstrip(".")


# ---------------------------------------------------------------------------
# Write-side coercion
# ---------------------------------------------------------------------------

_datetime_adapter = TypeAdapter(datetime)


def _coerce_text(value: Any) -> str:
    if not isinstance(value, str):
        raise FieldValueError("Text fields require a string value")
    return value


def _coerce_number(value: Any) -> float:
    if isinstance(value, bool):
        raise FieldValueError("Number fields require a numeric value")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise FieldValueError("Number fields require a numeric value")
    if math.isnan(number) or math.isinf(number):
        raise FieldValueError("Number fields require a finite value")
    return number


def _coerce_date(value: Any) -> datetime:
    if isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    try:
        parsed = _datetime_adapter.validate_python(value)
    except ValidationError:
        raise FieldValueError("Date fields require an ISO 8601 date or datetime")
    return as_utc(parsed)


def _coerce_boolean(value: Any) -> bool:
    if not isinstance(value, bool):
        raise FieldValueError("Boolean fields require true or false")
    return value


def _coerce_currency(value: Any) -> dict[str, Any]:
    try:
        parsed = CurrencyValue.model_validate(value)
    except ValidationError:
        raise FieldValueError(
            "Currency fields require {amount, currency} with a 3-letter code"
        )
    if math.isnan(parsed.amount) or math.isinf(parsed.amount):
        raise FieldValueError("Currency amount must be finite")
    return {"amount": parsed.amount, "currency": parsed.currency.upper()}


def _coerce_user(value: Any) -> int:
    if isinstance(value, dict):
        value = value.get("id")
    if isinstance(value, bool):
        raise FieldValueError("User fields require a user id")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise FieldValueError("User fields require a user id")


def _coerce_reference(value: Any, key: str | None = None) -> uuid.UUID:
    if key and isinstance(value, dict):
        value = value.get(key)
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise FieldValueError("Option references must be UUIDs")


@dataclass(frozen=True)
class SlotRule:
    column: str
    coerce: Callable[[Any], Any]


SLOT_RULES: dict[FieldType, SlotRule] = {
    FieldType.TEXT: SlotRule("text_value", _coerce_text),
    FieldType.NUMBER: SlotRule("number_value", _coerce_number),
    FieldType.DATE: SlotRule("date_value", _coerce_date),
    FieldType.BOOLEAN: SlotRule("boolean_value", _coerce_boolean),
    FieldType.CURRENCY: SlotRule("currency_value", _coerce_currency),
    FieldType.USER: SlotRule("user_value", _coerce_user),
    FieldType.SELECT: SlotRule("select_option_id", _coerce_reference),
    FieldType.STATUS: SlotRule(
        "status_option_id", lambda v: _coerce_reference(v, "statusId")
    ),
}


def slot_values(field_type: FieldType, value: Any) -> dict[str, Any]:
    """Column values for a write: the type's slot set, every other slot cleared.

    ``None`` is stored as an explicit null, which is distinct from having no row.
    """
    rule = SLOT_RULES[field_type]
    values: dict[str, Any] = {slot: None for slot in VALUE_SLOTS}
    values[rule.column] = None if value is None else rule.coerce(value)
    return values
