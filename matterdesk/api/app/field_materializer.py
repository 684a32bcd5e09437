"""
Batched reconstruction of per-matter field maps.

One query loads every value row for the requested matters together with the
user, select-option and status-option/group rows needed to render them, then
each row is turned into a ``MaterializedField`` by the extractor for its
declared type. A matter with no row for a field has no entry in its map.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Iterable

from sqlalchemy import select
from sqlalchemy.engine import Row
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import StorageError
from .field_types import (
    BOOLEAN_GLYPHS,
    FieldType,
    MaterializedField,
    as_utc,
    format_grouped_number,
)
from .models import (
    FieldDefinition,
    MatterFieldValue,
    SelectOption,
    StatusGroup,
    StatusOption,
    User,
)

logger = logging.getLogger(__name__)

FieldMap = dict[str, MaterializedField]


def _extract_text(row: Row) -> tuple[Any, str | None]:
    value = row.text_value if row.text_value is not None else row.string_value
    return value, None


def _extract_number(row: Row) -> tuple[Any, str | None]:
    if row.number_value is None:
        return None, None
    value = float(row.number_value)
    return value, format_grouped_number(value)


def _extract_date(row: Row) -> tuple[Any, str | None]:
    # Formatting is left to the consumer; the display value is the ISO string.
    value = as_utc(row.date_value)
    return value, value.isoformat() if value is not None else None


def _extract_boolean(row: Row) -> tuple[Any, str | None]:
    if row.boolean_value is None:
        return None, None
    return row.boolean_value, BOOLEAN_GLYPHS[bool(row.boolean_value)]


def _extract_currency(row: Row) -> tuple[Any, str | None]:
    currency = row.currency_value
    if not currency:
        return None, None
    amount = currency.get("amount")
    code = currency.get("currency")
    if amount is None:
        return currency, None
    return currency, f"{format_grouped_number(amount)} {code}"


def _extract_user(row: Row) -> tuple[Any, str | None]:
    if row.user_id is None:
        return None, None
    display_name = f"{row.user_first_name} {row.user_last_name}"
    value = {
        "id": row.user_id,
        "email": row.user_email,
        "firstName": row.user_first_name,
        "lastName": row.user_last_name,
        "displayName": display_name,
    }
    return value, display_name


def _extract_select(row: Row) -> tuple[Any, str | None]:
    if row.select_option_id is None:
        return None, None
    return str(row.select_option_id), row.select_option_label


def _extract_status(row: Row) -> tuple[Any, str | None]:
    if row.status_option_id is None:
        return None, None
    # groupName feeds the SLA calculation downstream
    value = {
        "statusId": str(row.status_option_id),
        "groupName": row.status_group_name,
    }
    return value, row.status_option_label


EXTRACTORS: dict[FieldType, Callable[[Row], tuple[Any, str | None]]] = {
    FieldType.TEXT: _extract_text,
    FieldType.NUMBER: _extract_number,
    FieldType.DATE: _extract_date,
    FieldType.BOOLEAN: _extract_boolean,
    FieldType.CURRENCY: _extract_currency,
    FieldType.USER: _extract_user,
    FieldType.SELECT: _extract_select,
    FieldType.STATUS: _extract_status,
}


def _field_values_query(matter_ids: list[uuid.UUID]):
    return (
        select(
            MatterFieldValue.matter_id,
            MatterFieldValue.field_id,
            FieldDefinition.name.label("field_name"),
            FieldDefinition.field_type,
            MatterFieldValue.text_value,
            MatterFieldValue.string_value,
            MatterFieldValue.number_value,
            MatterFieldValue.date_value,
            MatterFieldValue.boolean_value,
            MatterFieldValue.currency_value,
            MatterFieldValue.select_option_id,
            MatterFieldValue.status_option_id,
            User.id.label("user_id"),
            User.email.label("user_email"),
            User.first_name.label("user_first_name"),
            User.last_name.label("user_last_name"),
            SelectOption.label.label("select_option_label"),
            StatusOption.label.label("status_option_label"),
            StatusGroup.name.label("status_group_name"),
        )
        .join(FieldDefinition, MatterFieldValue.field_id == FieldDefinition.id)
        .outerjoin(User, MatterFieldValue.user_value == User.id)
        .outerjoin(SelectOption, MatterFieldValue.select_option_id == SelectOption.id)
        .outerjoin(StatusOption, MatterFieldValue.status_option_id == StatusOption.id)
        .outerjoin(StatusGroup, StatusOption.group_id == StatusGroup.id)
        .where(
            MatterFieldValue.matter_id.in_(matter_ids),
            FieldDefinition.deleted_at.is_(None),
        )
    )


def materialize_fields(
    db: Session, matter_ids: Iterable[uuid.UUID]
) -> dict[uuid.UUID, FieldMap]:
    """Typed, display-ready field maps for ``matter_ids`` in one query."""
    ids = list(dict.fromkeys(matter_ids))
    if not ids:
        return {}

    try:
        rows = db.execute(_field_values_query(ids)).all()
    except SQLAlchemyError as e:
        logger.exception("Error materializing fields for %s matters", len(ids))
        raise StorageError() from e

    fields_by_matter: dict[uuid.UUID, FieldMap] = {}
    for row in rows:
        try:
            field_type = FieldType(row.field_type)
        except ValueError:
            logger.warning(
                "Skipping field %s with unrecognised type %s",
                row.field_name,
                row.field_type,
            )
            continue

        value, display_value = EXTRACTORS[field_type](row)
        fields_by_matter.setdefault(row.matter_id, {})[row.field_name] = (
            MaterializedField(
                field_id=row.field_id,
                field_name=row.field_name,
                field_type=field_type,
                value=value,
                display_value=display_value,
            )
        )

    return fields_by_matter
