"""
Field value writes.

An update replaces the single value row for (matter, field) in one
transaction. Status updates additionally append a transition to the cycle time
log when the matter already had a status row, so the log only ever records
moves between two known states.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import FieldValueError, MatterError, MatterNotFoundError, StorageError
from .field_types import FieldType, parse_field_type, slot_values
from .models import (
    CycleTimeTransition,
    FieldDefinition,
    Matter,
    MatterFieldValue,
    SelectOption,
    StatusOption,
    User,
)

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _check_field(db: Session, field_id: uuid.UUID, field_type: FieldType) -> None:
    declared = db.scalar(
        select(FieldDefinition.field_type).where(
            FieldDefinition.id == field_id,
            FieldDefinition.deleted_at.is_(None),
        )
    )
    if declared is None:
        raise FieldValueError(f"Unknown field: {field_id}")
    if declared != field_type.value:
        raise FieldValueError(
            f"Field {field_id} is declared as {declared}, not {field_type.value}"
        )


def _check_reference(
    db: Session, field_id: uuid.UUID, field_type: FieldType, values: dict[str, Any]
) -> None:
    """Referenced option / user must exist before it is stored."""
    if field_type is FieldType.SELECT and values["select_option_id"] is not None:
        found = db.scalar(
            select(SelectOption.id).where(
                SelectOption.id == values["select_option_id"],
                SelectOption.field_id == field_id,
            )
        )
        if found is None:
            raise FieldValueError("Unknown option for this field")
    elif field_type is FieldType.STATUS:
        found = db.scalar(
            select(StatusOption.id).where(
                StatusOption.id == values["status_option_id"],
                or_(StatusOption.field_id == field_id, StatusOption.field_id.is_(None)),
            )
        )
        if found is None:
            raise FieldValueError("Unknown status option")
    elif field_type is FieldType.USER and values["user_value"] is not None:
        found = db.scalar(select(User.id).where(User.id == values["user_value"]))
        if found is None:
            raise FieldValueError("Unknown user")


def _record_transition(
    db: Session,
    matter_id: uuid.UUID,
    field_id: uuid.UUID,
    to_status_id: uuid.UUID,
    actor_id: int | None,
    now: datetime,
) -> None:
    # Locks the existing status row so concurrent updates read a stable "from"
    current = db.execute(
        select(MatterFieldValue.status_option_id)
        .where(
            MatterFieldValue.matter_id == matter_id,
            MatterFieldValue.field_id == field_id,
        )
        .with_for_update()
    ).first()
    if current is None:
        return

    db.add(
        CycleTimeTransition(
            matter_id=matter_id,
            status_field_id=field_id,
            from_status_id=current.status_option_id,
            to_status_id=to_status_id,
            transitioned_at=now,
            transitioned_by=actor_id,
        )
    )


def _upsert_value(
    db: Session,
    matter_id: uuid.UUID,
    field_id: uuid.UUID,
    values: dict[str, Any],
    actor_id: int | None,
    now: datetime,
) -> None:
    dialect_name = db.get_bind().dialect.name
    insert = _UPSERT_DIALECTS.get(dialect_name)

    if insert is None:
        existing = db.scalar(
            select(MatterFieldValue)
            .where(
                MatterFieldValue.matter_id == matter_id,
                MatterFieldValue.field_id == field_id,
            )
            .with_for_update()
        )
        if existing is None:
            existing = MatterFieldValue(
                matter_id=matter_id,
                field_id=field_id,
                created_by=actor_id,
                created_at=now,
            )
            db.add(existing)
        for column, value in values.items():
            setattr(existing, column, value)
        existing.updated_by = actor_id
        existing.updated_at = now
        return

    stmt = insert(MatterFieldValue).values(
        id=uuid.uuid4(),
        matter_id=matter_id,
        field_id=field_id,
        created_by=actor_id,
        updated_by=actor_id,
        created_at=now,
        updated_at=now,
        **values,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[MatterFieldValue.matter_id, MatterFieldValue.field_id],
        set_={**values, "updated_by": actor_id, "updated_at": now},
    )
    db.execute(stmt)


def update_field(
    db: Session,
    matter_id: uuid.UUID,
    field_id: uuid.UUID,
    field_type: FieldType | str,
    value: Any,
    actor_id: int | None,
    now: datetime | None = None,
) -> None:
    """Set one field value on a matter, atomically.

    The type and value are validated before anything is written. On any
    failure the transaction is rolled back; database errors surface as
    ``StorageError``.
    """
    field_type = parse_field_type(field_type)
    if field_type is FieldType.STATUS and value is None:
        raise FieldValueError("Status fields require a status option")
    values = slot_values(field_type, value)
    now = now or datetime.now(timezone.utc)

    try:
        exists = db.scalar(
            select(Matter.id).where(Matter.id == matter_id).with_for_update()
        )
        if exists is None:
            raise MatterNotFoundError(matter_id)

        _check_field(db, field_id, field_type)
        _check_reference(db, field_id, field_type, values)

        if field_type is FieldType.STATUS:
            _record_transition(
                db, matter_id, field_id, values["status_option_id"], actor_id, now
            )

        _upsert_value(db, matter_id, field_id, values, actor_id, now)
        db.execute(update(Matter).where(Matter.id == matter_id).values(updated_at=now))
        db.commit()
    except MatterError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Error updating field %s on matter %s", field_id, matter_id)
        raise StorageError() from e

    logger.info(
        "Updated %s field %s on matter %s by user %s",
        field_type.value,
        field_id,
        matter_id,
        actor_id,
    )
