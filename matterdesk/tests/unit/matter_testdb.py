"""
Shared in-memory SQLite fixture for the matter engine tests.

Builds the schema from the ORM metadata and seeds a small catalog:

- status groups To Do / In Progress / Done with one option each
  (Open, Working, Closed)
- fields Status, Title, Amount, Due, Urgent, Fee, Owner, Priority, and a
  soft-deleted Archived text field
"""

import os
import sys
import uuid
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

TEST_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if TEST_ROOT not in sys.path:
    sys.path.insert(0, TEST_ROOT)

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.app.db import Base
from api.app.field_types import FieldType
from api.app.models import (
    Board,
    CycleTimeTransition,
    FieldDefinition,
    Matter,
    MatterFieldValue,
    SelectOption,
    StatusGroup,
    StatusOption,
    User,
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)

FIELD_TYPES = {
    "Status": FieldType.STATUS,
    "Title": FieldType.TEXT,
    "Amount": FieldType.NUMBER,
    "Due": FieldType.DATE,
    "Urgent": FieldType.BOOLEAN,
    "Fee": FieldType.CURRENCY,
    "Owner": FieldType.USER,
    "Priority": FieldType.SELECT,
}


def make_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


class MatterDB:
    """Schema + catalog seed with helpers for adding matters and transitions."""

    def __init__(self):
        self.engine = make_engine()
        self.Session = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)
        self.session = self.Session()
        self.board_id = uuid.uuid4()
        self.fields: dict[str, uuid.UUID] = {}
        self.groups: dict[str, uuid.UUID] = {}
        self.statuses: dict[str, uuid.UUID] = {}
        self.options: dict[str, uuid.UUID] = {}
        self.users: dict[str, int] = {}
        self._seed()

    def close(self):
        self.session.close()
        self.engine.dispose()

    def _seed(self):
        db = self.session
        db.add(Board(id=self.board_id, name="Disputes"))

        for sequence, (name, field_type) in enumerate(FIELD_TYPES.items()):
            field_id = uuid.uuid4()
            self.fields[name] = field_id
            db.add(
                FieldDefinition(
                    id=field_id, name=name, field_type=field_type.value, sequence=sequence
                )
            )
        archived_id = uuid.uuid4()
        self.fields["Archived"] = archived_id
        db.add(
            FieldDefinition(
                id=archived_id,
                name="Archived",
                field_type=FieldType.TEXT.value,
                sequence=99,
                deleted_at=T0,
            )
        )

        for sequence, (group, label) in enumerate(
            [("To Do", "Open"), ("In Progress", "Working"), ("Done", "Closed")]
        ):
            group_id = uuid.uuid4()
            option_id = uuid.uuid4()
            self.groups[group] = group_id
            self.statuses[label] = option_id
            db.add(StatusGroup(id=group_id, name=group, sequence=sequence))
            db.flush()
            db.add(
                StatusOption(
                    id=option_id,
                    field_id=self.fields["Status"],
                    group_id=group_id,
                    label=label,
                    sequence=sequence,
                )
            )

        for sequence, label in enumerate(["Low", "High"]):
            option_id = uuid.uuid4()
            self.options[label] = option_id
            db.add(
                SelectOption(
                    id=option_id,
                    field_id=self.fields["Priority"],
                    label=label,
                    sequence=sequence,
                )
            )

        for user_id, (first, last) in enumerate(
            [("Ada", "Lovelace"), ("Alan", "Turing"), ("Grace", "Hopper")], start=1
        ):
            db.add(
                User(
                    id=user_id,
                    email=f"{first.lower()}@example.com",
                    first_name=first,
                    last_name=last,
                )
            )
            self.users[first] = user_id

        db.commit()

    def add_matter(self, created_at: datetime = T0, **values) -> uuid.UUID:
        """Insert a matter and one value row per keyword (slot name -> value).

        Keywords are field names; the value goes into the slot for that
        field's type. ``Title`` may also be given as ``("string", text)`` to
        use the legacy short-text slot.
        """
        matter_id = uuid.uuid4()
        self.session.add(
            Matter(
                id=matter_id,
                board_id=self.board_id,
                created_at=created_at,
                updated_at=created_at,
            )
        )
        self.session.flush()
        for name, value in values.items():
            self.set_value(matter_id, name, value)
        self.session.commit()
        return matter_id

    def set_value(self, matter_id: uuid.UUID, name: str, value) -> None:
        row = MatterFieldValue(matter_id=matter_id, field_id=self.fields[name])
        field_type = FIELD_TYPES.get(name, FieldType.TEXT)
        if field_type is FieldType.TEXT:
            if isinstance(value, tuple):
                row.string_value = value[1]
            else:
                row.text_value = value
        elif field_type is FieldType.NUMBER:
            row.number_value = value
        elif field_type is FieldType.DATE:
            row.date_value = value
        elif field_type is FieldType.BOOLEAN:
            row.boolean_value = value
        elif field_type is FieldType.CURRENCY:
            row.currency_value = value
        elif field_type is FieldType.USER:
            row.user_value = self.users[value] if value is not None else None
        elif field_type is FieldType.SELECT:
            row.select_option_id = self.options[value] if value is not None else None
        elif field_type is FieldType.STATUS:
            row.status_option_id = self.statuses[value] if value is not None else None
        self.session.add(row)

    def add_transition(
        self,
        matter_id: uuid.UUID,
        to_label: str,
        at: datetime,
        from_label: str | None = None,
    ) -> None:
        self.session.add(
            CycleTimeTransition(
                matter_id=matter_id,
                status_field_id=self.fields["Status"],
                from_status_id=self.statuses[from_label] if from_label else None,
                to_status_id=self.statuses[to_label],
                transitioned_at=at,
                transitioned_by=1,
            )
        )
        self.session.commit()
