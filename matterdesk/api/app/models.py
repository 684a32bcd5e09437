from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    String,
    DateTime,
    Text,
    JSON,
    Integer,
    ForeignKey,
    Boolean,
    Index,
    Numeric,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship, Mapped, mapped_column
from .db import Base


class User(Base):
    """People who can be referenced by user-typed field values."""

    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class Board(Base):
    __tablename__ = "boards"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class Matter(Base):
    """
    A legal case record. Everything beyond identity, board and audit
    timestamps lives in MatterFieldValue rows.
    """

    __tablename__ = "matters"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    board_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )

    board: Mapped[Board] = relationship("Board")
    field_values: Mapped[list[MatterFieldValue]] = relationship(
        "MatterFieldValue", back_populates="matter"
    )


class FieldDefinition(Base):
    """A named, typed attribute that matters may carry a value for."""

    __tablename__ = "matter_fields"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    field_type: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # Uses FieldType values
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    options: Mapped[list[SelectOption]] = relationship(
        "SelectOption", back_populates="field"
    )
    status_options: Mapped[list[StatusOption]] = relationship(
        "StatusOption", back_populates="field"
    )


class SelectOption(Base):
    __tablename__ = "matter_field_options"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    field_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("matter_fields.id", ondelete="CASCADE"), nullable=False
    )
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    field: Mapped[FieldDefinition] = relationship(
        "FieldDefinition", back_populates="options"
    )


class StatusGroup(Base):
    """Workflow stage bucket (To Do / In Progress / Done)."""

    __tablename__ = "matter_status_groups"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    options: Mapped[list[StatusOption]] = relationship(
        "StatusOption", back_populates="group"
    )


class StatusOption(Base):
    __tablename__ = "matter_status_options"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    field_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("matter_fields.id", ondelete="CASCADE"), nullable=True
    )
    group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("matter_status_groups.id"), nullable=False, index=True
    )
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    field: Mapped[FieldDefinition | None] = relationship(
        "FieldDefinition", back_populates="status_options"
    )
    group: Mapped[StatusGroup] = relationship("StatusGroup", back_populates="options")


class MatterFieldValue(Base):
    """
    One stored value of one field for one matter.

    Exactly one slot is populated, chosen by the field's declared type:
    - text: text_value (string_value is the legacy short-text slot)
    - number: number_value
    - date: date_value
    - boolean: boolean_value
    - currency: currency_value {"amount": ..., "currency": "GBP"}
    - user: user_value (users.id)
    - select: select_option_id
    - status: status_option_id
    """

    __tablename__ = "matter_field_values"
    __table_args__ = (
        UniqueConstraint("matter_id", "field_id", name="uq_matter_field_value"),
        Index("idx_matter_field_values_field", "field_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    matter_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("matters.id", ondelete="CASCADE"), nullable=False, index=True
    )
    field_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("matter_fields.id", ondelete="CASCADE"), nullable=False
    )

    text_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    string_value: Mapped[str | None] = mapped_column(String(255), nullable=True)
    number_value: Mapped[float | None] = mapped_column(
        Numeric(asdecimal=False), nullable=True
    )
    date_value: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    boolean_value: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    currency_value: Mapped[dict[str, Any] | None] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    user_value: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    select_option_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("matter_field_options.id"), nullable=True
    )
    status_option_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("matter_status_options.id"), nullable=True
    )

    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    matter: Mapped[Matter] = relationship("Matter", back_populates="field_values")
    field: Mapped[FieldDefinition] = relationship("FieldDefinition")


class CycleTimeTransition(Base):
    """
    Append-only log of status changes. Rows are never updated or deleted;
    cycle time and SLA are derived from the earliest qualifying timestamps.
    """

    __tablename__ = "matter_cycle_time_transitions"
    __table_args__ = (
        Index("idx_cycle_time_matter_ts", "matter_id", "transitioned_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    matter_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("matters.id", ondelete="CASCADE"), nullable=False
    )
    status_field_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("matter_fields.id"), nullable=False
    )
    from_status_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("matter_status_options.id"), nullable=True
    )
    to_status_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("matter_status_options.id"), nullable=False
    )
    transitioned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    transitioned_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
