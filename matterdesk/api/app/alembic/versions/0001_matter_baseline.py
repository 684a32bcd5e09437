"""Baseline schema: boards, matters, EAV field store and cycle time log.

Revision ID: 0001_matter_baseline
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision: str = "0001_matter_baseline"
down_revision: str | None = None
branch_labels: tuple[str, ...] | None = None
depends_on: tuple[str, ...] | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=True,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        _created_at(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "boards",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        _created_at(),
    )

    op.create_table(
        "matters",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "board_id",
            sa.Uuid(),
            sa.ForeignKey("boards.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
    )
    op.create_index("ix_matters_board_id", "matters", ["board_id"])
    op.create_index("ix_matters_created_at", "matters", ["created_at"])

    op.create_table(
        "matter_fields",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("field_type", sa.String(20), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "matter_field_options",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "field_id",
            sa.Uuid(),
            sa.ForeignKey("matter_fields.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("label", sa.String(255), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "matter_status_groups",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("sequence", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "matter_status_options",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "field_id",
            sa.Uuid(),
            sa.ForeignKey("matter_fields.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "group_id",
            sa.Uuid(),
            sa.ForeignKey("matter_status_groups.id"),
            nullable=False,
        ),
        sa.Column("label", sa.String(255), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index(
        "ix_matter_status_options_group_id", "matter_status_options", ["group_id"]
    )

    op.create_table(
        "matter_field_values",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "matter_id",
            sa.Uuid(),
            sa.ForeignKey("matters.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "field_id",
            sa.Uuid(),
            sa.ForeignKey("matter_fields.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("text_value", sa.Text(), nullable=True),
        sa.Column("string_value", sa.String(255), nullable=True),
        sa.Column("number_value", sa.Numeric(), nullable=True),
        sa.Column("date_value", sa.DateTime(timezone=True), nullable=True),
        sa.Column("boolean_value", sa.Boolean(), nullable=True),
        sa.Column("currency_value", sa.JSON(), nullable=True),
        sa.Column(
            "user_value", sa.Integer(), sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column(
            "select_option_id",
            sa.Uuid(),
            sa.ForeignKey("matter_field_options.id"),
            nullable=True,
        ),
        sa.Column(
            "status_option_id",
            sa.Uuid(),
            sa.ForeignKey("matter_status_options.id"),
            nullable=True,
        ),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("updated_by", sa.Integer(), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.UniqueConstraint("matter_id", "field_id", name="uq_matter_field_value"),
    )
    op.create_index(
        "ix_matter_field_values_matter_id", "matter_field_values", ["matter_id"]
    )
    op.create_index(
        "idx_matter_field_values_field", "matter_field_values", ["field_id"]
    )

    op.create_table(
        "matter_cycle_time_transitions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "matter_id",
            sa.Uuid(),
            sa.ForeignKey("matters.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "status_field_id",
            sa.Uuid(),
            sa.ForeignKey("matter_fields.id"),
            nullable=False,
        ),
        sa.Column(
            "from_status_id",
            sa.Uuid(),
            sa.ForeignKey("matter_status_options.id"),
            nullable=True,
        ),
        sa.Column(
            "to_status_id",
            sa.Uuid(),
            sa.ForeignKey("matter_status_options.id"),
            nullable=False,
        ),
        sa.Column("transitioned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("transitioned_by", sa.Integer(), nullable=True),
    )
    op.create_index(
        "idx_cycle_time_matter_ts",
        "matter_cycle_time_transitions",
        ["matter_id", "transitioned_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_cycle_time_matter_ts", "matter_cycle_time_transitions")
    op.drop_table("matter_cycle_time_transitions")
    op.drop_index("idx_matter_field_values_field", "matter_field_values")
    op.drop_index("ix_matter_field_values_matter_id", "matter_field_values")
    op.drop_table("matter_field_values")
    op.drop_index("ix_matter_status_options_group_id", "matter_status_options")
    op.drop_table("matter_status_options")
    op.drop_table("matter_status_groups")
    op.drop_table("matter_field_options")
    op.drop_table("matter_fields")
    op.drop_index("ix_matters_created_at", "matters")
    op.drop_index("ix_matters_board_id", "matters")
    op.drop_table("matters")
    op.drop_index("ix_users_email", "users")
    op.drop_table("users")
