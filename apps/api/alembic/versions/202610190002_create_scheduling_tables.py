"""create scheduling tables

Revision ID: 202610190002
Revises: 202610190001
Create Date: 2026-10-19 00:02:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190002"
down_revision: str | None = "202610190001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "scheduling_link",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_user_id", sa.Uuid(), nullable=False),
        sa.Column("slug", sa.String(length=128), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="UTC"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("duration_minutes > 0", name="ck_scheduling_link_duration_positive"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug", name="uq_scheduling_link_slug"),
    )
    op.create_index("ix_scheduling_link_owner", "scheduling_link", ["owner_user_id"], unique=False)

    op.create_table(
        "availability_slot",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_user_id", sa.Uuid(), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_availability_slot_day_of_week"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_availability_slot_owner_day",
        "availability_slot",
        ["owner_user_id", "day_of_week"],
        unique=False,
    )

    op.create_table(
        "scheduled_meeting",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("scheduling_link_id", sa.Uuid(), nullable=False),
        sa.Column("attendee_name", sa.Text(), nullable=False),
        sa.Column("attendee_email", sa.Text(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["scheduling_link_id"], ["scheduling_link.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("scheduling_link_id", "start_time", name="uq_scheduled_meeting_link_start"),
    )
    op.create_index("ix_scheduled_meeting_start_time", "scheduled_meeting", ["start_time"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_scheduled_meeting_start_time", table_name="scheduled_meeting")
    op.drop_table("scheduled_meeting")
    op.drop_index("ix_availability_slot_owner_day", table_name="availability_slot")
    op.drop_table("availability_slot")
    op.drop_index("ix_scheduling_link_owner", table_name="scheduling_link")
    op.drop_table("scheduling_link")
