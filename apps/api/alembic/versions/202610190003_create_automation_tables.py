"""create automation rule and execution log tables

Revision ID: 202610190003
Revises: 202610190002
Create Date: 2026-10-19 00:03:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190003"
down_revision: str | None = "202610190002"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "automation_rule",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_user_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("trigger_type", sa.String(length=64), nullable=False),
        sa.Column("trigger_config", sa.JSON(), nullable=False),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("action_config", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_automation_rule_active_created",
        "automation_rule",
        ["is_active", "created_at"],
        unique=False,
    )
    op.create_index("ix_automation_rule_owner", "automation_rule", ["owner_user_id"], unique=False)

    op.create_table(
        "automation_execution_log",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("rule_id", sa.Uuid(), nullable=True),
        sa.Column("owner_user_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("idempotency_key", sa.String(length=64), nullable=True),
        sa.Column("entity_type", sa.String(length=32), nullable=True),
        sa.Column("entity_id", sa.Uuid(), nullable=True),
        sa.Column("trigger_data", sa.JSON(), nullable=True),
        sa.Column("actions_performed", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["rule_id"], ["automation_rule.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", name="uq_automation_execution_log_idempotency_key"),
    )
    op.create_index(
        "ix_automation_execution_log_rule_executed",
        "automation_execution_log",
        ["rule_id", "executed_at"],
        unique=False,
    )
    op.create_index(
        "ix_automation_execution_log_owner_executed",
        "automation_execution_log",
        ["owner_user_id", "executed_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_automation_execution_log_owner_executed", table_name="automation_execution_log")
    op.drop_index("ix_automation_execution_log_rule_executed", table_name="automation_execution_log")
    op.drop_table("automation_execution_log")
    op.drop_index("ix_automation_rule_owner", table_name="automation_rule")
    op.drop_index("ix_automation_rule_active_created", table_name="automation_rule")
    op.drop_table("automation_rule")
