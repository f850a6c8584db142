"""Automation schema — automation_rules, rule_conditions, rule_executions, notifications.

Revision ID: 001_automation
Revises: None
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_automation"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "automation_rules",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("trigger_type", sa.String(30), nullable=False),
        sa.Column("trigger_entity_type", sa.String(100), nullable=True),
        sa.Column("trigger_event", sa.String(200), nullable=True),
        sa.Column("cron_expression", sa.String(100), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("action_type", sa.String(30), nullable=False),
        sa.Column("action_config", sa.JSON, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("priority", sa.Integer, nullable=False, server_default="100"),
        sa.Column("max_executions_per_day", sa.Integer, nullable=True),
        sa.Column("cooldown_seconds", sa.Integer, nullable=True),
        sa.Column("total_executions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("successful_executions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failed_executions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", UUID(as_uuid=True), nullable=True),
        sa.Column("updated_by", UUID(as_uuid=True), nullable=True),
    )
    op.create_index("ix_automation_rules_tenant_id", "automation_rules", ["tenant_id"])
    op.create_index(
        "ix_automation_rules_tenant_trigger", "automation_rules",
        ["tenant_id", "trigger_type", "is_active"],
    )
    op.create_index(
        "ix_automation_rules_next_scheduled_at", "automation_rules", ["next_scheduled_at"],
    )

    op.create_table(
        "rule_conditions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "rule_id", UUID(as_uuid=True),
            sa.ForeignKey("automation_rules.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("logic", sa.String(5), nullable=False, server_default="and"),
        sa.Column("field", sa.String(200), nullable=False),
        sa.Column("operator", sa.String(30), nullable=False),
        sa.Column("value", sa.Text, nullable=False, server_default=""),
        sa.Column("value_type", sa.String(10), nullable=True),
    )
    op.create_index("ix_rule_conditions_rule_id", "rule_conditions", ["rule_id"])

    op.create_table(
        "rule_executions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "rule_id", UUID(as_uuid=True),
            sa.ForeignKey("automation_rules.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("trigger_type", sa.String(30), nullable=True),
        sa.Column("trigger_entity_type", sa.String(100), nullable=True),
        sa.Column("trigger_entity_id", UUID(as_uuid=True), nullable=True),
        sa.Column("trigger_event_data", sa.JSON, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("conditions_met", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("skip_reason", sa.String(30), nullable=True),
        sa.Column("result_data", sa.JSON, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("error_stack_trace", sa.Text, nullable=True),
        sa.Column("created_entity_type", sa.String(100), nullable=True),
        sa.Column("created_entity_id", UUID(as_uuid=True), nullable=True),
    )
    op.create_index(
        "ix_rule_executions_rule_started", "rule_executions", ["rule_id", "started_at"],
    )
    op.create_index(
        "ix_rule_executions_tenant_started", "rule_executions", ["tenant_id", "started_at"],
    )

    op.create_table(
        "notifications",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("audience", sa.String(10), nullable=False, server_default="user"),
        sa.Column("user_id", UUID(as_uuid=True), nullable=True),
        sa.Column("role_id", UUID(as_uuid=True), nullable=True),
        sa.Column("notification_type", sa.String(20), nullable=False, server_default="alert"),
        sa.Column("priority", sa.String(10), nullable=False, server_default="normal"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False, server_default=""),
        sa.Column("entity_type", sa.String(100), nullable=True),
        sa.Column("entity_id", UUID(as_uuid=True), nullable=True),
        sa.Column("action_url", sa.String(500), nullable=True),
        sa.Column("action_label", sa.String(100), nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_tenant_id", "notifications", ["tenant_id"])


def downgrade() -> None:
    op.drop_index("ix_notifications_tenant_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_rule_executions_tenant_started", table_name="rule_executions")
    op.drop_index("ix_rule_executions_rule_started", table_name="rule_executions")
    op.drop_table("rule_executions")
    op.drop_index("ix_rule_conditions_rule_id", table_name="rule_conditions")
    op.drop_table("rule_conditions")
    op.drop_index("ix_automation_rules_next_scheduled_at", table_name="automation_rules")
    op.drop_index("ix_automation_rules_tenant_trigger", table_name="automation_rules")
    op.drop_index("ix_automation_rules_tenant_id", table_name="automation_rules")
    op.drop_table("automation_rules")
