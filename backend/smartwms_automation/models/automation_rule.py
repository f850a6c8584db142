"""AutomationRule ORM — persists a tenant's trigger/conditions/action definition.

Invariants:
    - id and tenant_id never change after insert
    - action_config holds the JSON dump of the validated config model for action_type
    - Counters (total/successful/failed_executions) are only written through atomic
      UPDATE ... SET x = x + n statements, never read-modify-write
    - conditions are ordered by `order`; deleting a rule deletes its conditions

Design Decisions:
    - Conditions in their own table (rule_conditions) rather than a JSON column:
      the detail endpoint returns them with ids, and they are edited as a set
    - next_scheduled_at indexed: the scheduler polls it every tick
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from smartwms_automation.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AutomationRule(Base):
    """Automation rule aggregate root — owns its conditions."""
    __tablename__ = "automation_rules"
    __table_args__ = (
        Index("ix_automation_rules_tenant_trigger", "tenant_id", "trigger_type", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Trigger
    trigger_type: Mapped[str] = mapped_column(String(30), nullable=False)
    trigger_entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    trigger_event: Mapped[str | None] = mapped_column(String(200), nullable=True)
    cron_expression: Mapped[str | None] = mapped_column(String(100), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Action
    action_type: Mapped[str] = mapped_column(String(30), nullable=False)
    action_config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # Scheduling & limits
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    max_executions_per_day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cooldown_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Statistics
    total_executions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_executions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_executions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_executed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    next_scheduled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True,
    )

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=_utcnow,
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    updated_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)

    conditions: Mapped[list["RuleCondition"]] = relationship(
        "RuleCondition", back_populates="rule",
        cascade="all, delete-orphan", lazy="selectin",
        order_by="RuleCondition.order",
    )


class RuleCondition(Base):
    """One field/operator/value test belonging to a rule."""
    __tablename__ = "rule_conditions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    rule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("automation_rules.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    logic: Mapped[str] = mapped_column(String(5), nullable=False, default="and")
    field: Mapped[str] = mapped_column(String(200), nullable=False)
    operator: Mapped[str] = mapped_column(String(30), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")
    value_type: Mapped[str | None] = mapped_column(String(10), nullable=True)

    rule: Mapped["AutomationRule"] = relationship(
        "AutomationRule", back_populates="conditions",
    )
