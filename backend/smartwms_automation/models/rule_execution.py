"""RuleExecution ORM — append-only audit log, one row per rule evaluation attempt.

Invariants:
    - Always belongs to an AutomationRule (rule_id FK, cascade on rule delete)
    - Rows are inserted pending and updated exactly once more, to a terminal status
    - started_at is indexed with rule_id: the daily cap counts completed rows per day

Design Decisions:
    - tenant_id denormalized: execution history is filtered per tenant without a join
    - trigger_event_data/result_data as JSON: the shape differs per trigger/action type
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from smartwms_automation.db.base import Base


class RuleExecution(Base):
    """Execution log entry for one (rule, trigger) pair."""
    __tablename__ = "rule_executions"
    __table_args__ = (
        Index("ix_rule_executions_rule_started", "rule_id", "started_at"),
        Index("ix_rule_executions_tenant_started", "tenant_id", "started_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    rule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("automation_rules.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Trigger snapshot
    trigger_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    trigger_entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    trigger_entity_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True,
    )
    trigger_event_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Timing
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Outcome
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    conditions_met: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    skip_reason: Mapped[str | None] = mapped_column(String(30), nullable=True)
    result_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_stack_trace: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_entity_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True,
    )
