"""Execution Schemas — response shapes for execution history and statistics."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ExecutionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    rule_id: UUID
    rule_name: str | None = None
    trigger_type: str | None = None
    trigger_entity_type: str | None = None
    trigger_entity_id: UUID | None = None
    trigger_event_data: dict[str, Any] | None = None
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int
    status: str
    conditions_met: bool
    skip_reason: str | None = None
    result_data: dict[str, Any] | None = None
    error_message: str | None = None
    created_entity_type: str | None = None
    created_entity_id: UUID | None = None


class Page(BaseModel):
    items: list[Any]
    total: int
    page: int
    page_size: int
    total_pages: int


class ExecutionTrendPoint(BaseModel):
    date: date
    total: int = 0
    successful: int = 0
    failed: int = 0


class TopRule(BaseModel):
    rule_id: UUID
    rule_name: str
    executions: int
    success_rate: float = Field(ge=0, le=100)


class AutomationStats(BaseModel):
    total_rules: int
    active_rules: int
    total_executions_today: int
    successful_executions_today: int
    failed_executions_today: int
    skipped_executions_today: int
    scheduled_jobs_pending: int
    execution_trend: list[ExecutionTrendPoint]
    top_rules_by_executions: list[TopRule]
