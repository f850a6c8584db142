"""Rule Schemas — Pydantic models with field-level validation for the rule API.

Invariants:
    - RuleCreate.name: 1-200 chars, stripped, non-empty
    - Condition operators/logic/value types must be known enum values
    - Schedule rules must carry a cron_expression
    - action_config arrives as a raw dict; its per-action shape is validated by
      parse_action_config in rule management (one decode point)
    - RuleUpdate is partial: only fields the client sent are applied

Design Decisions:
    - Enum-typed fields from core/domain_types: Pydantic rejects unknown values at the boundary
    - Responses read straight from ORM rows (from_attributes) so routes stay thin
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from smartwms_automation.core.domain_types import (
    ActionType,
    ConditionLogic,
    ConditionOperator,
    DEFAULT_PRIORITY,
    TriggerType,
    ValueType,
)


class ConditionIn(BaseModel):
    """One condition as submitted by a client."""
    field: str = Field(min_length=1, max_length=200)
    operator: ConditionOperator
    value: str = Field("", max_length=1000)
    value_type: ValueType | None = None
    logic: ConditionLogic = ConditionLogic.AND
    order: int | None = Field(None, ge=0)

    @field_validator("value", mode="before")
    @classmethod
    def stringify_value(cls, v: Any) -> str:
        if v is None:
            return ""
        if isinstance(v, bool):
            return "true" if v else "false"
        return str(v)


class _RuleFields(BaseModel):
    description: str | None = Field(None, max_length=2000)
    trigger_entity_type: str | None = Field(None, max_length=100)
    trigger_event: str | None = Field(None, max_length=200)
    cron_expression: str | None = Field(None, max_length=100)
    timezone: str | None = Field(None, max_length=64)
    max_executions_per_day: int | None = Field(None, ge=1)
    cooldown_seconds: int | None = Field(None, ge=0)


class RuleCreate(_RuleFields):
    """Rule creation — the full definition."""
    name: str = Field(min_length=1, max_length=200)
    trigger_type: TriggerType
    action_type: ActionType
    action_config: dict[str, Any] = Field(default_factory=dict)
    conditions: list[ConditionIn] = Field(default_factory=list, max_length=50)
    is_active: bool = True
    priority: int = Field(DEFAULT_PRIORITY, ge=0, le=10_000)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name cannot be empty or whitespace")
        return v

    @model_validator(mode="after")
    def schedule_needs_cron(self):
        if self.trigger_type == TriggerType.SCHEDULE and not self.cron_expression:
            raise ValueError("schedule rules require cron_expression")
        return self


class RuleUpdate(_RuleFields):
    """Partial rule update — unset fields keep their stored value."""
    name: str | None = Field(None, min_length=1, max_length=200)
    trigger_type: TriggerType | None = None
    action_type: ActionType | None = None
    action_config: dict[str, Any] | None = None
    conditions: list[ConditionIn] | None = Field(None, max_length=50)
    is_active: bool | None = None
    priority: int | None = Field(None, ge=0, le=10_000)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("name cannot be empty or whitespace")
        return v


class ManualTriggerRequest(BaseModel):
    entity_type: str | None = Field(None, max_length=100)
    entity_id: UUID | None = None
    event_data: dict[str, Any] = Field(default_factory=dict)


class RuleTestRequest(BaseModel):
    entity_type: str | None = Field(None, max_length=100)
    entity_id: UUID | None = None
    test_data: dict[str, Any] = Field(default_factory=dict)


class EventIn(BaseModel):
    """Domain event pushed by another module over HTTP."""
    trigger_type: TriggerType
    entity_type: str | None = Field(None, max_length=100)
    entity_id: UUID | None = None
    event_name: str | None = Field(None, max_length=200)
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("trigger_type")
    @classmethod
    def not_schedule(cls, v: TriggerType) -> TriggerType:
        if v == TriggerType.SCHEDULE:
            raise ValueError("schedule events are raised by the scheduler only")
        return v


# --- Responses ---------------------------------------------------------------

class ConditionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order: int
    logic: str
    field: str
    operator: str
    value: str
    value_type: str | None = None


class RuleResponse(BaseModel):
    """Rule summary as listed."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    name: str
    description: str | None = None
    trigger_type: str
    trigger_entity_type: str | None = None
    trigger_event: str | None = None
    cron_expression: str | None = None
    action_type: str
    is_active: bool
    priority: int
    total_executions: int
    successful_executions: int
    failed_executions: int
    last_executed_at: datetime | None = None
    next_scheduled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None


class ExecutionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    started_at: datetime
    status: str
    duration_ms: int
    conditions_met: bool
    skip_reason: str | None = None
    error_message: str | None = None


class RuleDetailResponse(RuleResponse):
    """Full rule with conditions, config, limits, and recent executions."""
    timezone: str | None = None
    action_config: dict[str, Any]
    max_executions_per_day: int | None = None
    cooldown_seconds: int | None = None
    created_by: UUID | None = None
    updated_by: UUID | None = None
    conditions: list[ConditionResponse] = Field(default_factory=list)
    recent_executions: list[ExecutionSummary] = Field(default_factory=list)
