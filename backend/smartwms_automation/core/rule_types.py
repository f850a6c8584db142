"""Rule Types — immutable in-memory shapes the engine reasons about.

Invariants:
    - Rule is frozen: id and tenant_id never change; edits go through the repository
    - Condition.operator keeps unknown operator strings as-is so the evaluator can
      reject them per condition instead of failing the whole rule load
    - TriggerEvent.data is the snapshot conditions and templates read from
    - All datetimes are timezone-aware UTC

Design Decisions:
    - Dataclasses, not ORM rows: core stays free of SQLAlchemy
    - condition_from_dict is lenient, the API schema is strict
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from smartwms_automation.core.action_configs import ActionConfig
from smartwms_automation.core.domain_types import (
    ActionType,
    ConditionLogic,
    ConditionOperator,
    DEFAULT_PRIORITY,
    RuleId,
    TenantId,
    TriggerType,
    ValueType,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize naive datetimes (SQLite round-trips) to UTC-aware."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Condition:
    """Single field/operator/value test, combined with its predecessor via logic."""
    field: str
    operator: ConditionOperator | str
    value: str = ""
    value_type: ValueType | None = None
    logic: ConditionLogic = ConditionLogic.AND
    order: int = 0


@dataclass(frozen=True)
class Rule:
    id: RuleId
    tenant_id: TenantId
    name: str
    trigger_type: TriggerType
    action_type: ActionType
    action_config: ActionConfig
    description: str | None = None
    trigger_entity_type: str | None = None
    trigger_event: str | None = None
    cron_expression: str | None = None
    timezone: str | None = None
    conditions: tuple[Condition, ...] = ()
    is_active: bool = True
    priority: int = DEFAULT_PRIORITY
    max_executions_per_day: int | None = None
    cooldown_seconds: int | None = None
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    last_executed_at: datetime | None = None
    next_scheduled_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class TriggerEvent:
    """Domain event handed to the engine by upstream modules or the scheduler."""
    trigger_type: TriggerType
    data: Mapping[str, Any] = field(default_factory=dict)
    entity_type: str | None = None
    entity_id: UUID | None = None
    event_name: str | None = None
    occurred_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class ConditionResult:
    field: str
    operator: str
    expected_value: str
    actual_value: str | None
    passed: bool
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "operator": self.operator,
            "expected_value": self.expected_value,
            "actual_value": self.actual_value,
            "passed": self.passed,
            "error": self.error,
        }


@dataclass(frozen=True)
class EvaluationOutcome:
    conditions_met: bool
    results: tuple[ConditionResult, ...] = ()


def condition_from_dict(raw: Mapping[str, Any]) -> Condition:
    """Build a Condition from a stored/JSON dict. Unknown operators are kept as str."""
    operator = raw.get("operator", "")
    try:
        operator = ConditionOperator(operator)
    except ValueError:
        operator = str(operator)
    value_type = raw.get("value_type")
    return Condition(
        field=str(raw.get("field", "")),
        operator=operator,
        value="" if raw.get("value") is None else str(raw.get("value")),
        value_type=ValueType(value_type) if value_type else None,
        logic=ConditionLogic(raw.get("logic") or ConditionLogic.AND),
        order=int(raw.get("order") or 0),
    )


def condition_to_dict(condition: Condition) -> dict:
    operator = condition.operator
    return {
        "order": condition.order,
        "logic": condition.logic.value,
        "field": condition.field,
        "operator": operator.value if isinstance(operator, ConditionOperator) else operator,
        "value": condition.value,
        "value_type": condition.value_type.value if condition.value_type else None,
    }
