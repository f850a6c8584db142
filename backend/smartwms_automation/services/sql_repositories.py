"""SQL Repositories — SQLAlchemy implementations of the rule and execution protocols.

Invariants:
    - One short-lived session per operation: concurrent rule pipelines never share
      an AsyncSession
    - Counter writes are single UPDATE ... SET x = x + n statements
    - Datetimes leave this module UTC-aware (SQLite hands back naive values)
    - A stored rule whose action config no longer validates is skipped by
      list_active (logged), and raises InvalidRuleError from get()

Design Decisions:
    - Session source injected as a callable returning an async context manager;
      default resolves the process db_manager at call time
    - ORM <-> domain mapping lives here so core never sees a model class
"""

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from smartwms_automation.core.action_configs import parse_action_config
from smartwms_automation.core.domain_types import (
    ActionType,
    ExecutionId,
    ExecutionStatus,
    RuleId,
    SkipReason,
    TenantId,
    TriggerType,
)
from smartwms_automation.core.errors import InvalidRuleError
from smartwms_automation.core.record_execution import CounterDelta, ExecutionRecord
from smartwms_automation.core.rule_types import Rule, as_utc, condition_from_dict
from smartwms_automation.infrastructure.database import session_scope
from smartwms_automation.models.automation_rule import AutomationRule, RuleCondition
from smartwms_automation.models.rule_execution import RuleExecution

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


# ─── Mapping ─────────────────────────────────────────────────────

def rule_from_model(model: AutomationRule) -> Rule:
    """Domain Rule from an ORM row (conditions must be loaded)."""
    action_type = ActionType(model.action_type)
    return Rule(
        id=RuleId(model.id),
        tenant_id=TenantId(model.tenant_id),
        name=model.name,
        description=model.description,
        trigger_type=TriggerType(model.trigger_type),
        trigger_entity_type=model.trigger_entity_type,
        trigger_event=model.trigger_event,
        cron_expression=model.cron_expression,
        timezone=model.timezone,
        conditions=tuple(
            condition_from_dict(condition_to_row_dict(c)) for c in model.conditions
        ),
        action_type=action_type,
        action_config=parse_action_config(action_type, model.action_config),
        is_active=model.is_active,
        priority=model.priority,
        max_executions_per_day=model.max_executions_per_day,
        cooldown_seconds=model.cooldown_seconds,
        total_executions=model.total_executions,
        successful_executions=model.successful_executions,
        failed_executions=model.failed_executions,
        last_executed_at=as_utc(model.last_executed_at),
        next_scheduled_at=as_utc(model.next_scheduled_at),
        created_at=as_utc(model.created_at),
    )


def condition_to_row_dict(condition: RuleCondition) -> dict:
    return {
        "order": condition.order,
        "logic": condition.logic,
        "field": condition.field,
        "operator": condition.operator,
        "value": condition.value,
        "value_type": condition.value_type,
    }


def execution_from_model(model: RuleExecution) -> ExecutionRecord:
    return ExecutionRecord(
        id=ExecutionId(model.id),
        tenant_id=TenantId(model.tenant_id),
        rule_id=RuleId(model.rule_id),
        started_at=as_utc(model.started_at),
        trigger_type=TriggerType(model.trigger_type) if model.trigger_type else None,
        trigger_entity_type=model.trigger_entity_type,
        trigger_entity_id=model.trigger_entity_id,
        trigger_event_data=model.trigger_event_data,
        status=ExecutionStatus(model.status),
        completed_at=as_utc(model.completed_at),
        duration_ms=model.duration_ms or 0,
        conditions_met=model.conditions_met,
        skip_reason=SkipReason(model.skip_reason) if model.skip_reason else None,
        result_data=model.result_data,
        error_message=model.error_message,
        error_stack_trace=model.error_stack_trace,
        created_entity_type=model.created_entity_type,
        created_entity_id=model.created_entity_id,
    )


def _execution_values(record: ExecutionRecord) -> dict:
    return {
        "tenant_id": record.tenant_id,
        "rule_id": record.rule_id,
        "trigger_type": record.trigger_type.value if record.trigger_type else None,
        "trigger_entity_type": record.trigger_entity_type,
        "trigger_entity_id": record.trigger_entity_id,
        "trigger_event_data": record.trigger_event_data,
        "started_at": record.started_at,
        "completed_at": record.completed_at,
        "duration_ms": record.duration_ms,
        "status": record.status.value,
        "conditions_met": record.conditions_met,
        "skip_reason": record.skip_reason.value if record.skip_reason else None,
        "result_data": record.result_data,
        "error_message": record.error_message,
        "error_stack_trace": record.error_stack_trace,
        "created_entity_type": record.created_entity_type,
        "created_entity_id": record.created_entity_id,
    }


# ─── Repositories ────────────────────────────────────────────────

class SqlRuleRepository:
    """RuleRepository over the automation_rules table."""

    def __init__(self, scope: SessionScope = session_scope):
        self._scope = scope

    async def list_active(
        self, tenant_id: TenantId, trigger_type: TriggerType,
    ) -> list[Rule]:
        query = select(AutomationRule).where(
            AutomationRule.tenant_id == tenant_id,
            AutomationRule.trigger_type == trigger_type.value,
            AutomationRule.is_active.is_(True),
        )
        async with self._scope() as db:
            models = (await db.execute(query)).scalars().all()
            return _decode_all(models)

    async def get(self, tenant_id: TenantId, rule_id: RuleId) -> Rule | None:
        query = select(AutomationRule).where(
            AutomationRule.id == rule_id,
            AutomationRule.tenant_id == tenant_id,
        )
        async with self._scope() as db:
            model = (await db.execute(query)).scalar_one_or_none()
            return rule_from_model(model) if model else None

    async def list_due_schedules(self, now: datetime) -> list[Rule]:
        query = select(AutomationRule).where(
            AutomationRule.trigger_type == TriggerType.SCHEDULE.value,
            AutomationRule.is_active.is_(True),
            AutomationRule.cron_expression.is_not(None),
            AutomationRule.next_scheduled_at <= as_utc(now),
        )
        async with self._scope() as db:
            models = (await db.execute(query)).scalars().all()
            return _decode_all(models)

    async def apply_counters(self, rule_id: RuleId, delta: CounterDelta) -> None:
        values = {
            "total_executions": AutomationRule.total_executions + delta.total,
            "successful_executions": AutomationRule.successful_executions + delta.successful,
            "failed_executions": AutomationRule.failed_executions + delta.failed,
            # counter bumps are not definition edits
            "updated_at": AutomationRule.updated_at,
        }
        if delta.last_executed_at is not None:
            values["last_executed_at"] = as_utc(delta.last_executed_at)
        stmt = update(AutomationRule).where(AutomationRule.id == rule_id).values(**values)
        async with self._scope() as db:
            await db.execute(stmt)
            await db.commit()

    async def set_next_scheduled_at(
        self, rule_id: RuleId, next_at: datetime | None,
    ) -> None:
        stmt = (
            update(AutomationRule)
            .where(AutomationRule.id == rule_id)
            .values(next_scheduled_at=as_utc(next_at), updated_at=AutomationRule.updated_at)
        )
        async with self._scope() as db:
            await db.execute(stmt)
            await db.commit()


class SqlExecutionRepository:
    """ExecutionRepository over the rule_executions table."""

    def __init__(self, scope: SessionScope = session_scope):
        self._scope = scope

    async def add(self, record: ExecutionRecord) -> None:
        async with self._scope() as db:
            db.add(RuleExecution(id=record.id, **_execution_values(record)))
            await db.commit()

    async def update(self, record: ExecutionRecord) -> None:
        stmt = (
            update(RuleExecution)
            .where(RuleExecution.id == record.id)
            .values(**_execution_values(record))
        )
        async with self._scope() as db:
            await db.execute(stmt)
            await db.commit()

    async def count_completed(
        self, rule_id: RuleId, start: datetime, end: datetime,
    ) -> int:
        query = select(func.count()).select_from(RuleExecution).where(
            RuleExecution.rule_id == rule_id,
            RuleExecution.status == ExecutionStatus.COMPLETED.value,
            RuleExecution.started_at >= as_utc(start),
            RuleExecution.started_at < as_utc(end),
        )
        async with self._scope() as db:
            return (await db.execute(query)).scalar_one()


def _decode_all(models) -> list[Rule]:
    rules = []
    for model in models:
        try:
            rules.append(rule_from_model(model))
        except (InvalidRuleError, ValueError) as e:
            logger.error(
                f"Skipping undecodable rule '{model.name}': {e}",
                extra={"rule_id": str(model.id), "tenant_id": str(model.tenant_id)},
            )
    return rules
