"""Rule Management — tenant-scoped CRUD over automation rules with save-time validation.

Invariants:
    - Every read and write is scoped by tenant_id: a rule of another tenant is "not found"
    - A rule is only stored after its full definition validates: action config against
      its action type, cron expression, timezone, and every condition
    - action_config is stored as the dump of the validated config model
    - next_scheduled_at is set only for active schedule rules; anything else stores None
    - Updates are partial; conditions, when sent, replace the stored set wholesale
    - Deleting a rule deletes its conditions and its execution history
    - Functions flush but never commit: the route owns the transaction

Design Decisions:
    - Plain async functions over an AsyncSession (from get_db) rather than a class:
      no state beyond the session
    - Validation reuses the engine's own decoders (parse_action_config, validate_cron,
      validate_condition) so a saved rule always loads
"""

import logging
import math
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from smartwms_automation.core.action_configs import dump_action_config, parse_action_config
from smartwms_automation.core.check_rate_limit import load_timezone
from smartwms_automation.core.cron_schedule import next_fire_time, validate_cron
from smartwms_automation.core.domain_types import ActionType, TriggerType
from smartwms_automation.core.errors import (
    ConditionEvaluationError,
    InvalidRuleError,
    RuleNotFoundError,
)
from smartwms_automation.core.evaluate_conditions import validate_condition
from smartwms_automation.core.rule_types import condition_from_dict
from smartwms_automation.models.automation_rule import AutomationRule, RuleCondition
from smartwms_automation.models.rule_execution import RuleExecution
from smartwms_automation.schemas.rule import ConditionIn, RuleCreate, RuleUpdate

logger = logging.getLogger(__name__)

RECENT_EXECUTIONS = 10

_DEFINITION_FIELDS = (
    "name", "description", "trigger_type", "trigger_entity_type", "trigger_event",
    "cron_expression", "timezone", "action_type", "is_active", "priority",
    "max_executions_per_day", "cooldown_seconds",
)
_REQUIRED_FIELDS = ("name", "trigger_type", "action_type", "is_active", "priority")


# ─── Queries ─────────────────────────────────────────────────────

async def get_rule_or_raise(
    db: AsyncSession, tenant_id: UUID, rule_id: UUID,
) -> AutomationRule:
    result = await db.execute(
        select(AutomationRule).where(
            AutomationRule.id == rule_id,
            AutomationRule.tenant_id == tenant_id,
        ),
    )
    rule = result.scalar_one_or_none()
    if not rule:
        raise RuleNotFoundError(str(rule_id), str(tenant_id))
    return rule


async def list_rules(
    db: AsyncSession,
    tenant_id: UUID,
    *,
    trigger_type: TriggerType | None = None,
    action_type: ActionType | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[AutomationRule], int]:
    """One page of rules (priority, then name) plus the total match count."""
    filters = [AutomationRule.tenant_id == tenant_id]
    if trigger_type:
        filters.append(AutomationRule.trigger_type == trigger_type.value)
    if action_type:
        filters.append(AutomationRule.action_type == action_type.value)
    if is_active is not None:
        filters.append(AutomationRule.is_active.is_(is_active))
    if search:
        pattern = f"%{search.strip()}%"
        filters.append(or_(
            AutomationRule.name.ilike(pattern),
            AutomationRule.description.ilike(pattern),
        ))

    total = (await db.execute(
        select(func.count()).select_from(AutomationRule).where(*filters),
    )).scalar_one()
    result = await db.execute(
        select(AutomationRule)
        .where(*filters)
        .order_by(AutomationRule.priority, AutomationRule.name)
        .limit(page_size)
        .offset((page - 1) * page_size),
    )
    return list(result.scalars().all()), total


async def recent_executions(
    db: AsyncSession, rule_id: UUID, limit: int = RECENT_EXECUTIONS,
) -> list[RuleExecution]:
    result = await db.execute(
        select(RuleExecution)
        .where(RuleExecution.rule_id == rule_id)
        .order_by(RuleExecution.started_at.desc())
        .limit(limit),
    )
    return list(result.scalars().all())


def total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if page_size else 0


# ─── Commands ────────────────────────────────────────────────────

async def create_rule(
    db: AsyncSession,
    tenant_id: UUID,
    body: RuleCreate,
    now: datetime,
    user_id: UUID | None = None,
) -> AutomationRule:
    values = body.model_dump(include=set(_DEFINITION_FIELDS))
    config = _validated_definition(values, body.action_config, body.conditions)
    rule = AutomationRule(
        tenant_id=tenant_id,
        **_column_values(values),
        action_config=config,
        total_executions=0,
        successful_executions=0,
        failed_executions=0,
        created_at=now,
        created_by=user_id,
    )
    rule.conditions = _condition_rows(body.conditions)
    rule.next_scheduled_at = _next_scheduled_at(values, now)
    db.add(rule)
    await db.flush()
    logger.info(
        f"Created automation rule '{rule.name}'",
        extra={"tenant_id": str(tenant_id), "rule_id": str(rule.id)},
    )
    return rule


async def update_rule(
    db: AsyncSession,
    tenant_id: UUID,
    rule_id: UUID,
    body: RuleUpdate,
    now: datetime,
    user_id: UUID | None = None,
) -> AutomationRule:
    rule = await get_rule_or_raise(db, tenant_id, rule_id)
    sent = body.model_dump(exclude_unset=True)

    values = {name: getattr(rule, name) for name in _DEFINITION_FIELDS}
    values.update({k: v for k, v in sent.items() if k in _DEFINITION_FIELDS})
    for name in _REQUIRED_FIELDS:
        if values[name] is None:
            raise InvalidRuleError(f"{name} cannot be null", field=name)
    if "action_config" in sent:
        raw_config = body.action_config or {}
    elif "action_type" in sent and sent["action_type"] != rule.action_type:
        raise InvalidRuleError(
            "Changing action_type requires a new action_config", field="action_config",
        )
    else:
        raw_config = rule.action_config
    if "conditions" in sent:
        stored = body.conditions or []
    else:
        stored = [_condition_in(c) for c in rule.conditions]
    config = _validated_definition(values, raw_config, stored)

    for name, value in _column_values(values).items():
        setattr(rule, name, value)
    rule.action_config = config
    if "conditions" in sent:
        rule.conditions = _condition_rows(stored)
    rule.next_scheduled_at = _next_scheduled_at(values, now)
    rule.updated_at = now
    rule.updated_by = user_id
    await db.flush()
    logger.info(
        f"Updated automation rule '{rule.name}'",
        extra={"tenant_id": str(tenant_id), "rule_id": str(rule.id)},
    )
    return rule


async def delete_rule(db: AsyncSession, tenant_id: UUID, rule_id: UUID) -> None:
    rule = await get_rule_or_raise(db, tenant_id, rule_id)
    # explicit: SQLite does not enforce ON DELETE CASCADE without a pragma
    await db.execute(delete(RuleExecution).where(RuleExecution.rule_id == rule.id))
    await db.delete(rule)
    await db.flush()
    logger.info(
        f"Deleted automation rule '{rule.name}'",
        extra={"tenant_id": str(tenant_id), "rule_id": str(rule_id)},
    )


async def toggle_rule(
    db: AsyncSession,
    tenant_id: UUID,
    rule_id: UUID,
    now: datetime,
    user_id: UUID | None = None,
) -> AutomationRule:
    """Flip is_active; a re-activated schedule rule gets a fresh next fire time."""
    rule = await get_rule_or_raise(db, tenant_id, rule_id)
    rule.is_active = not rule.is_active
    values = {name: getattr(rule, name) for name in _DEFINITION_FIELDS}
    rule.next_scheduled_at = _next_scheduled_at(values, now)
    rule.updated_at = now
    rule.updated_by = user_id
    await db.flush()
    logger.info(
        f"Automation rule '{rule.name}' {'activated' if rule.is_active else 'deactivated'}",
        extra={"tenant_id": str(tenant_id), "rule_id": str(rule.id)},
    )
    return rule


# ─── Validation ──────────────────────────────────────────────────

def _validated_definition(
    values: dict[str, Any], raw_config: dict | None, conditions: list[ConditionIn],
) -> dict:
    """Validate the combined definition; returns the action_config to store."""
    trigger_type = TriggerType(values["trigger_type"])
    action_type = ActionType(values["action_type"])

    load_timezone(values.get("timezone"))
    if trigger_type == TriggerType.SCHEDULE:
        if not values.get("cron_expression"):
            raise InvalidRuleError(
                "Schedule rules require a cron expression", field="cron_expression",
            )
        validate_cron(values["cron_expression"], values.get("timezone"))

    for index, condition in enumerate(conditions):
        try:
            validate_condition(condition_from_dict(_condition_dict(condition, index)))
        except ConditionEvaluationError as e:
            raise InvalidRuleError(
                f"Condition {index + 1} ({e.field}): {e.message}",
                field=f"conditions[{index}]",
            )

    return dump_action_config(parse_action_config(action_type, raw_config))


def _next_scheduled_at(values: dict[str, Any], now: datetime) -> datetime | None:
    if not values.get("is_active"):
        return None
    if TriggerType(values["trigger_type"]) != TriggerType.SCHEDULE:
        return None
    return next_fire_time(values["cron_expression"], values.get("timezone"), now)


def _column_values(values: dict[str, Any]) -> dict[str, Any]:
    """Enum members to their stored strings; blank optional strings to None."""
    out = {}
    for name, value in values.items():
        if isinstance(value, (TriggerType, ActionType)):
            value = value.value
        elif isinstance(value, str) and name != "name" and not value.strip():
            value = None
        out[name] = value
    return out


def _condition_dict(condition: ConditionIn, index: int) -> dict:
    return {
        "order": condition.order if condition.order is not None else index,
        "logic": condition.logic.value,
        "field": condition.field.strip(),
        "operator": condition.operator.value,
        "value": condition.value,
        "value_type": condition.value_type.value if condition.value_type else None,
    }


def _condition_rows(conditions: list[ConditionIn]) -> list[RuleCondition]:
    return [
        RuleCondition(**_condition_dict(condition, index))
        for index, condition in enumerate(conditions)
    ]


def _condition_in(row: RuleCondition) -> ConditionIn:
    return ConditionIn(
        field=row.field,
        operator=row.operator,
        value=row.value,
        value_type=row.value_type,
        logic=row.logic,
        order=row.order,
    )
