"""Execution Queries — read side of the execution log: history pages and tenant stats.

Invariants:
    - Read-only: nothing here writes
    - Every query is tenant-scoped
    - "Today" and the 7-day trend use UTC calendar days
    - The trend always has 7 points (oldest first); days without executions are zeros
    - Top rules rank by the rule's lifetime total_executions (rules with none excluded)
"""

from datetime import date, datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from smartwms_automation.core.check_rate_limit import day_window
from smartwms_automation.core.domain_types import ExecutionStatus, TriggerType
from smartwms_automation.core.rule_types import as_utc
from smartwms_automation.models.automation_rule import AutomationRule
from smartwms_automation.models.rule_execution import RuleExecution
from smartwms_automation.schemas.execution import (
    AutomationStats,
    ExecutionResponse,
    ExecutionTrendPoint,
    TopRule,
)

TREND_DAYS = 7
TOP_RULES = 5


async def list_executions(
    db: AsyncSession,
    tenant_id: UUID,
    *,
    rule_id: UUID | None = None,
    status: ExecutionStatus | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[ExecutionResponse], int]:
    """Newest-first page of executions with their rule names, plus the total."""
    filters = [RuleExecution.tenant_id == tenant_id]
    if rule_id:
        filters.append(RuleExecution.rule_id == rule_id)
    if status:
        filters.append(RuleExecution.status == status.value)
    if date_from:
        filters.append(RuleExecution.started_at >= as_utc(date_from))
    if date_to:
        filters.append(RuleExecution.started_at <= as_utc(date_to))

    total = (await db.execute(
        select(func.count()).select_from(RuleExecution).where(*filters),
    )).scalar_one()
    result = await db.execute(
        select(RuleExecution, AutomationRule.name)
        .join(AutomationRule, AutomationRule.id == RuleExecution.rule_id)
        .where(*filters)
        .order_by(RuleExecution.started_at.desc())
        .limit(page_size)
        .offset((page - 1) * page_size),
    )
    items = [
        ExecutionResponse.model_validate(execution).model_copy(
            update={"rule_name": rule_name},
        )
        for execution, rule_name in result.all()
    ]
    return items, total


async def get_stats(
    db: AsyncSession, tenant_id: UUID, now: datetime,
) -> AutomationStats:
    today_start, today_end = day_window(now, timezone.utc)

    total_rules = await _count(db, AutomationRule, AutomationRule.tenant_id == tenant_id)
    active_rules = await _count(
        db, AutomationRule,
        AutomationRule.tenant_id == tenant_id,
        AutomationRule.is_active.is_(True),
    )
    pending = await _count(
        db, AutomationRule,
        AutomationRule.tenant_id == tenant_id,
        AutomationRule.is_active.is_(True),
        AutomationRule.trigger_type == TriggerType.SCHEDULE.value,
        AutomationRule.next_scheduled_at.is_not(None),
    )

    today_counts = dict((await db.execute(
        select(RuleExecution.status, func.count())
        .where(
            RuleExecution.tenant_id == tenant_id,
            RuleExecution.started_at >= today_start,
            RuleExecution.started_at < today_end,
        )
        .group_by(RuleExecution.status),
    )).all())

    return AutomationStats(
        total_rules=total_rules,
        active_rules=active_rules,
        total_executions_today=sum(today_counts.values()),
        successful_executions_today=today_counts.get(ExecutionStatus.COMPLETED.value, 0),
        failed_executions_today=today_counts.get(ExecutionStatus.FAILED.value, 0),
        skipped_executions_today=today_counts.get(ExecutionStatus.SKIPPED.value, 0),
        scheduled_jobs_pending=pending,
        execution_trend=await _trend(db, tenant_id, today_start),
        top_rules_by_executions=await _top_rules(db, tenant_id),
    )


async def _count(db: AsyncSession, model, *filters) -> int:
    return (await db.execute(
        select(func.count()).select_from(model).where(*filters),
    )).scalar_one()


async def _trend(
    db: AsyncSession, tenant_id: UUID, today_start: datetime,
) -> list[ExecutionTrendPoint]:
    first_day = today_start - timedelta(days=TREND_DAYS - 1)
    points: dict[date, ExecutionTrendPoint] = {
        (first_day + timedelta(days=i)).date(): ExecutionTrendPoint(
            date=(first_day + timedelta(days=i)).date(),
        )
        for i in range(TREND_DAYS)
    }
    # bucketed here: date() on a timestamp differs between PostgreSQL and SQLite
    rows = await db.execute(
        select(RuleExecution.started_at, RuleExecution.status).where(
            RuleExecution.tenant_id == tenant_id,
            RuleExecution.started_at >= first_day,
        ),
    )
    for started_at, status in rows.all():
        point = points.get(as_utc(started_at).date())
        if point is None:
            continue
        point.total += 1
        if status == ExecutionStatus.COMPLETED.value:
            point.successful += 1
        elif status == ExecutionStatus.FAILED.value:
            point.failed += 1
    return list(points.values())


async def _top_rules(db: AsyncSession, tenant_id: UUID) -> list[TopRule]:
    result = await db.execute(
        select(AutomationRule)
        .where(
            AutomationRule.tenant_id == tenant_id,
            AutomationRule.total_executions > 0,
        )
        .order_by(AutomationRule.total_executions.desc(), AutomationRule.name)
        .limit(TOP_RULES),
    )
    return [
        TopRule(
            rule_id=rule.id,
            rule_name=rule.name,
            executions=rule.total_executions,
            success_rate=round(rule.successful_executions / rule.total_executions * 100, 2),
        )
        for rule in result.scalars().all()
    ]
