"""Execution Queries — tests for the execution log listing and dashboard stats.

Tests cover:
    - Listing is tenant-scoped, newest first, filtered, and carries the rule name
    - Today's counts per status, 7-day zero-filled trend, top rules by executions
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from smartwms_automation.core.domain_types import ExecutionStatus
from smartwms_automation.models.automation_rule import AutomationRule
from smartwms_automation.models.rule_execution import RuleExecution
from smartwms_automation.services import execution_queries

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
TENANT = uuid4()


def _rule(name, **fields):
    fields.setdefault("tenant_id", TENANT)
    fields.setdefault("trigger_type", "entity_created")
    return AutomationRule(
        id=uuid4(), name=name, action_type="send_notification",
        action_config={}, created_at=NOW, **fields,
    )


def _execution(rule, status, started_at, **fields):
    return RuleExecution(
        tenant_id=rule.tenant_id, rule_id=rule.id, status=status, started_at=started_at,
        **fields,
    )


@pytest.fixture
async def seeded(test_db):
    alerts = _rule("Alerts", total_executions=4, successful_executions=3, failed_executions=1)
    nightly = _rule(
        "Nightly", trigger_type="schedule", cron_expression="0 2 * * *",
        next_scheduled_at=NOW + timedelta(hours=14),
    )
    paused = _rule("Paused", is_active=False)
    foreign = _rule("Foreign", tenant_id=uuid4(), total_executions=50, successful_executions=50)
    test_db.add_all([alerts, nightly, paused, foreign])
    await test_db.flush()
    test_db.add_all([
        _execution(alerts, "completed", NOW - timedelta(hours=1)),
        _execution(alerts, "failed", NOW - timedelta(hours=2), error_message="boom"),
        _execution(alerts, "skipped", NOW - timedelta(hours=3), skip_reason="cooldown"),
        _execution(alerts, "completed", NOW - timedelta(days=2)),
        _execution(nightly, "completed", NOW - timedelta(days=9)),
        _execution(foreign, "completed", NOW),
    ])
    await test_db.commit()
    return {"alerts": alerts, "nightly": nightly}


@pytest.mark.asyncio
async def test_list_newest_first_with_rule_name(test_db, seeded):
    items, total = await execution_queries.list_executions(test_db, TENANT, page_size=2)

    assert total == 5
    assert [i.status for i in items] == ["completed", "failed"]
    assert items[0].rule_name == "Alerts"


@pytest.mark.asyncio
async def test_list_filters(test_db, seeded):
    failed, total = await execution_queries.list_executions(
        test_db, TENANT, status=ExecutionStatus.FAILED,
    )
    assert total == 1
    assert failed[0].error_message == "boom"

    nightly, total = await execution_queries.list_executions(
        test_db, TENANT, rule_id=seeded["nightly"].id,
    )
    assert total == 1

    recent, total = await execution_queries.list_executions(
        test_db, TENANT, date_from=NOW - timedelta(days=1),
    )
    assert total == 3


@pytest.mark.asyncio
async def test_stats(test_db, seeded):
    stats = await execution_queries.get_stats(test_db, TENANT, NOW)

    assert (stats.total_rules, stats.active_rules) == (3, 2)
    assert stats.total_executions_today == 3
    assert stats.successful_executions_today == 1
    assert stats.failed_executions_today == 1
    assert stats.skipped_executions_today == 1
    assert stats.scheduled_jobs_pending == 1

    assert len(stats.execution_trend) == 7
    assert stats.execution_trend[-1].date == NOW.date()
    assert stats.execution_trend[-1].total == 3
    assert stats.execution_trend[-3].successful == 1
    assert sum(p.total for p in stats.execution_trend) == 4

    [top] = stats.top_rules_by_executions
    assert top.rule_name == "Alerts"
    assert top.success_rate == 75.0


@pytest.mark.asyncio
async def test_stats_for_empty_tenant(test_db):
    stats = await execution_queries.get_stats(test_db, uuid4(), NOW)
    assert stats.total_rules == 0
    assert [p.total for p in stats.execution_trend] == [0] * 7
    assert stats.top_rules_by_executions == []
