"""Rule Management — tests for tenant-scoped CRUD and save-time validation.

Tests cover:
    - Create stores the validated config dump and ordered conditions
    - Invalid cron, timezone, condition, or action config rejected before insert
    - Partial update; conditions replaced wholesale when sent
    - Changing action_type without a new config rejected
    - Toggle recomputes next_scheduled_at
    - Delete removes the rule's executions
    - List filters, search, and paging
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from smartwms_automation.core.domain_types import TriggerType
from smartwms_automation.core.errors import InvalidRuleError, RuleNotFoundError
from smartwms_automation.models.rule_execution import RuleExecution
from smartwms_automation.schemas.rule import RuleCreate, RuleUpdate
from smartwms_automation.services import rule_management

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
TENANT = uuid4()


def _body(**overrides) -> RuleCreate:
    fields = dict(
        name="  Low stock alert ",
        trigger_type="threshold_crossed",
        trigger_entity_type="StockLevel",
        action_type="send_notification",
        action_config={"title": "{{sku}} is low", "role_ids": [str(uuid4())]},
        conditions=[
            {"field": "newValue", "operator": "less_than", "value": 10, "value_type": "number"},
            {"field": "sku", "operator": "starts_with", "value": "A-", "logic": "or"},
        ],
    )
    fields.update(overrides)
    return RuleCreate(**fields)


# ─── Create ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_stores_validated_definition(test_db):
    rule = await rule_management.create_rule(test_db, TENANT, _body(), NOW)

    assert rule.name == "Low stock alert"
    assert rule.trigger_type == "threshold_crossed"
    assert rule.action_config["priority"] == "normal"
    assert [(c.order, c.field, c.value) for c in rule.conditions] == [
        (0, "newValue", "10"), (1, "sku", "A-"),
    ]
    assert rule.next_scheduled_at is None
    assert rule.total_executions == 0


@pytest.mark.asyncio
async def test_create_schedule_rule_sets_next_fire(test_db):
    rule = await rule_management.create_rule(
        test_db, TENANT,
        _body(trigger_type="schedule", cron_expression="0 9 * * *", timezone="Europe/Berlin",
              conditions=[]),
        NOW,
    )
    # 09:00 Berlin (CET) on the next day
    assert rule.next_scheduled_at == datetime(2026, 3, 11, 8, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("overrides,field", [
    ({"trigger_type": "schedule", "cron_expression": "99 * * * *"}, "cron_expression"),
    ({"timezone": "Atlantis/Capital"}, "timezone"),
    ({"action_config": {"title": "x", "colour": "red"}}, "action_config"),
    ({"action_type": "send_email", "action_config": {}}, "action_config"),
    ({"conditions": [{"field": "qty", "operator": "in", "value": "1,x",
                      "value_type": "number"}]}, "conditions[0]"),
])
@pytest.mark.asyncio
async def test_create_rejects_invalid_definition(test_db, overrides, field):
    with pytest.raises(InvalidRuleError) as exc:
        await rule_management.create_rule(test_db, TENANT, _body(**overrides), NOW)
    assert exc.value.field == field


# ─── Update ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_partial_update_keeps_unsent_fields(test_db):
    rule = await rule_management.create_rule(test_db, TENANT, _body(), NOW)

    updated = await rule_management.update_rule(
        test_db, TENANT, rule.id, RuleUpdate(priority=5, description="Reorder soon"), NOW,
    )

    assert updated.priority == 5
    assert updated.description == "Reorder soon"
    assert updated.name == "Low stock alert"
    assert len(updated.conditions) == 2
    assert updated.updated_at == NOW


@pytest.mark.asyncio
async def test_update_replaces_conditions(test_db):
    rule = await rule_management.create_rule(test_db, TENANT, _body(), NOW)

    updated = await rule_management.update_rule(
        test_db, TENANT, rule.id,
        RuleUpdate(conditions=[{"field": "zone", "operator": "equals", "value": "Cold"}]),
        NOW,
    )

    assert [c.field for c in updated.conditions] == ["zone"]


@pytest.mark.asyncio
async def test_changing_action_type_needs_new_config(test_db):
    rule = await rule_management.create_rule(test_db, TENANT, _body(), NOW)
    with pytest.raises(InvalidRuleError) as exc:
        await rule_management.update_rule(
            test_db, TENANT, rule.id, RuleUpdate(action_type="send_webhook"), NOW,
        )
    assert exc.value.field == "action_config"

    updated = await rule_management.update_rule(
        test_db, TENANT, rule.id,
        RuleUpdate(action_type="send_webhook", action_config={"url": "https://x.test"}),
        NOW,
    )
    assert updated.action_config["method"] == "POST"


@pytest.mark.asyncio
async def test_required_field_cannot_be_nulled(test_db):
    rule = await rule_management.create_rule(test_db, TENANT, _body(), NOW)
    with pytest.raises(InvalidRuleError):
        await rule_management.update_rule(
            test_db, TENANT, rule.id, RuleUpdate(priority=None), NOW,
        )


@pytest.mark.asyncio
async def test_other_tenant_cannot_see_rule(test_db):
    rule = await rule_management.create_rule(test_db, TENANT, _body(), NOW)
    with pytest.raises(RuleNotFoundError):
        await rule_management.get_rule_or_raise(test_db, uuid4(), rule.id)


# ─── Toggle & delete ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_toggle_schedule_rule(test_db):
    rule = await rule_management.create_rule(
        test_db, TENANT,
        _body(trigger_type="schedule", cron_expression="*/30 * * * *", conditions=[]),
        NOW,
    )

    paused = await rule_management.toggle_rule(test_db, TENANT, rule.id, NOW)
    assert paused.is_active is False
    assert paused.next_scheduled_at is None

    resumed = await rule_management.toggle_rule(test_db, TENANT, rule.id, NOW)
    assert resumed.is_active is True
    assert resumed.next_scheduled_at == datetime(2026, 3, 10, 12, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_delete_removes_executions(test_db):
    rule = await rule_management.create_rule(test_db, TENANT, _body(), NOW)
    test_db.add(RuleExecution(
        tenant_id=TENANT, rule_id=rule.id, started_at=NOW, status="completed",
    ))
    await test_db.flush()

    await rule_management.delete_rule(test_db, TENANT, rule.id)

    remaining = (await test_db.execute(
        select(func.count()).select_from(RuleExecution),
    )).scalar_one()
    assert remaining == 0
    with pytest.raises(RuleNotFoundError):
        await rule_management.get_rule_or_raise(test_db, TENANT, rule.id)


# ─── Listing ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_filters_and_pages(test_db):
    for i, name in enumerate(["Cancel alert", "Putaway task", "Cycle count", "Webhook to ERP"]):
        await rule_management.create_rule(
            test_db, TENANT, _body(name=name, priority=10 * (4 - i)), NOW,
        )
    await rule_management.create_rule(
        test_db, TENANT,
        _body(name="Nightly", trigger_type="schedule", cron_expression="0 2 * * *",
              conditions=[]),
        NOW,
    )

    rules, total = await rule_management.list_rules(test_db, TENANT, page=1, page_size=2)
    assert total == 5
    assert [r.name for r in rules] == ["Webhook to ERP", "Cycle count"]

    scheduled, total = await rule_management.list_rules(
        test_db, TENANT, trigger_type=TriggerType.SCHEDULE,
    )
    assert (total, scheduled[0].name) == (1, "Nightly")

    found, total = await rule_management.list_rules(test_db, TENANT, search="erp")
    assert [r.name for r in found] == ["Webhook to ERP"]

    assert rule_management.total_pages(5, 2) == 3
