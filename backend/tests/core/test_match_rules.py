"""Rule Matching — tests for candidate selection and priority order.

Tests cover:
    - trigger_type must match; entity type and event name match when set
    - Inactive rules never match
    - Priority ascending, creation order breaks ties
    - Schedule rules only via due_schedule_rules
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from smartwms_automation.core.action_configs import SendNotificationConfig
from smartwms_automation.core.domain_types import ActionType, RuleId, TenantId, TriggerType
from smartwms_automation.core.match_rules import due_schedule_rules, match_rules
from smartwms_automation.core.rule_types import Rule, TriggerEvent

T0 = datetime(2026, 3, 10, tzinfo=timezone.utc)
TENANT = TenantId(uuid4())


def _rule(name, **overrides) -> Rule:
    fields = dict(
        id=RuleId(uuid4()),
        tenant_id=TENANT,
        name=name,
        trigger_type=TriggerType.STATUS_CHANGED,
        action_type=ActionType.SEND_NOTIFICATION,
        action_config=SendNotificationConfig(),
        created_at=T0,
    )
    fields.update(overrides)
    return Rule(**fields)


def _event(**overrides) -> TriggerEvent:
    fields = dict(
        trigger_type=TriggerType.STATUS_CHANGED,
        entity_type="Order",
        event_name="StatusChanged:Cancelled",
    )
    fields.update(overrides)
    return TriggerEvent(**fields)


def test_matches_on_trigger_type_and_entity_type():
    order_rule = _rule("orders", trigger_entity_type="Order")
    any_rule = _rule("any")
    task_rule = _rule("tasks", trigger_entity_type="Task")
    created_rule = _rule("created", trigger_type=TriggerType.ENTITY_CREATED)

    matched = match_rules(_event(), [order_rule, any_rule, task_rule, created_rule])

    assert {r.name for r in matched} == {"orders", "any"}


def test_entity_type_and_event_name_case_insensitive():
    rule = _rule("r", trigger_entity_type="order", trigger_event="statuschanged:cancelled")
    assert match_rules(_event(), [rule]) == [rule]


def test_event_name_mismatch_excluded():
    rule = _rule("r", trigger_event="StatusChanged:Shipped")
    assert match_rules(_event(), [rule]) == []


def test_inactive_rules_excluded():
    assert match_rules(_event(), [_rule("off", is_active=False)]) == []


def test_priority_then_creation_order():
    late_high = _rule("late-high", priority=10, created_at=T0 + timedelta(hours=1))
    early_high = _rule("early-high", priority=10, created_at=T0)
    low = _rule("low", priority=200)
    top = _rule("top", priority=1, created_at=T0 + timedelta(days=1))

    matched = match_rules(_event(), [low, late_high, top, early_high])

    assert [r.name for r in matched] == ["top", "early-high", "late-high", "low"]


def test_schedule_event_matches_nothing():
    rule = _rule("cron", trigger_type=TriggerType.SCHEDULE, cron_expression="0 * * * *")
    assert match_rules(_event(trigger_type=TriggerType.SCHEDULE), [rule]) == []


def test_due_schedule_rules():
    now = T0 + timedelta(hours=1)
    due = _rule(
        "due", trigger_type=TriggerType.SCHEDULE, cron_expression="0 * * * *",
        next_scheduled_at=now,
    )
    later = _rule(
        "later", trigger_type=TriggerType.SCHEDULE, cron_expression="0 * * * *",
        next_scheduled_at=now + timedelta(minutes=1),
    )
    unset = _rule("unset", trigger_type=TriggerType.SCHEDULE, cron_expression="0 * * * *")
    paused = _rule(
        "paused", trigger_type=TriggerType.SCHEDULE, cron_expression="0 * * * *",
        next_scheduled_at=T0, is_active=False,
    )

    assert [r.name for r in due_schedule_rules([due, later, unset, paused], now)] == ["due"]
