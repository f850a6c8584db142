"""Rule Matching — which rules an incoming trigger should consider, in what order.

Invariants:
    - Only active rules match
    - trigger_type must equal the event's; entity type and event name match when the
      rule leaves them unset or they are equal (case-insensitive)
    - Schedule rules never match entity events; they are selected by due_schedule_rules
    - Result sorted by priority ascending, then created_at (stable)
    - No side effects

Design Decisions:
    - Matching runs in memory over the tenant's active rules; the repository only
      narrows by tenant/trigger_type/is_active
"""

from collections.abc import Iterable
from datetime import datetime

from smartwms_automation.core.domain_types import TriggerType
from smartwms_automation.core.rule_types import Rule, TriggerEvent, as_utc


def match_rules(event: TriggerEvent, rules: Iterable[Rule]) -> list[Rule]:
    """Rules whose trigger definition matches event, priority-ordered."""
    if event.trigger_type == TriggerType.SCHEDULE:
        return []
    matched = [r for r in rules if _matches(r, event)]
    return sort_by_priority(matched)


def due_schedule_rules(rules: Iterable[Rule], now: datetime) -> list[Rule]:
    """Active schedule rules whose next_scheduled_at is at or before now."""
    now = as_utc(now)
    due = [
        r for r in rules
        if r.is_active
        and r.trigger_type == TriggerType.SCHEDULE
        and r.cron_expression
        and r.next_scheduled_at is not None
        and as_utc(r.next_scheduled_at) <= now
    ]
    return sort_by_priority(due)


def sort_by_priority(rules: Iterable[Rule]) -> list[Rule]:
    return sorted(rules, key=lambda r: (r.priority, as_utc(r.created_at)))


def _matches(rule: Rule, event: TriggerEvent) -> bool:
    if not rule.is_active or rule.trigger_type != event.trigger_type:
        return False
    if not _optional_equal(rule.trigger_entity_type, event.entity_type):
        return False
    return _optional_equal(rule.trigger_event, event.event_name)


def _optional_equal(rule_value: str | None, event_value: str | None) -> bool:
    if not rule_value:
        return True
    return event_value is not None and rule_value.casefold() == event_value.casefold()
