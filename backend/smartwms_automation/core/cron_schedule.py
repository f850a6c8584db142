"""Cron Schedule — next-fire-time math for schedule-triggered rules.

Invariants:
    - 5-field expressions are standard crontab; 6-field expressions lead with seconds
    - next_fire_time is strictly after `after` and returned in UTC
    - Fire times are computed in the rule's timezone (UTC when unset)
    - Invalid expressions raise InvalidRuleError (validated at rule save time)

Design Decisions:
    - APScheduler's CronTrigger for the calendar math only; the polling loop is ours
      (services/automation_scheduler.py) so due-checks stay testable with a fixed clock
    - Numeric day_of_week follows APScheduler (0 = Monday); names (mon-sun) are unambiguous
"""

from datetime import datetime, timedelta, timezone

from apscheduler.triggers.cron import CronTrigger

from smartwms_automation.core.check_rate_limit import load_timezone
from smartwms_automation.core.errors import InvalidRuleError
from smartwms_automation.core.rule_types import as_utc


def build_cron_trigger(expression: str, tz_name: str | None = None) -> CronTrigger:
    """Parse expression into a CronTrigger bound to tz_name."""
    tz = load_timezone(tz_name)
    fields = (expression or "").split()
    try:
        if len(fields) == 5:
            return CronTrigger.from_crontab(" ".join(fields), timezone=tz)
        if len(fields) == 6:
            second, minute, hour, day, month, day_of_week = fields
            return CronTrigger(
                second=second, minute=minute, hour=hour, day=day,
                month=month, day_of_week=day_of_week, timezone=tz,
            )
    except ValueError as e:
        raise InvalidRuleError(
            f"Invalid cron expression '{expression}': {e}",
            field="cron_expression",
        )
    raise InvalidRuleError(
        f"Cron expression must have 5 or 6 fields, got {len(fields)}",
        field="cron_expression",
    )


def next_fire_time(
    expression: str, tz_name: str | None, after: datetime,
) -> datetime | None:
    """First fire time strictly after `after` (UTC), or None if the schedule is exhausted."""
    trigger = build_cron_trigger(expression, tz_name)
    start = as_utc(after) + timedelta(microseconds=1)
    fire = trigger.get_next_fire_time(None, start)
    return fire.astimezone(timezone.utc) if fire else None


def validate_cron(expression: str, tz_name: str | None = None) -> None:
    build_cron_trigger(expression, tz_name)
