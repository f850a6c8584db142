"""Cron Schedule — tests for next-fire-time math.

Tests cover:
    - 5-field crontab and 6-field (seconds-first) expressions
    - Next fire time is strictly after the reference instant
    - Fire times computed in the rule's timezone, returned in UTC
    - Invalid expressions raise InvalidRuleError
"""

from datetime import datetime, timezone

import pytest

from smartwms_automation.core.cron_schedule import next_fire_time, validate_cron
from smartwms_automation.core.errors import InvalidRuleError

NOON = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def test_daily_expression_rolls_to_next_day():
    assert next_fire_time("0 9 * * *", None, NOON) == datetime(
        2026, 3, 11, 9, 0, tzinfo=timezone.utc,
    )


def test_next_fire_is_strictly_after_reference():
    assert next_fire_time("*/15 * * * *", None, NOON) == datetime(
        2026, 3, 10, 12, 15, tzinfo=timezone.utc,
    )


def test_six_field_expression_has_seconds():
    assert next_fire_time("30 0 13 * * *", None, NOON) == datetime(
        2026, 3, 10, 13, 0, 30, tzinfo=timezone.utc,
    )


def test_fire_time_follows_rule_timezone():
    """09:00 in Berlin (CET, UTC+1 in January) is 08:00 UTC."""
    fire = next_fire_time(
        "0 9 * * *", "Europe/Berlin", datetime(2026, 1, 10, 0, 0, tzinfo=timezone.utc),
    )
    assert fire == datetime(2026, 1, 10, 8, 0, tzinfo=timezone.utc)
    assert fire.tzinfo == timezone.utc


def test_naive_reference_read_as_utc():
    assert next_fire_time("0 13 * * *", None, NOON.replace(tzinfo=None)) == datetime(
        2026, 3, 10, 13, 0, tzinfo=timezone.utc,
    )


@pytest.mark.parametrize("expression", ["61 * * * *", "* * *", "", "a b c d e"])
def test_invalid_expression_rejected(expression):
    with pytest.raises(InvalidRuleError) as exc:
        validate_cron(expression)
    assert exc.value.field == "cron_expression"


def test_unknown_timezone_rejected():
    with pytest.raises(InvalidRuleError):
        validate_cron("0 9 * * *", "Nowhere/Land")
