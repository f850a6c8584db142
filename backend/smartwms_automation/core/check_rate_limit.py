"""Rate Limit Check — cooldown and daily-cap decisions for a single rule.

Invariants:
    - Pure: the caller supplies `now` and today's completed-execution count
    - Cooldown denies while now - last_executed_at < cooldown_seconds;
      allowed exactly at expiry
    - Daily cap denies when completed_today >= max_executions_per_day
    - The day is the calendar day in the rule's timezone (UTC when unset)
    - A denial is a normal outcome (skipped execution), never an exception

Design Decisions:
    - Count comes from the execution log (query), not from a mutable counter on the rule
    - Cooldown checked first: it is cheaper to explain and needs no count
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from smartwms_automation.core.domain_types import DEFAULT_TIMEZONE, SkipReason
from smartwms_automation.core.errors import InvalidRuleError
from smartwms_automation.core.rule_types import Rule, as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    reason: SkipReason | None = None
    detail: str | None = None
    retry_after_seconds: float | None = None

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
            "retry_after_seconds": self.retry_after_seconds,
        }


ALLOWED = RateDecision(allowed=True)


def load_timezone(name: str | None) -> tzinfo:
    """ZoneInfo for name, UTC when unset. Raises InvalidRuleError on unknown zones."""
    if not name or name.upper() == DEFAULT_TIMEZONE:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidRuleError(f"Unknown timezone '{name}'", field="timezone")


def rule_timezone(rule: Rule) -> tzinfo:
    """Timezone for a stored rule; falls back to UTC if the zone vanished."""
    try:
        return load_timezone(rule.timezone)
    except InvalidRuleError:
        logger.warning(
            f"Rule has unknown timezone '{rule.timezone}', using UTC",
            extra={"rule_id": str(rule.id)},
        )
        return timezone.utc


def day_window(now: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    """[start, end) of now's calendar day in tz, both returned in UTC."""
    local = as_utc(now).astimezone(tz)
    start_local = datetime.combine(local.date(), time.min, tzinfo=tz)
    end_local = datetime.combine(local.date() + timedelta(days=1), time.min, tzinfo=tz)
    return (
        start_local.astimezone(timezone.utc),
        end_local.astimezone(timezone.utc),
    )


def check_rate_limit(
    rule: Rule, now: datetime, completed_today: int,
) -> RateDecision:
    """Decide whether rule may run at now. Pure."""
    now = as_utc(now)
    last = as_utc(rule.last_executed_at)
    if rule.cooldown_seconds and last is not None:
        elapsed = (now - last).total_seconds()
        if elapsed < rule.cooldown_seconds:
            remaining = rule.cooldown_seconds - elapsed
            return RateDecision(
                allowed=False,
                reason=SkipReason.COOLDOWN,
                detail=(
                    f"Cooldown of {rule.cooldown_seconds}s not elapsed "
                    f"({elapsed:.0f}s since last execution)"
                ),
                retry_after_seconds=remaining,
            )

    cap = rule.max_executions_per_day
    if cap is not None and completed_today >= cap:
        return RateDecision(
            allowed=False,
            reason=SkipReason.DAILY_CAP,
            detail=f"Daily limit of {cap} execution(s) reached",
        )
    return ALLOWED
