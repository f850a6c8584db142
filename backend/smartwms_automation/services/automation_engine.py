"""Automation Engine — runs every matching rule for an event through rate limit,
conditions, and action dispatch, recording one execution per rule.

Invariants:
    - One execution record per (rule, trigger) pair, whatever the outcome, unless an
      event or schedule trigger finds its rule deleted or deactivated under the lock
    - handle() never raises into the publisher (task cancellation excepted);
      one rule's failure never affects another rule's pipeline
    - A rule's lock is held from the rate check until its terminal record and
      counters are persisted: check-then-increment is atomic per rule, and a rule's
      triggers run in arrival order (asyncio.Lock is FIFO)
    - Skipped/cancelled never touch counters; completed/failed increment atomically.
      A failure before dispatch (e.g. the rate check hitting the database) is
      recorded as failed but counts nothing and starts no cooldown
    - Persisting the terminal record retries on DatabaseError; the action is never
      re-dispatched
    - test() never dispatches and never records

Design Decisions:
    - Pure core does the deciding (match_rules, check_rate_limit, evaluate_conditions,
      record_execution); this module only sequences IO around it
    - Rule re-read under its lock so cooldown sees the last execution that finished
      while this trigger was waiting
    - Locks are per process; the daily cap is exact within one worker. Multiple
      workers would need a row lock or advisory lock around the same section
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from smartwms_automation.core.check_rate_limit import (
    RateDecision,
    check_rate_limit,
    day_window,
    rule_timezone,
)
from smartwms_automation.core.cron_schedule import next_fire_time
from smartwms_automation.core.domain_types import (
    ExecutionStatus,
    RuleId,
    SkipReason,
    TenantId,
    TriggerType,
)
from smartwms_automation.core.errors import (
    ActionExecutionError,
    AutomationError,
    DatabaseError,
    ErrorContext,
    RuleNotFoundError,
)
from smartwms_automation.core.evaluate_conditions import evaluate_conditions
from smartwms_automation.core.match_rules import due_schedule_rules, match_rules
from smartwms_automation.core.record_execution import (
    ExecutionRecord,
    counter_increments,
    mark_cancelled,
    mark_completed,
    mark_failed,
    mark_running,
    mark_skipped,
    start_execution,
)
from smartwms_automation.core.repository_protocols import (
    ExecutionRepository,
    RuleRepository,
)
from smartwms_automation.core.rule_types import (
    ConditionResult,
    Rule,
    TriggerEvent,
    utc_now,
)
from smartwms_automation.services.action_dispatch import ActionDispatcher

logger = logging.getLogger(__name__)

_PERSIST_BASE_DELAY_S = 0.05


class RuleLockRegistry:
    """One asyncio.Lock per rule id, created on first use."""

    def __init__(self):
        self._locks: dict[UUID, asyncio.Lock] = {}

    def lock_for(self, rule_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(rule_id)
        if lock is None:
            lock = self._locks[rule_id] = asyncio.Lock()
        return lock

    def discard(self, rule_id: UUID) -> None:
        """Forget a deleted rule's lock (a holder keeps its reference)."""
        self._locks.pop(rule_id, None)


@dataclass(frozen=True)
class RuleTestResult:
    rule_id: RuleId
    is_active: bool
    would_trigger: bool
    conditions_met: bool
    condition_results: tuple[ConditionResult, ...]
    rate_limit: RateDecision
    action_preview: dict

    def to_dict(self) -> dict:
        return {
            "rule_id": str(self.rule_id),
            "is_active": self.is_active,
            "would_trigger": self.would_trigger,
            "conditions_met": self.conditions_met,
            "condition_results": [r.to_dict() for r in self.condition_results],
            "rate_limit": self.rate_limit.to_dict(),
            "action_preview": self.action_preview,
        }


@dataclass(frozen=True)
class _Outcome:
    record: ExecutionRecord
    error: Exception | None = None


class AutomationEngine:
    """Entry point for events, manual triggers, dry runs, and schedule ticks."""

    def __init__(
        self,
        rules: RuleRepository,
        executions: ExecutionRepository,
        dispatcher: ActionDispatcher,
        clock: Callable[[], datetime] = utc_now,
        locks: RuleLockRegistry | None = None,
        persist_retries: int = 3,
    ):
        self._rules = rules
        self._executions = executions
        self._dispatcher = dispatcher
        self._clock = clock
        self._locks = locks or RuleLockRegistry()
        self._persist_retries = persist_retries

    @property
    def locks(self) -> RuleLockRegistry:
        return self._locks

    # ─── Operations ──────────────────────────────────────────────

    async def handle(
        self, tenant_id: TenantId, event: TriggerEvent,
    ) -> list[ExecutionRecord]:
        """Run every matching rule for event concurrently. Never raises."""
        try:
            candidates = match_rules(
                event, await self._rules.list_active(tenant_id, event.trigger_type),
            )
        except Exception as e:
            logger.error(
                f"Failed to load rules for {event.trigger_type.value}: {e}",
                extra={"tenant_id": str(tenant_id), "trigger_type": event.trigger_type.value},
                exc_info=True,
            )
            return []
        if not candidates:
            return []
        logger.info(
            f"{len(candidates)} rule(s) matched {event.trigger_type.value}",
            extra={"tenant_id": str(tenant_id), "trigger_type": event.trigger_type.value},
        )
        outcomes = await asyncio.gather(
            *(self._run_isolated(rule, event) for rule in candidates),
        )
        return [o.record for o in outcomes if o is not None]

    async def trigger(
        self,
        tenant_id: TenantId,
        rule_id: RuleId,
        event_data: Mapping[str, Any] | None = None,
        entity_type: str | None = None,
        entity_id: UUID | None = None,
    ) -> ExecutionRecord:
        """Manually run one rule. Honours rate limits; ignores trigger matching.

        Raises RuleNotFoundError, or ActionExecutionError (after recording the
        failed execution) when the action fails.
        """
        rule = await self._get_rule(tenant_id, rule_id)
        event = TriggerEvent(
            trigger_type=TriggerType.MANUAL,
            data=dict(event_data or {}),
            entity_type=entity_type or rule.trigger_entity_type,
            entity_id=entity_id,
        )
        outcome = await self._run(rule, event)
        if outcome.record.status == ExecutionStatus.FAILED:
            raise _surface(outcome)
        return outcome.record

    async def test(
        self,
        tenant_id: TenantId,
        rule_id: RuleId,
        test_data: Mapping[str, Any] | None = None,
    ) -> RuleTestResult:
        """Dry run: evaluate conditions and rate limit, preview the action."""
        rule = await self._get_rule(tenant_id, rule_id)
        data = dict(test_data or {})
        evaluation = evaluate_conditions(rule.conditions, data)
        decision = await self._rate_decision(rule, self._clock())
        return RuleTestResult(
            rule_id=rule.id,
            is_active=rule.is_active,
            would_trigger=rule.is_active and evaluation.conditions_met,
            conditions_met=evaluation.conditions_met,
            condition_results=evaluation.results,
            rate_limit=decision,
            action_preview=self._dispatcher.preview(rule, data),
        )

    async def run_due_schedules(
        self, now: datetime | None = None,
    ) -> list[ExecutionRecord]:
        """Fire a Schedule event for every due rule and advance its next fire time."""
        now = now or self._clock()
        due = due_schedule_rules(await self._rules.list_due_schedules(now), now)
        if not due:
            return []
        outcomes = await asyncio.gather(*(self._fire_schedule(r, now) for r in due))
        return [o.record for o in outcomes if o is not None]

    # ─── Pipeline ────────────────────────────────────────────────

    async def _fire_schedule(self, rule: Rule, now: datetime) -> _Outcome | None:
        scheduled_for = rule.next_scheduled_at
        try:
            following = next_fire_time(rule.cron_expression, rule.timezone, now)
        except AutomationError as e:
            logger.error(
                f"Disabling schedule for rule '{rule.name}': {e.message}",
                extra={"rule_id": str(rule.id), "error_code": e.code},
            )
            following = None
        try:
            await self._rules.set_next_scheduled_at(rule.id, following)
        except DatabaseError as e:
            # Not advancing would refire next tick; skip this round instead
            logger.error(
                f"Failed to advance schedule for rule '{rule.name}': {e.message}",
                extra={"rule_id": str(rule.id), "error_code": e.code},
            )
            return None
        event = TriggerEvent(
            trigger_type=TriggerType.SCHEDULE,
            data={
                "ruleName": rule.name,
                "scheduledAt": scheduled_for.isoformat() if scheduled_for else None,
                "firedAt": now.isoformat(),
                "nextScheduledAt": following.isoformat() if following else None,
            },
            entity_type=rule.trigger_entity_type,
            occurred_at=now,
        )
        return await self._run_isolated(rule, event)

    async def _run_isolated(self, rule: Rule, event: TriggerEvent) -> _Outcome | None:
        try:
            return await self._run(rule, event)
        except Exception as e:
            logger.error(
                f"Rule '{rule.name}' pipeline aborted: {e}",
                extra={"tenant_id": str(rule.tenant_id), "rule_id": str(rule.id)},
                exc_info=True,
            )
            return None

    async def _run(self, rule: Rule, event: TriggerEvent) -> _Outcome | None:
        """Pipeline for one (rule, trigger) pair under the rule's lock.

        Returns None when an event or schedule trigger finds its rule deleted or
        deactivated after it was matched; nothing is recorded for it.
        """
        async with self._locks.lock_for(rule.id):
            current = await self._rules.get(rule.tenant_id, rule.id)
            if event.trigger_type != TriggerType.MANUAL and (
                current is None or not current.is_active
            ):
                logger.info(
                    f"Rule '{rule.name}' withdrawn before it ran, dropping trigger",
                    extra={
                        "tenant_id": str(rule.tenant_id), "rule_id": str(rule.id),
                        "trigger_type": event.trigger_type.value,
                    },
                )
                return None
            if current is None:
                raise RuleNotFoundError(str(rule.id), str(rule.tenant_id))
            rule = current
            record = start_execution(rule, event, self._clock())
            await self._executions.add(record)

            try:
                record = await self._decide(rule, record, event)
            except asyncio.CancelledError:
                await asyncio.shield(
                    self._finish(rule, mark_cancelled(record, self._clock())),
                )
                raise
            except Exception as e:
                # Nothing was dispatched: record the failure, leave counters alone
                return await self._fail(rule, record, e, counted=False)
            if record.is_terminal:
                return _Outcome(await self._finish(rule, record))

            try:
                result = await self._dispatcher.execute(rule, record, event.data)
            except asyncio.CancelledError as e:
                await asyncio.shield(
                    self._finish(rule, mark_failed(record, e, self._clock())),
                )
                raise
            except Exception as e:
                return await self._fail(rule, record, e)
            record = mark_completed(record, result, self._clock())
            return _Outcome(await self._finish(rule, record))

    async def _decide(
        self, rule: Rule, record: ExecutionRecord, event: TriggerEvent,
    ) -> ExecutionRecord:
        """Rate limit, then conditions. Returns a skipped or running record."""
        decision = await self._rate_decision(rule, record.started_at)
        if not decision.allowed:
            return mark_skipped(
                record, decision.reason, self._clock(), detail=decision.detail,
            )
        evaluation = evaluate_conditions(rule.conditions, event.data)
        if not evaluation.conditions_met:
            return mark_skipped(
                record, SkipReason.CONDITIONS_NOT_MET, self._clock(),
                result_data={
                    "conditionResults": [r.to_dict() for r in evaluation.results],
                },
            )
        return mark_running(record)

    async def _rate_decision(self, rule: Rule, now: datetime) -> RateDecision:
        completed_today = 0
        if rule.max_executions_per_day is not None:
            start, end = day_window(now, rule_timezone(rule))
            completed_today = await self._executions.count_completed(rule.id, start, end)
        return check_rate_limit(rule, now, completed_today)

    async def _fail(
        self, rule: Rule, record: ExecutionRecord, error: Exception,
        counted: bool = True,
    ) -> _Outcome:
        code = getattr(error, "code", type(error).__name__)
        logger.warning(
            f"Rule '{rule.name}' failed: {error}",
            extra={
                "tenant_id": str(rule.tenant_id), "rule_id": str(rule.id),
                "execution_id": str(record.id), "error_code": code,
                "action_type": rule.action_type.value,
            },
        )
        record = mark_failed(record, error, self._clock())
        return _Outcome(await self._finish(rule, record, counted), error)

    async def _finish(
        self, rule: Rule, record: ExecutionRecord, counted: bool = True,
    ) -> ExecutionRecord:
        """Persist the terminal record, then its counter increments if counted."""
        await self._persist("update execution", lambda: self._executions.update(record))
        delta = counter_increments(record)
        if counted and not delta.is_empty:
            await self._persist(
                "apply counters", lambda: self._rules.apply_counters(rule.id, delta),
            )
        logger.info(
            f"Rule '{rule.name}' {record.status.value}",
            extra={
                "tenant_id": str(rule.tenant_id), "rule_id": str(rule.id),
                "execution_id": str(record.id), "status": record.status.value,
                "trigger_type": record.trigger_type.value if record.trigger_type else None,
                "duration_ms": record.duration_ms,
            },
        )
        return record

    async def _persist(
        self, operation: str, write: Callable[[], Awaitable[None]],
    ) -> None:
        for attempt in range(self._persist_retries + 1):
            try:
                await write()
                return
            except DatabaseError as e:
                if attempt >= self._persist_retries:
                    logger.error(
                        f"Giving up on {operation} after {attempt + 1} attempt(s)",
                        extra={"error_code": e.code, "attempt": attempt + 1},
                    )
                    raise
                delay = _PERSIST_BASE_DELAY_S * (2 ** attempt)
                logger.warning(
                    f"{operation} failed, retry in {delay:.2f}s: {e.message}",
                    extra={"error_code": e.code, "attempt": attempt + 1},
                )
                await asyncio.sleep(delay)

    async def _get_rule(self, tenant_id: TenantId, rule_id: RuleId) -> Rule:
        rule = await self._rules.get(tenant_id, rule_id)
        if rule is None:
            raise RuleNotFoundError(str(rule_id), str(tenant_id))
        return rule


def _surface(outcome: _Outcome) -> ActionExecutionError:
    """Error for a failed manual trigger, carrying the recorded execution id."""
    record = outcome.record
    error = outcome.error
    if isinstance(error, ActionExecutionError):
        error.context.execution_id = str(record.id)
        return error
    surfaced = ActionExecutionError(
        record.error_message or "Rule execution failed",
        context=ErrorContext(
            tenant_id=str(record.tenant_id), rule_id=str(record.rule_id),
            execution_id=str(record.id),
        ),
    )
    if error is not None:
        surfaced.__cause__ = error
    return surfaced
