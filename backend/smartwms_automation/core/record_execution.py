"""Execution Recording — audit-record lifecycle for one rule evaluation attempt.

Invariants:
    - Records are frozen; every transition returns a new record
    - Lifecycle: pending -> running -> {completed, failed}
                 pending -> {skipped, cancelled, failed}
    - Terminal records (completed/failed/skipped/cancelled) never transition again
    - duration_ms = completed_at - started_at in every terminal state
    - Counters: completed => total+1, successful+1; failed => total+1, failed+1;
      skipped/cancelled => no change. last_executed_at advances on completed/failed only

Design Decisions:
    - Pure functions over a mutable ORM row: the engine owns the only copy while
      running, the repository persists snapshots
    - Trigger data snapshot made JSON-safe at creation so the log stores exactly what
      conditions saw
"""

import traceback
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic_core import to_jsonable_python

from smartwms_automation.core.domain_types import (
    ExecutionId,
    ExecutionStatus,
    RuleId,
    SkipReason,
    TenantId,
    TERMINAL_STATUSES,
    TriggerType,
)
from smartwms_automation.core.errors import InvalidExecutionTransitionError, ErrorContext
from smartwms_automation.core.rule_types import Rule, TriggerEvent, as_utc

_ALLOWED_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset({
        ExecutionStatus.RUNNING,
        ExecutionStatus.SKIPPED,
        ExecutionStatus.CANCELLED,
        ExecutionStatus.FAILED,
    }),
    ExecutionStatus.RUNNING: frozenset({
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
    }),
}


@dataclass(frozen=True)
class ActionResult:
    """What a successful action dispatch reports back."""
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    created_entity_type: str | None = None
    created_entity_id: UUID | None = None


@dataclass(frozen=True)
class ExecutionRecord:
    id: ExecutionId
    tenant_id: TenantId
    rule_id: RuleId
    started_at: datetime
    trigger_type: TriggerType | None = None
    trigger_entity_type: str | None = None
    trigger_entity_id: UUID | None = None
    trigger_event_data: dict | None = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    completed_at: datetime | None = None
    duration_ms: int = 0
    conditions_met: bool = False
    skip_reason: SkipReason | None = None
    result_data: dict | None = None
    error_message: str | None = None
    error_stack_trace: str | None = None
    created_entity_type: str | None = None
    created_entity_id: UUID | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "tenant_id": str(self.tenant_id),
            "rule_id": str(self.rule_id),
            "trigger_type": self.trigger_type.value if self.trigger_type else None,
            "trigger_entity_type": self.trigger_entity_type,
            "trigger_entity_id": (
                str(self.trigger_entity_id) if self.trigger_entity_id else None
            ),
            "trigger_event_data": self.trigger_event_data,
            "started_at": self.started_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "duration_ms": self.duration_ms,
            "status": self.status.value,
            "conditions_met": self.conditions_met,
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
            "result_data": self.result_data,
            "error_message": self.error_message,
            "created_entity_type": self.created_entity_type,
            "created_entity_id": (
                str(self.created_entity_id) if self.created_entity_id else None
            ),
        }


@dataclass(frozen=True)
class CounterDelta:
    total: int = 0
    successful: int = 0
    failed: int = 0
    last_executed_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.total or self.successful or self.failed)


# ─── Lifecycle ───────────────────────────────────────────────────

def start_execution(
    rule: Rule, event: TriggerEvent, now: datetime,
    execution_id: UUID | None = None,
) -> ExecutionRecord:
    """New pending record with a JSON-safe snapshot of the trigger."""
    return ExecutionRecord(
        id=ExecutionId(execution_id or uuid.uuid4()),
        tenant_id=rule.tenant_id,
        rule_id=rule.id,
        started_at=as_utc(now),
        trigger_type=event.trigger_type,
        trigger_entity_type=event.entity_type,
        trigger_entity_id=event.entity_id,
        trigger_event_data=snapshot_event_data(event.data),
    )


def mark_running(record: ExecutionRecord) -> ExecutionRecord:
    _check_transition(record, ExecutionStatus.RUNNING)
    return replace(record, status=ExecutionStatus.RUNNING, conditions_met=True)


def mark_completed(
    record: ExecutionRecord, result: ActionResult, now: datetime,
) -> ExecutionRecord:
    _check_transition(record, ExecutionStatus.COMPLETED)
    return replace(
        _finish(record, ExecutionStatus.COMPLETED, now),
        result_data={"message": result.message, **snapshot_event_data(result.data)},
        created_entity_type=result.created_entity_type,
        created_entity_id=result.created_entity_id,
    )


def mark_failed(
    record: ExecutionRecord, error: BaseException, now: datetime,
    result_data: dict | None = None,
) -> ExecutionRecord:
    _check_transition(record, ExecutionStatus.FAILED)
    message = getattr(error, "message", None) or str(error) or type(error).__name__
    return replace(
        _finish(record, ExecutionStatus.FAILED, now),
        error_message=message,
        error_stack_trace="".join(
            traceback.format_exception(type(error), error, error.__traceback__),
        ),
        result_data=snapshot_event_data(result_data) if result_data else None,
    )


def mark_skipped(
    record: ExecutionRecord, reason: SkipReason, now: datetime,
    conditions_met: bool = False, detail: str | None = None,
    result_data: dict | None = None,
) -> ExecutionRecord:
    _check_transition(record, ExecutionStatus.SKIPPED)
    data = {"reason": reason.value}
    if detail:
        data["detail"] = detail
    if result_data:
        data.update(snapshot_event_data(result_data))
    return replace(
        _finish(record, ExecutionStatus.SKIPPED, now),
        skip_reason=reason,
        conditions_met=conditions_met,
        result_data=data,
    )


def mark_cancelled(record: ExecutionRecord, now: datetime) -> ExecutionRecord:
    _check_transition(record, ExecutionStatus.CANCELLED)
    return replace(
        _finish(record, ExecutionStatus.CANCELLED, now),
        result_data={"reason": "cancelled before dispatch"},
    )


def counter_increments(record: ExecutionRecord) -> CounterDelta:
    """Counter changes a terminal record implies for its rule."""
    if record.status == ExecutionStatus.COMPLETED:
        return CounterDelta(
            total=1, successful=1, last_executed_at=record.completed_at,
        )
    if record.status == ExecutionStatus.FAILED:
        return CounterDelta(total=1, failed=1, last_executed_at=record.completed_at)
    return CounterDelta()


def snapshot_event_data(data: Any) -> dict | None:
    if data is None:
        return None
    return to_jsonable_python(dict(data), fallback=str)


# ─── Helpers ─────────────────────────────────────────────────────

def _finish(
    record: ExecutionRecord, status: ExecutionStatus, now: datetime,
) -> ExecutionRecord:
    completed_at = max(as_utc(now), record.started_at)
    duration = int((completed_at - record.started_at).total_seconds() * 1000)
    return replace(
        record, status=status, completed_at=completed_at, duration_ms=duration,
    )


def _check_transition(record: ExecutionRecord, target: ExecutionStatus) -> None:
    allowed = _ALLOWED_TRANSITIONS.get(record.status, frozenset())
    if target not in allowed:
        raise InvalidExecutionTransitionError(
            record.status.value, target.value,
            context=ErrorContext(
                rule_id=str(record.rule_id), execution_id=str(record.id),
            ),
        )
