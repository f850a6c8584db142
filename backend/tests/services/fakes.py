"""In-memory fakes for engine tests — repositories, capabilities, and a settable clock.

Invariants:
    - Fakes satisfy the core Protocols structurally (no inheritance)
    - Repository reads return the latest stored Rule, so counter and schedule
      writes are visible to the next pipeline run, like the SQL repositories
    - Recording capabilities keep every request they receive
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from smartwms_automation.core.action_configs import parse_action_config
from smartwms_automation.core.domain_types import (
    ActionType,
    ExecutionStatus,
    RuleId,
    TenantId,
    TriggerType,
)
from smartwms_automation.core.errors import ActionExecutionError
from smartwms_automation.core.record_execution import CounterDelta, ExecutionRecord
from smartwms_automation.core.repository_protocols import (
    NotificationRequest,
    WebhookRequest,
    WebhookResponse,
)
from smartwms_automation.core.rule_types import Rule

T0 = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
TENANT = TenantId(uuid4())


def make_rule(
    name: str = "Notify on cancel",
    action_type: ActionType = ActionType.SEND_NOTIFICATION,
    action_config: dict | None = None,
    **overrides,
) -> Rule:
    if action_config is None:
        action_config = {"title": "Order {{orderNumber}} cancelled", "send_to_all_admins": True}
    fields = dict(
        id=RuleId(uuid4()),
        tenant_id=TENANT,
        name=name,
        trigger_type=TriggerType.STATUS_CHANGED,
        action_type=action_type,
        action_config=parse_action_config(action_type, action_config),
        created_at=T0,
    )
    fields.update(overrides)
    return Rule(**fields)


class Clock:
    """Callable clock tests advance explicitly."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


# ─── Repositories ────────────────────────────────────────────────

class InMemoryRuleRepository:
    def __init__(self, *rules: Rule):
        self.rules: dict[RuleId, Rule] = {r.id: r for r in rules}
        self.fail_list = False

    async def list_active(self, tenant_id, trigger_type):
        if self.fail_list:
            raise RuntimeError("rule store unavailable")
        return [
            r for r in self.rules.values()
            if r.tenant_id == tenant_id and r.trigger_type == trigger_type and r.is_active
        ]

    async def get(self, tenant_id, rule_id):
        rule = self.rules.get(rule_id)
        return rule if rule and rule.tenant_id == tenant_id else None

    async def list_due_schedules(self, now):
        return [
            r for r in self.rules.values()
            if r.trigger_type == TriggerType.SCHEDULE and r.is_active
            and r.next_scheduled_at is not None and r.next_scheduled_at <= now
        ]

    async def apply_counters(self, rule_id, delta: CounterDelta):
        rule = self.rules.get(rule_id)
        if rule is None:
            return
        self.rules[rule_id] = replace(
            rule,
            total_executions=rule.total_executions + delta.total,
            successful_executions=rule.successful_executions + delta.successful,
            failed_executions=rule.failed_executions + delta.failed,
            last_executed_at=delta.last_executed_at or rule.last_executed_at,
        )

    async def set_next_scheduled_at(self, rule_id, next_at):
        self.rules[rule_id] = replace(self.rules[rule_id], next_scheduled_at=next_at)


class InMemoryExecutionRepository:
    def __init__(self):
        self.records: dict = {}
        self.updates = 0

    async def add(self, record: ExecutionRecord):
        self.records[record.id] = record

    async def update(self, record: ExecutionRecord):
        self.updates += 1
        self.records[record.id] = record

    async def count_completed(self, rule_id, start, end):
        return sum(
            1 for r in self.records.values()
            if r.rule_id == rule_id and r.status == ExecutionStatus.COMPLETED
            and start <= r.started_at < end
        )

    def with_status(self, status: ExecutionStatus) -> list[ExecutionRecord]:
        return [r for r in self.records.values() if r.status == status]


# ─── Capabilities ────────────────────────────────────────────────

class RecordingNotifier:
    """Notifier that yields to the loop once per send, so races can interleave."""

    def __init__(self, recipients: int = 1, error: Exception | None = None):
        self.sent: list[NotificationRequest] = []
        self.recipients = recipients
        self.error = error

    async def send_notification(self, request: NotificationRequest) -> int:
        await asyncio.sleep(0)
        if self.error:
            raise self.error
        self.sent.append(request)
        return self.recipients


class RecordingWebhookClient:
    def __init__(self, status_code: int = 200, fail: bool = False):
        self.requests: list[WebhookRequest] = []
        self.status_code = status_code
        self.fail = fail

    async def send(self, request: WebhookRequest) -> WebhookResponse:
        self.requests.append(request)
        if self.fail:
            raise ActionExecutionError(
                "Webhook failed: 400 - Bad Request", ActionType.SEND_WEBHOOK.value,
                code="WEBHOOK_HTTP_ERROR",
            )
        return WebhookResponse(status_code=self.status_code, reason_phrase="OK", body="{}")
