"""Boundary Protocols — contracts between core and shell.

Invariants:
    - Core NEVER imports from shell — dependency arrows point inward only
    - All IO operations accessed through Protocol types
    - Implementations provided by shell via dependency injection
    - Rule lookups take tenant_id; counter and schedule writes key on rule id alone

Design Decisions:
    - Protocol over ABC: structural subtyping, test fakes need no inheritance
    - Capabilities are narrow (one concern each) so a deployment wires only what
      it has; a missing capability fails the action, not the engine
    - Request/response shapes for capabilities are frozen dataclasses defined here,
      next to the protocols that consume them
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

from smartwms_automation.core.domain_types import RuleId, TenantId, TriggerType
from smartwms_automation.core.record_execution import CounterDelta, ExecutionRecord
from smartwms_automation.core.rule_types import Rule


# ─── Repositories ────────────────────────────────────────────────

class RuleRepository(Protocol):
    """Contract for rule reads and counter writes — implemented by shell."""
    async def list_active(
        self, tenant_id: TenantId, trigger_type: TriggerType,
    ) -> list[Rule]: ...
    async def get(self, tenant_id: TenantId, rule_id: RuleId) -> Rule | None: ...
    async def list_due_schedules(self, now: datetime) -> list[Rule]: ...
    async def apply_counters(self, rule_id: RuleId, delta: CounterDelta) -> None: ...
    async def set_next_scheduled_at(
        self, rule_id: RuleId, next_at: datetime | None,
    ) -> None: ...


class ExecutionRepository(Protocol):
    """Contract for the append-only execution log — implemented by shell."""
    async def add(self, record: ExecutionRecord) -> None: ...
    async def update(self, record: ExecutionRecord) -> None: ...
    async def count_completed(
        self, rule_id: RuleId, start: datetime, end: datetime,
    ) -> int: ...


# ─── Capability request shapes ──────────────────────────────────

@dataclass(frozen=True)
class NotificationRequest:
    tenant_id: TenantId
    title: str
    message: str
    notification_type: str = "alert"
    priority: str = "normal"
    user_ids: tuple[UUID, ...] = ()
    role_ids: tuple[UUID, ...] = ()
    send_to_all_admins: bool = False
    entity_type: str | None = None
    entity_id: UUID | None = None
    action_url: str | None = None
    action_label: str | None = None
    template_code: str | None = None


@dataclass(frozen=True)
class EmailRequest:
    tenant_id: TenantId
    subject: str
    body: str
    to_addresses: tuple[str, ...] = ()
    to_user_ids: tuple[UUID, ...] = ()
    to_role_ids: tuple[UUID, ...] = ()
    cc_addresses: tuple[str, ...] = ()
    is_html: bool = True
    template_code: str | None = None


@dataclass(frozen=True)
class WebhookRequest:
    url: str
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    timeout_seconds: float | None = None


@dataclass(frozen=True)
class WebhookResponse:
    status_code: int
    reason_phrase: str = ""
    body: str = ""
    attempts: int = 1


@dataclass(frozen=True)
class CreatedEntity:
    """Reference to something a capability created (task, adjustment, report, ...)."""
    entity_type: str
    entity_id: UUID | None = None
    number: str | None = None


# ─── Capabilities ────────────────────────────────────────────────

class TaskService(Protocol):
    async def create_task(
        self, tenant_id: TenantId, *, task_type: str, priority: int | None,
        assign_to_user_id: UUID | None, assign_to_role_id: UUID | None,
        notes: str | None, source: dict[str, Any],
    ) -> CreatedEntity: ...
    async def assign_task(
        self, tenant_id: TenantId, *, task_id: str,
        user_id: UUID | None, role_id: UUID | None, notes: str | None,
    ) -> None: ...


class Notifier(Protocol):
    async def send_notification(self, request: NotificationRequest) -> int: ...


class EmailSender(Protocol):
    async def send_email(self, request: EmailRequest) -> str | None: ...


class WebhookClient(Protocol):
    async def send(self, request: WebhookRequest) -> WebhookResponse: ...


class EntityUpdater(Protocol):
    async def update_status(
        self, tenant_id: TenantId, entity_type: str, entity_id: UUID, status: str,
    ) -> None: ...
    async def update_field(
        self, tenant_id: TenantId, entity_type: str, entity_id: UUID,
        field: str, value: str,
    ) -> None: ...


class ReportService(Protocol):
    async def generate_report(
        self, tenant_id: TenantId, *, report_type: str,
        parameters: dict[str, str], email_addresses: tuple[str, ...],
    ) -> CreatedEntity: ...


class SyncService(Protocol):
    async def trigger_sync(
        self, tenant_id: TenantId, *, integration_id: UUID,
        entity_type: str, direction: str,
    ) -> CreatedEntity: ...


class StockService(Protocol):
    async def create_adjustment(
        self, tenant_id: TenantId, *, product_id: UUID, location_id: UUID,
        quantity: Decimal, reason_code: str | None, notes: str | None,
        source: dict[str, Any],
    ) -> CreatedEntity: ...
    async def create_transfer(
        self, tenant_id: TenantId, *, product_id: UUID,
        from_location_id: UUID, to_location_id: UUID,
        quantity: Decimal, notes: str | None, source: dict[str, Any],
    ) -> CreatedEntity: ...


class ScriptRunner(Protocol):
    async def run_script(
        self, tenant_id: TenantId, *, script_name: str,
        parameters: dict[str, str], timeout_seconds: float | None,
    ) -> dict[str, Any]: ...
