"""Action Dispatch — explicit routing from action_type to the handler that performs it.

Invariants:
    - Every ActionType -> handler mapping is visible in one dict (no getattr magic)
    - Each handler renders its config templates from the trigger data, then calls
      exactly one capability
    - Any failure surfaces as ActionExecutionError (ActionTimeoutError for timeouts);
      asyncio.CancelledError is never wrapped
    - A capability the deployment did not wire raises CAPABILITY_NOT_CONFIGURED

Design Decisions:
    - Explicit dict over getattr: adding an action type requires editing _handlers
    - Capabilities bundled in ActionCapabilities so tests inject fakes per field
    - preview() shares the rendering path with execute() so dry runs show exactly
      what a real dispatch would send, with credentials masked
"""

import base64
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from smartwms_automation.core.action_configs import (
    AssignTaskConfig,
    CreateAdjustmentConfig,
    CreateTaskConfig,
    CreateTransferConfig,
    ExecuteScriptConfig,
    GenerateReportConfig,
    SendEmailConfig,
    SendNotificationConfig,
    SendWebhookConfig,
    TriggerSyncConfig,
    UpdateEntityFieldConfig,
    UpdateEntityStatusConfig,
    dump_action_config,
)
from smartwms_automation.core.domain_types import ActionType
from smartwms_automation.core.errors import (
    ActionExecutionError,
    AutomationError,
    ErrorContext,
)
from smartwms_automation.core.evaluate_conditions import resolve_field
from smartwms_automation.core.record_execution import ActionResult, ExecutionRecord
from smartwms_automation.core.render_template import (
    render_config,
    render_template,
    render_value,
)
from smartwms_automation.core.repository_protocols import (
    EmailRequest,
    EmailSender,
    EntityUpdater,
    NotificationRequest,
    Notifier,
    ReportService,
    ScriptRunner,
    StockService,
    SyncService,
    TaskService,
    WebhookClient,
    WebhookRequest,
)
from smartwms_automation.core.rule_types import Rule, utc_now

logger = logging.getLogger(__name__)

# Fields automation may write through UpdateEntityField (compared without case/underscores)
UPDATABLE_FIELDS = frozenset({
    "priority", "notes", "internalnotes", "tags", "customfield1", "customfield2",
})

# Credential fields and header names never echoed back by preview()
SECRET_FIELDS = ("auth_token", "auth_password")
SECRET_HEADERS = frozenset({"authorization", "proxy-authorization", "x-api-key"})
MASK = "********"

Handler = Callable[[Rule, ExecutionRecord, Mapping[str, Any]], Awaitable[ActionResult]]


@dataclass
class ActionCapabilities:
    """Downstream services the dispatcher may call. Unwired ones stay None."""
    tasks: TaskService | None = None
    notifier: Notifier | None = None
    email: EmailSender | None = None
    webhooks: WebhookClient | None = None
    entities: EntityUpdater | None = None
    reports: ReportService | None = None
    sync: SyncService | None = None
    stock: StockService | None = None
    scripts: ScriptRunner | None = None


class ActionDispatcher:
    """Routes action_type -> handler. Explicit registration, no auto-discovery."""

    def __init__(
        self, capabilities: ActionCapabilities,
        default_webhook_timeout: float = 30.0,
    ):
        self._caps = capabilities
        self._default_webhook_timeout = default_webhook_timeout

        # ADR: every mapping explicit: adding an action type requires editing this dict
        self._handlers: dict[ActionType, Handler] = {
            # Tasks
            ActionType.CREATE_TASK: self._create_task,
            ActionType.ASSIGN_TASK: self._assign_task,

            # Messaging
            ActionType.SEND_NOTIFICATION: self._send_notification,
            ActionType.SEND_EMAIL: self._send_email,
            ActionType.SEND_WEBHOOK: self._send_webhook,

            # Entity updates
            ActionType.UPDATE_ENTITY_STATUS: self._update_entity_status,
            ActionType.UPDATE_ENTITY_FIELD: self._update_entity_field,

            # Reports & integration
            ActionType.GENERATE_REPORT: self._generate_report,
            ActionType.TRIGGER_SYNC: self._trigger_sync,

            # Stock
            ActionType.CREATE_ADJUSTMENT: self._create_adjustment,
            ActionType.CREATE_TRANSFER: self._create_transfer,

            # Custom
            ActionType.EXECUTE_SCRIPT: self._execute_script,
        }

    async def execute(
        self, rule: Rule, execution: ExecutionRecord, data: Mapping[str, Any],
    ) -> ActionResult:
        """Run rule's action. Raises ActionExecutionError on any failure."""
        handler = self._handlers.get(rule.action_type)
        if not handler:
            raise ActionExecutionError(
                f"Unsupported action type: {rule.action_type}",
                code="UNSUPPORTED_ACTION",
                context=_context(rule, execution),
            )
        logger.info(
            f"Executing {rule.action_type.value} for rule '{rule.name}'",
            extra={
                "rule_id": str(rule.id), "execution_id": str(execution.id),
                "action_type": rule.action_type.value,
            },
        )
        try:
            return await handler(rule, execution, data)
        except ActionExecutionError as e:
            e.context.rule_id = str(rule.id)
            e.context.execution_id = str(execution.id)
            e.context.tenant_id = str(rule.tenant_id)
            e.context.action_type = rule.action_type.value
            raise
        except AutomationError as e:
            raise ActionExecutionError(
                e.message, rule.action_type.value, context=_context(rule, execution),
            ) from e
        except Exception as e:
            raise ActionExecutionError(
                f"{rule.action_type.value} failed: {e}",
                rule.action_type.value, context=_context(rule, execution),
            ) from e

    def preview(self, rule: Rule, data: Mapping[str, Any]) -> dict:
        """Rendered action config for a dry run. Calls nothing."""
        return {
            "action_type": rule.action_type.value,
            "config": _mask_secrets(
                render_config(dump_action_config(rule.action_config), data),
            ),
        }

    # ─── Tasks ───────────────────────────────────────────────────

    async def _create_task(self, rule, execution, data) -> ActionResult:
        config: CreateTaskConfig = rule.action_config
        tasks = self._require(self._caps.tasks, "task service", rule)
        created = await tasks.create_task(
            rule.tenant_id,
            task_type=config.task_type,
            priority=config.priority,
            assign_to_user_id=config.assign_to_user_id,
            assign_to_role_id=config.assign_to_role_id,
            notes=render_template(config.notes, data) or None,
            source=_source(rule, execution),
        )
        return ActionResult(
            message=f"Created {config.task_type} task"
            + (f": {created.number}" if created.number else ""),
            data={"taskType": config.task_type, "number": created.number},
            created_entity_type=created.entity_type,
            created_entity_id=created.entity_id,
        )

    async def _assign_task(self, rule, execution, data) -> ActionResult:
        config: AssignTaskConfig = rule.action_config
        tasks = self._require(self._caps.tasks, "task service", rule)
        task_id = render_template(config.task_id, data)
        if not task_id or "{{" in task_id:
            raise ActionExecutionError(
                f"Cannot assign task: task id not found in trigger data ({config.task_id})",
                ActionType.ASSIGN_TASK.value,
            )
        await tasks.assign_task(
            rule.tenant_id, task_id=task_id,
            user_id=config.user_id, role_id=config.role_id,
            notes=render_template(config.notes, data) or None,
        )
        return ActionResult(message=f"Assigned task {task_id}", data={"taskId": task_id})

    # ─── Messaging ───────────────────────────────────────────────

    async def _send_notification(self, rule, execution, data) -> ActionResult:
        config: SendNotificationConfig = rule.action_config
        notifier = self._require(self._caps.notifier, "notifier", rule)
        request = NotificationRequest(
            tenant_id=rule.tenant_id,
            title=render_template(config.title or rule.name, data),
            message=render_template(config.message or "", data),
            notification_type=config.notification_type,
            priority=config.priority,
            user_ids=tuple(config.user_ids),
            role_ids=tuple(config.role_ids),
            send_to_all_admins=config.send_to_all_admins,
            entity_type=execution.trigger_entity_type,
            entity_id=execution.trigger_entity_id,
            action_url=config.action_url or f"/automation/rules/{rule.id}",
            action_label=config.action_label,
            template_code=config.template_code,
        )
        sent = await notifier.send_notification(request)
        if not sent:
            logger.warning(
                "No recipients for notification",
                extra={"rule_id": str(rule.id), "execution_id": str(execution.id)},
            )
            return ActionResult(
                message="No recipients found - notification skipped",
                data={"title": request.title, "sent": 0},
            )
        return ActionResult(
            message=f"Sent {sent} notification(s)",
            data={"title": request.title, "sent": sent},
        )

    async def _send_email(self, rule, execution, data) -> ActionResult:
        config: SendEmailConfig = rule.action_config
        email = self._require(self._caps.email, "email sender", rule)
        request = EmailRequest(
            tenant_id=rule.tenant_id,
            subject=render_template(config.subject or f"[SmartWMS] {rule.name}", data),
            body=render_template(config.body or "", data),
            to_addresses=tuple(render_value(config.to_addresses, data)),
            to_user_ids=tuple(config.to_user_ids),
            to_role_ids=tuple(config.to_role_ids),
            cc_addresses=tuple(render_value(config.cc_addresses, data)),
            is_html=config.is_html,
            template_code=config.template_code,
        )
        message_id = await email.send_email(request)
        recipients = len(request.to_addresses) + len(request.to_user_ids) + len(request.to_role_ids)
        return ActionResult(
            message=f"Email sent: {request.subject}",
            data={
                "to": list(request.to_addresses),
                "subject": request.subject,
                "bodyLength": len(request.body),
                "recipientGroups": recipients,
                "messageId": message_id,
            },
        )

    async def _send_webhook(self, rule, execution, data) -> ActionResult:
        config: SendWebhookConfig = rule.action_config
        client = self._require(self._caps.webhooks, "webhook client", rule)
        headers = {k: render_template(v, data) for k, v in config.headers.items()}
        headers.update(_auth_headers(config))
        body = None
        if config.method != "GET":
            headers.setdefault("Content-Type", "application/json")
            body = (
                render_template(config.payload_template, data)
                if config.payload_template
                else json.dumps(_default_envelope(rule, execution, data), default=str)
            )
        request = WebhookRequest(
            url=render_template(config.url, data),
            method=config.method,
            headers=headers,
            body=body,
            timeout_seconds=config.timeout_seconds or self._default_webhook_timeout,
        )
        response = await client.send(request)
        return ActionResult(
            message=f"Webhook called successfully: {response.status_code}",
            data={
                "statusCode": response.status_code,
                "reasonPhrase": response.reason_phrase,
                "responseBody": response.body,
                "attempts": response.attempts,
            },
        )

    # ─── Entity updates ──────────────────────────────────────────

    async def _update_entity_status(self, rule, execution, data) -> ActionResult:
        config: UpdateEntityStatusConfig = rule.action_config
        entities = self._require(self._caps.entities, "entity updater", rule)
        entity_id = _target_entity_id(execution, data, rule.action_type)
        status = render_template(config.status, data)
        await entities.update_status(rule.tenant_id, config.entity_type, entity_id, status)
        return ActionResult(
            message=f"Updated {config.entity_type} status to {status}",
            data={"entityType": config.entity_type, "entityId": str(entity_id), "status": status},
        )

    async def _update_entity_field(self, rule, execution, data) -> ActionResult:
        config: UpdateEntityFieldConfig = rule.action_config
        entities = self._require(self._caps.entities, "entity updater", rule)
        if config.field.replace("_", "").casefold() not in UPDATABLE_FIELDS:
            logger.warning(
                f"Attempted to update restricted field '{config.field}'",
                extra={"rule_id": str(rule.id)},
            )
            raise ActionExecutionError(
                f"Field '{config.field}' cannot be updated via automation",
                rule.action_type.value, code="FIELD_NOT_UPDATABLE",
            )
        entity_id = _target_entity_id(execution, data, rule.action_type)
        value = render_template(config.value, data)
        await entities.update_field(
            rule.tenant_id, config.entity_type, entity_id, config.field, value,
        )
        return ActionResult(
            message=f"Updated {config.entity_type}.{config.field}",
            data={"entityId": str(entity_id), "field": config.field, "value": value},
        )

    # ─── Reports & integration ───────────────────────────────────

    async def _generate_report(self, rule, execution, data) -> ActionResult:
        config: GenerateReportConfig = rule.action_config
        reports = self._require(self._caps.reports, "report service", rule)
        parameters = render_config(config.parameters, data)
        created = await reports.generate_report(
            rule.tenant_id,
            report_type=config.report_type,
            parameters=parameters,
            email_addresses=tuple(config.email_addresses) if config.email_report else (),
        )
        return ActionResult(
            message=f"Report generated: {config.report_type}",
            data={
                "reportType": config.report_type,
                "parameters": parameters,
                "emailed": config.email_report,
            },
            created_entity_type=created.entity_type,
            created_entity_id=created.entity_id,
        )

    async def _trigger_sync(self, rule, execution, data) -> ActionResult:
        config: TriggerSyncConfig = rule.action_config
        sync = self._require(self._caps.sync, "sync service", rule)
        created = await sync.trigger_sync(
            rule.tenant_id, integration_id=config.integration_id,
            entity_type=config.entity_type, direction=config.direction,
        )
        return ActionResult(
            message=f"Sync triggered: {config.entity_type} ({config.direction})",
            data={
                "integrationId": str(config.integration_id),
                "entityType": config.entity_type,
                "direction": config.direction,
            },
            created_entity_type=created.entity_type,
            created_entity_id=created.entity_id,
        )

    # ─── Stock ───────────────────────────────────────────────────

    async def _create_adjustment(self, rule, execution, data) -> ActionResult:
        config: CreateAdjustmentConfig = rule.action_config
        stock = self._require(self._caps.stock, "stock service", rule)
        product_id = _required_uuid(data, "productId", rule.action_type)
        location_id = _required_uuid(data, "locationId", rule.action_type)
        quantity = _decimal(resolve_field(data, "adjustmentQuantity")) or config.quantity
        if not quantity:
            raise ActionExecutionError(
                "Adjustment quantity is zero", rule.action_type.value,
            )
        created = await stock.create_adjustment(
            rule.tenant_id, product_id=product_id, location_id=location_id,
            quantity=quantity, reason_code=config.reason_code or "AUTOMATION",
            notes=render_template(config.notes, data) or f"Auto-created by rule: {rule.name}",
            source=_source(rule, execution),
        )
        return ActionResult(
            message="Created adjustment" + (f": {created.number}" if created.number else ""),
            data={"quantity": str(quantity), "number": created.number},
            created_entity_type=created.entity_type,
            created_entity_id=created.entity_id,
        )

    async def _create_transfer(self, rule, execution, data) -> ActionResult:
        config: CreateTransferConfig = rule.action_config
        stock = self._require(self._caps.stock, "stock service", rule)
        product_id = _required_uuid(data, "productId", rule.action_type)
        from_id = config.from_location_id or _uuid(resolve_field(data, "fromLocationId"))
        to_id = config.to_location_id or _uuid(resolve_field(data, "toLocationId"))
        if not from_id or not to_id:
            raise ActionExecutionError(
                "Cannot create transfer: fromLocationId or toLocationId not found",
                rule.action_type.value,
            )
        quantity = _decimal(resolve_field(data, "quantity")) or config.quantity
        if not quantity or quantity <= 0:
            raise ActionExecutionError(
                "Transfer quantity must be greater than zero", rule.action_type.value,
            )
        created = await stock.create_transfer(
            rule.tenant_id, product_id=product_id,
            from_location_id=from_id, to_location_id=to_id, quantity=quantity,
            notes=render_template(config.notes, data) or f"Auto-created by rule: {rule.name}",
            source=_source(rule, execution),
        )
        return ActionResult(
            message="Created transfer" + (f": {created.number}" if created.number else ""),
            data={"quantity": str(quantity), "number": created.number},
            created_entity_type=created.entity_type,
            created_entity_id=created.entity_id,
        )

    # ─── Custom ──────────────────────────────────────────────────

    async def _execute_script(self, rule, execution, data) -> ActionResult:
        config: ExecuteScriptConfig = rule.action_config
        scripts = self._require(self._caps.scripts, "script runner", rule)
        output = await scripts.run_script(
            rule.tenant_id,
            script_name=config.script_name,
            parameters=render_config(config.parameters, data),
            timeout_seconds=config.timeout_seconds,
        )
        return ActionResult(
            message=f"Script '{config.script_name}' executed",
            data={"output": output},
        )

    def _require(self, capability, name: str, rule: Rule):
        if capability is None:
            raise ActionExecutionError(
                f"No {name} configured for {rule.action_type.value}",
                rule.action_type.value, code="CAPABILITY_NOT_CONFIGURED",
            )
        return capability


# ─── Helpers ─────────────────────────────────────────────────────

def _context(rule: Rule, execution: ExecutionRecord) -> ErrorContext:
    return ErrorContext(
        tenant_id=str(rule.tenant_id), rule_id=str(rule.id),
        execution_id=str(execution.id), action_type=rule.action_type.value,
    )


def _source(rule: Rule, execution: ExecutionRecord) -> dict:
    return {
        "sourceDocumentType": "AutomationRule",
        "ruleId": str(rule.id),
        "ruleName": rule.name,
        "executionId": str(execution.id),
        "entityType": execution.trigger_entity_type,
        "entityId": str(execution.trigger_entity_id) if execution.trigger_entity_id else None,
    }


def _default_envelope(
    rule: Rule, execution: ExecutionRecord, data: Mapping[str, Any],
) -> dict:
    return {
        "ruleId": str(rule.id),
        "ruleName": rule.name,
        "executionId": str(execution.id),
        "triggerType": rule.trigger_type.value,
        "entityType": execution.trigger_entity_type,
        "entityId": str(execution.trigger_entity_id) if execution.trigger_entity_id else None,
        "data": dict(data),
        "timestamp": utc_now().isoformat(),
    }


def _auth_headers(config: SendWebhookConfig) -> dict[str, str]:
    if config.auth_type == "bearer":
        return {"Authorization": f"Bearer {config.auth_token}"}
    if config.auth_type == "basic":
        raw = f"{config.auth_username}:{config.auth_password or ''}".encode()
        return {"Authorization": f"Basic {base64.b64encode(raw).decode()}"}
    if config.auth_type == "apikey":
        return {config.api_key_header or "X-API-Key": config.auth_token}
    return {}


def _mask_secrets(config: dict) -> dict:
    masked = dict(config)
    for key in SECRET_FIELDS:
        if masked.get(key):
            masked[key] = MASK
    headers = masked.get("headers")
    if isinstance(headers, dict):
        secret = SECRET_HEADERS | {str(masked.get("api_key_header", "")).lower()}
        masked["headers"] = {
            name: MASK if name.lower() in secret else value
            for name, value in headers.items()
        }
    return masked

def _target_entity_id(
    execution: ExecutionRecord, data: Mapping[str, Any], action_type: ActionType,
) -> UUID:
    entity_id = execution.trigger_entity_id or _uuid(resolve_field(data, "id"))
    if entity_id is None:
        raise ActionExecutionError(
            "Cannot update entity: entity id not found", action_type.value,
        )
    return entity_id


def _required_uuid(data: Mapping[str, Any], key: str, action_type: ActionType) -> UUID:
    value = _uuid(resolve_field(data, key))
    if value is None:
        raise ActionExecutionError(
            f"Cannot run {action_type.value}: {key} not found", action_type.value,
        )
    return value


def _uuid(value: Any) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value)) if value is not None else None
    except ValueError:
        return None


def _decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None
