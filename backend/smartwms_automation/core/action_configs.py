"""Action Configs — one validated payload shape per action type (tagged union).

Invariants:
    - ACTION_CONFIG_MODELS has exactly one model per ActionType member
    - parse_action_config is the single decode point: rule save validates, load decodes
    - Configs are frozen — handlers render templates into new values, never mutate
    - Unknown keys are rejected (extra="forbid") so typos surface at save time

Design Decisions:
    - Tag lives beside the payload (Rule.action_type), not inside it: the rule row
      already stores action_type, and the API accepts the pair separately
    - Template strings ({{field}}) stay as plain str here; rendering is a
      dispatch-time concern (core/render_template.py)
"""

from decimal import Decimal
from typing import Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from smartwms_automation.core.domain_types import ActionType
from smartwms_automation.core.errors import InvalidRuleError


class _ActionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


# ─── Tasks ───────────────────────────────────────────────────────

class CreateTaskConfig(_ActionConfig):
    task_type: str = Field(min_length=1, max_length=50)  # pick, putaway, cycle_count, ...
    priority: int | None = Field(None, ge=1, le=1000)
    assign_to_user_id: UUID | None = None
    assign_to_role_id: UUID | None = None
    notes: str | None = Field(None, max_length=2000)


class AssignTaskConfig(_ActionConfig):
    task_id: str = "{{taskId}}"
    user_id: UUID | None = None
    role_id: UUID | None = None
    notes: str | None = Field(None, max_length=2000)

    @model_validator(mode="after")
    def require_assignee(self):
        if not self.user_id and not self.role_id:
            raise ValueError("assign_task requires user_id or role_id")
        return self


# ─── Notifications ───────────────────────────────────────────────

class SendNotificationConfig(_ActionConfig):
    title: str | None = Field(None, max_length=200)
    message: str | None = Field(None, max_length=4000)
    template_code: str | None = None
    priority: Literal["low", "normal", "high", "urgent"] = "normal"
    notification_type: Literal["alert", "info", "warning", "success"] = "alert"
    user_ids: list[UUID] = Field(default_factory=list)
    role_ids: list[UUID] = Field(default_factory=list)
    send_to_all_admins: bool = False
    action_url: str | None = None
    action_label: str | None = None


class SendEmailConfig(_ActionConfig):
    to_addresses: list[str] = Field(default_factory=list)
    to_user_ids: list[UUID] = Field(default_factory=list)
    to_role_ids: list[UUID] = Field(default_factory=list)
    cc_addresses: list[str] = Field(default_factory=list)
    subject: str | None = Field(None, max_length=500)
    body: str | None = None
    template_code: str | None = None
    is_html: bool = True

    @model_validator(mode="after")
    def require_recipients(self):
        if not (self.to_addresses or self.to_user_ids or self.to_role_ids):
            raise ValueError("send_email requires at least one recipient")
        return self


class SendWebhookConfig(_ActionConfig):
    url: str = Field(min_length=1, max_length=2000)
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    payload_template: str | None = None
    timeout_seconds: float | None = Field(None, gt=0, le=300)
    auth_type: Literal["bearer", "basic", "apikey"] | None = None
    auth_token: str | None = None
    auth_username: str | None = None
    auth_password: str | None = None
    api_key_header: str = "X-API-Key"

    @model_validator(mode="after")
    def validate_auth(self):
        if not self.url.lower().startswith(("http://", "https://", "{{")):
            raise ValueError("webhook url must be http(s)")
        if self.auth_type in ("bearer", "apikey") and not self.auth_token:
            raise ValueError(f"{self.auth_type} auth requires auth_token")
        if self.auth_type == "basic" and not self.auth_username:
            raise ValueError("basic auth requires auth_username")
        return self


# ─── Entity updates ──────────────────────────────────────────────

class UpdateEntityStatusConfig(_ActionConfig):
    entity_type: str = Field(min_length=1, max_length=100)
    status: str = Field(min_length=1, max_length=100)


class UpdateEntityFieldConfig(_ActionConfig):
    entity_type: str = Field(min_length=1, max_length=100)
    field: str = Field(min_length=1, max_length=100)
    value: str = ""


# ─── Reports & integration ───────────────────────────────────────

class GenerateReportConfig(_ActionConfig):
    report_type: str = Field(min_length=1, max_length=100)
    parameters: dict[str, str] = Field(default_factory=dict)
    email_report: bool = False
    email_addresses: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def require_addresses_when_emailing(self):
        if self.email_report and not self.email_addresses:
            raise ValueError("email_report requires email_addresses")
        return self


class TriggerSyncConfig(_ActionConfig):
    integration_id: UUID
    entity_type: str = Field(min_length=1, max_length=100)
    direction: Literal["inbound", "outbound", "bidirectional"] = "outbound"


# ─── Stock ───────────────────────────────────────────────────────

class CreateAdjustmentConfig(_ActionConfig):
    reason_code: str | None = None
    quantity: Decimal | None = None
    notes: str | None = Field(None, max_length=2000)


class CreateTransferConfig(_ActionConfig):
    from_location_id: UUID | None = None
    to_location_id: UUID | None = None
    quantity: Decimal | None = Field(None, gt=0)
    notes: str | None = Field(None, max_length=2000)


# ─── Custom ──────────────────────────────────────────────────────

class ExecuteScriptConfig(_ActionConfig):
    script_name: str = Field(min_length=1, max_length=200)
    parameters: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float | None = Field(None, gt=0, le=300)


ActionConfig = Union[
    CreateTaskConfig, AssignTaskConfig, SendNotificationConfig,
    SendEmailConfig, SendWebhookConfig, UpdateEntityStatusConfig,
    UpdateEntityFieldConfig, GenerateReportConfig, TriggerSyncConfig,
    CreateAdjustmentConfig, CreateTransferConfig, ExecuteScriptConfig,
]

# ADR: every mapping explicit: adding an action type requires editing this dict
ACTION_CONFIG_MODELS: dict[ActionType, type[_ActionConfig]] = {
    ActionType.CREATE_TASK: CreateTaskConfig,
    ActionType.ASSIGN_TASK: AssignTaskConfig,
    ActionType.SEND_NOTIFICATION: SendNotificationConfig,
    ActionType.SEND_EMAIL: SendEmailConfig,
    ActionType.SEND_WEBHOOK: SendWebhookConfig,
    ActionType.UPDATE_ENTITY_STATUS: UpdateEntityStatusConfig,
    ActionType.UPDATE_ENTITY_FIELD: UpdateEntityFieldConfig,
    ActionType.GENERATE_REPORT: GenerateReportConfig,
    ActionType.TRIGGER_SYNC: TriggerSyncConfig,
    ActionType.CREATE_ADJUSTMENT: CreateAdjustmentConfig,
    ActionType.CREATE_TRANSFER: CreateTransferConfig,
    ActionType.EXECUTE_SCRIPT: ExecuteScriptConfig,
}


def parse_action_config(
    action_type: ActionType, raw: dict | BaseModel | None,
) -> ActionConfig:
    """Decode and validate raw config for action_type. Raises InvalidRuleError."""
    model = ACTION_CONFIG_MODELS[ActionType(action_type)]
    if isinstance(raw, model):
        return raw
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    try:
        return model.model_validate(raw or {})
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'action_config'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidRuleError(
            f"Invalid {ActionType(action_type).value} config: {details}",
            field="action_config",
        )


def dump_action_config(config: ActionConfig) -> dict:
    """JSON-safe dict for the action_config column."""
    return config.model_dump(mode="json")
