"""Domain Types — rich types that replace bare primitives across the codebase.

Invariants:
    - TenantId, RuleId, ExecutionId wrap UUIDs — never use bare UUID in domain logic
    - All valid states encoded as Enums — no raw string matching
    - TERMINAL_STATUSES are final: an execution never leaves them

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: serialize to JSON and DB String columns without custom encoders
"""

from enum import Enum
from typing import NewType
from uuid import UUID


# ─── Identity Types ──────────────────────────────────────────────

TenantId = NewType("TenantId", UUID)
RuleId = NewType("RuleId", UUID)
ExecutionId = NewType("ExecutionId", UUID)


# ─── Defaults ────────────────────────────────────────────────────

DEFAULT_PRIORITY = 100
DEFAULT_TIMEZONE = "UTC"


# ─── Enums ───────────────────────────────────────────────────────

class TriggerType(str, Enum):
    """Event class that causes a rule to be considered."""
    ENTITY_CREATED = "entity_created"
    ENTITY_UPDATED = "entity_updated"
    ENTITY_DELETED = "entity_deleted"
    STATUS_CHANGED = "status_changed"
    THRESHOLD_CROSSED = "threshold_crossed"
    SCHEDULE = "schedule"
    MANUAL = "manual"
    WEBHOOK_RECEIVED = "webhook_received"


class ActionType(str, Enum):
    """The effect a rule executes when its conditions pass."""
    CREATE_TASK = "create_task"
    ASSIGN_TASK = "assign_task"
    SEND_NOTIFICATION = "send_notification"
    SEND_EMAIL = "send_email"
    SEND_WEBHOOK = "send_webhook"
    UPDATE_ENTITY_STATUS = "update_entity_status"
    UPDATE_ENTITY_FIELD = "update_entity_field"
    GENERATE_REPORT = "generate_report"
    TRIGGER_SYNC = "trigger_sync"
    CREATE_ADJUSTMENT = "create_adjustment"
    CREATE_TRANSFER = "create_transfer"
    EXECUTE_SCRIPT = "execute_script"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUALS = "greater_than_or_equals"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUALS = "less_than_or_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    IN = "in"
    NOT_IN = "not_in"


class ConditionLogic(str, Enum):
    """How a condition combines with the running result of its predecessors."""
    AND = "and"
    OR = "or"


class ValueType(str, Enum):
    """Coercion applied to both sides of a condition before comparing."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"


class ExecutionStatus(str, Enum):
    """Execution lifecycle — maps to DB `status` column."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class SkipReason(str, Enum):
    COOLDOWN = "cooldown"
    DAILY_CAP = "daily_cap"
    CONDITIONS_NOT_MET = "conditions_not_met"


TERMINAL_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.SKIPPED,
    ExecutionStatus.CANCELLED,
})
