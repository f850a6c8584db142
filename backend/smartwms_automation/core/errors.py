"""Error Hierarchy — typed, categorized exceptions for every automation failure mode.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Rule/validation errors are 400-level; downstream action failures are 5xx
    - to_response() produces the REST envelope used by the global handlers
    - Rate limiting is NOT an error: it produces a skipped execution

Design Decisions:
    - Single hierarchy with AutomationError base: FastAPI global handler catches all
    - ActionTimeoutError subclasses ActionExecutionError so callers that handle
      action failures handle timeouts too
    - ErrorContext as dataclass: carries tenant/rule/execution ids for logs and responses
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    RESOURCE_NOT_FOUND = "resource_not_found"
    DATABASE = "database"
    EXTERNAL_API = "external_api"
    INTERNAL = "internal"
    TIMEOUT = "timeout"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    tenant_id: str | None = None
    rule_id: str | None = None
    execution_id: str | None = None
    action_type: str | None = None
    debug_info: dict[str, Any] | None = None
    retry_after_ms: int | None = None


class AutomationError(Exception):
    """Base exception for all automation errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "tenant_id": self.context.tenant_id,
                    "rule_id": self.context.rule_id,
                    "execution_id": self.context.execution_id,
                    "action_type": self.context.action_type,
                    "retry_after_ms": self.context.retry_after_ms,
                },
            }
        }


# ─── Rule Errors (400-level) ────────────────────────────────────

class InvalidRuleError(AutomationError):
    """Rule definition failed save-time validation."""
    def __init__(self, message: str, field: str, context: ErrorContext | None = None):
        super().__init__(
            message, "INVALID_RULE", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 400,
        )
        self.field = field


class RuleNotFoundError(AutomationError):
    """Rule does not exist for the tenant."""
    def __init__(
        self, rule_id: str, tenant_id: str, context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.rule_id = rule_id
        ctx.tenant_id = tenant_id
        super().__init__(
            f"Automation rule '{rule_id}' not found",
            "RULE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, ctx, 404,
        )


class ConditionEvaluationError(AutomationError):
    """A condition is malformed (bad operator, uncoercible expected value)."""
    def __init__(self, message: str, field: str, context: ErrorContext | None = None):
        super().__init__(
            message, "CONDITION_EVALUATION_ERROR", ErrorCategory.VALIDATION,
            ErrorSeverity.WARNING, context, 400,
        )
        self.field = field


# ─── Action Errors (5xx) ────────────────────────────────────────

class ActionExecutionError(AutomationError):
    """Downstream capability failed while executing a rule action."""
    def __init__(
        self,
        message: str,
        action_type: str | None = None,
        code: str = "ACTION_EXECUTION_FAILED",
        retryable: bool = False,
        context: ErrorContext | None = None,
        category: ErrorCategory = ErrorCategory.EXTERNAL_API,
        http_status: int = 502,
    ):
        ctx = context or ErrorContext()
        if action_type:
            ctx.action_type = action_type
        super().__init__(
            message, code, category, ErrorSeverity.ERROR, ctx, http_status,
        )
        self.retryable = retryable


class ActionTimeoutError(ActionExecutionError):
    """External call made by an action exceeded its timeout."""
    def __init__(
        self,
        message: str,
        action_type: str | None = None,
        timeout_seconds: float | None = None,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            message, action_type, "ACTION_TIMEOUT", retryable=True,
            context=context, category=ErrorCategory.TIMEOUT, http_status=504,
        )
        self.timeout_seconds = timeout_seconds


class InvalidExecutionTransitionError(AutomationError):
    """Execution record asked to move to a state its lifecycle forbids."""
    def __init__(
        self, current: str, target: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"Execution cannot move from '{current}' to '{target}'",
            "INVALID_EXECUTION_TRANSITION", ErrorCategory.INTERNAL,
            ErrorSeverity.CRITICAL, context, 500,
        )
        self.current = current
        self.target = target


# ─── Infrastructure Errors (500-level) ──────────────────────────

class DatabaseError(AutomationError):
    """Database operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation
