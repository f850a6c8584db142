"""ORM Models — SQLAlchemy declarative models for the automation tables.

Invariants:
    - All models inherit from Base (db/base.py)
    - AutomationRule is the aggregate root; conditions and executions are scoped by rule_id

Design Decisions:
    - One file per entity for locality
    - All models imported here so SQLAlchemy resolves string-based relationship()
      references before any query runs (ADR: standard SQLAlchemy pattern)
"""

from smartwms_automation.models.automation_rule import AutomationRule, RuleCondition  # noqa: F401
from smartwms_automation.models.rule_execution import RuleExecution  # noqa: F401
from smartwms_automation.models.notification import Notification  # noqa: F401
