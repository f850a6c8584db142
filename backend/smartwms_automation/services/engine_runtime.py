"""Engine Runtime — process-wide wiring of the engine, publisher, and scheduler.

Invariants:
    - At most one runtime per process; init_engine replaces (and returns) it
    - One RuleLockRegistry per runtime: every entry point (HTTP, publisher,
      scheduler) serializes on the same per-rule locks
    - Repositories resolve db_manager per operation, so the runtime never holds a session
    - shutdown_engine stops the scheduler before closing the webhook client

Design Decisions:
    - Module-level singleton like infrastructure.database.db_manager: FastAPI lifespan
      manages it, get_runtime() is the request dependency
    - get_runtime() builds the runtime on first use when startup did not (ASGI test
      transports skip lifespan); the scheduler is only started by the lifespan
    - Only the capabilities this service owns are wired by default (webhooks and the
      notification outbox); hosts embedding the engine pass the rest in
"""

import logging
from dataclasses import dataclass, replace

from smartwms_automation.config import Settings, get_settings
from smartwms_automation.infrastructure.notification_outbox import SqlNotificationSender
from smartwms_automation.infrastructure.webhook_client import ResilientWebhookClient
from smartwms_automation.services.action_dispatch import ActionCapabilities, ActionDispatcher
from smartwms_automation.services.automation_engine import AutomationEngine
from smartwms_automation.services.automation_scheduler import AutomationScheduler
from smartwms_automation.services.event_publisher import AutomationEventPublisher
from smartwms_automation.services.sql_repositories import (
    SqlExecutionRepository,
    SqlRuleRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class AutomationRuntime:
    engine: AutomationEngine
    publisher: AutomationEventPublisher
    scheduler: AutomationScheduler
    webhook_client: ResilientWebhookClient


runtime: AutomationRuntime | None = None


def init_engine(
    settings: Settings | None = None,
    capabilities: ActionCapabilities | None = None,
) -> AutomationRuntime:
    global runtime
    settings = settings or get_settings()
    webhook_client = ResilientWebhookClient(
        max_retries=settings.webhook_max_retries,
        base_delay_ms=settings.webhook_base_delay_ms,
        max_delay_ms=settings.webhook_max_delay_ms,
        timeout_seconds=settings.webhook_timeout_seconds,
        response_max_chars=settings.webhook_response_max_chars,
    )
    wired = replace(
        capabilities or ActionCapabilities(),
        webhooks=(capabilities.webhooks if capabilities and capabilities.webhooks
                  else webhook_client),
        notifier=(capabilities.notifier if capabilities and capabilities.notifier
                  else SqlNotificationSender()),
    )
    engine = AutomationEngine(
        rules=SqlRuleRepository(),
        executions=SqlExecutionRepository(),
        dispatcher=ActionDispatcher(
            wired, default_webhook_timeout=settings.webhook_timeout_seconds,
        ),
        persist_retries=settings.execution_persist_retries,
    )
    runtime = AutomationRuntime(
        engine=engine,
        publisher=AutomationEventPublisher(engine),
        scheduler=AutomationScheduler(
            engine, interval_seconds=settings.scheduler_interval_seconds,
        ),
        webhook_client=webhook_client,
    )
    logger.info("Automation engine initialized")
    return runtime


def get_runtime() -> AutomationRuntime:
    """FastAPI dependency for the process runtime."""
    return runtime or init_engine()


def get_engine() -> AutomationEngine:
    return get_runtime().engine


def get_publisher() -> AutomationEventPublisher:
    return get_runtime().publisher


async def shutdown_engine() -> None:
    global runtime
    if runtime is None:
        return
    current, runtime = runtime, None
    await current.scheduler.stop()
    await current.webhook_client.aclose()
    logger.info("Automation engine shut down")
