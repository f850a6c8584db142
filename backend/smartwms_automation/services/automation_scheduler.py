"""Automation Scheduler — background polling loop that fires due schedule rules.

Invariants:
    - At most one loop task per scheduler; start() is idempotent
    - A failing tick is logged and the loop keeps running
    - stop() cancels the loop and waits for it; an in-flight tick is cancelled with it
      (its executions are recorded cancelled or failed by the engine)

Design Decisions:
    - Poll next_scheduled_at instead of registering one APScheduler job per rule:
      rules change at runtime, and the database stays the single source of truth
    - tick() is public so tests and operators can fire one round without the loop
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from smartwms_automation.core.rule_types import utc_now
from smartwms_automation.services.automation_engine import AutomationEngine

logger = logging.getLogger(__name__)


class AutomationScheduler:
    """Runs engine.run_due_schedules every interval_seconds."""

    def __init__(
        self, engine: AutomationEngine, interval_seconds: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._engine = engine
        self._interval = interval_seconds
        self._clock = clock
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="automation-scheduler")
        logger.info(f"Automation scheduler started (every {self._interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Automation scheduler stopped")

    async def tick(self) -> int:
        """Fire every due schedule rule once. Returns the number of executions."""
        records = await self._engine.run_due_schedules(self._clock())
        if records:
            logger.info(f"Scheduler fired {len(records)} rule(s)")
        return len(records)

    async def _loop(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}", exc_info=True)
            await asyncio.sleep(self._interval)
