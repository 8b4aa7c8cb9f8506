"""Optional in-process alert check timer.

Runs one orchestrator pass per CHECK_INTERVAL_MINUTES. Deployments driven by
an external cron leave the interval at 0 and call the check_alerts tool.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .core.models import CheckRunResult
from .orchestrator import CheckOrchestrator

logger = logging.getLogger(__name__)


class AlertScheduler:
    """Periodic driver for CheckOrchestrator.run_pass().

    A failed pass is logged and left for the next tick; passes never overlap.
    """

    def __init__(self, orchestrator: CheckOrchestrator, interval_minutes: int = 0):
        self.orchestrator = orchestrator
        self.interval = interval_minutes * 60
        self.last_run: Optional[CheckRunResult] = None
        self._task: asyncio.Task | None = None

    @property
    def enabled(self) -> bool:
        return self.interval > 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        if not self.enabled:
            logger.info("Alert scheduler disabled (CHECK_INTERVAL_MINUTES not set)")
            return
        if self.running:
            return
        self._task = asyncio.create_task(self._tick_forever(), name="alert-scheduler")
        logger.info("Alert scheduler started, checking every %d minutes", self.interval // 60)

    async def stop(self):
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Alert scheduler stopped")

    async def tick(self) -> Optional[CheckRunResult]:
        """Run one pass now. Returns None if the pass raised."""
        try:
            self.last_run = await self.orchestrator.run_pass()
        except Exception as exc:
            logger.error("Scheduled alert check failed: %s", exc, exc_info=True)
            return None
        if not self.last_run.success:
            logger.warning("Scheduled alert check finished with errors: %s", "; ".join(self.last_run.errors))
        return self.last_run

    async def _tick_forever(self):
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()
