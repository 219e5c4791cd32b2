"""Scheduled audit log retention"""

import asyncio
from typing import Optional
import structlog

from threatguard.services.audit_service import AuditService
from threatguard.utils.config import settings

logger = structlog.get_logger()


class RetentionJob:
    """
    Periodically deletes audit records past the retention period

    ``stop()`` sets a stop signal: a deletion batch already running finishes,
    then the job exits without starting another.
    """

    def __init__(self, audit_service: AuditService, interval_seconds: Optional[float] = None):
        self.audit_service = audit_service
        self.interval_seconds = interval_seconds or settings.AUDIT_CLEANUP_INTERVAL_SECONDS
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info("retention_job_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop.set()
        await self._task
        self._task = None
        logger.info("retention_job_stopped")

    async def run_once(self) -> int:
        return await self.audit_service.cleanup_old_logs(stop_event=self._stop)

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error("retention_cleanup_failed", error=str(e))

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
