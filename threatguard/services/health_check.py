"""Periodic security housekeeping"""

import asyncio
from typing import Dict, Optional
import structlog

from threatguard.services.rate_limiter import RateLimiter
from threatguard.services.security_monitor import SecurityMonitor
from threatguard.utils.config import settings

logger = structlog.get_logger()


class SecurityHealthCheck:
    """
    Expires stale threats and rate-limit windows on an interval

    Dropping a stale critical threat is what ends a tenant lockdown that no
    operator resolved.
    """

    def __init__(
        self,
        monitor: SecurityMonitor,
        rate_limiter: RateLimiter,
        interval_seconds: Optional[float] = None
    ):
        self.monitor = monitor
        self.rate_limiter = rate_limiter
        self.interval_seconds = interval_seconds or settings.SECURITY_HEALTH_CHECK_INTERVAL_SECONDS
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
        logger.info("security_health_check_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop.set()
        await self._task
        self._task = None
        logger.info("security_health_check_stopped")

    async def run_once(self) -> Dict[str, int]:
        stale_threats = self.monitor.cleanup_stale_threats()
        expired_windows = await self.rate_limiter.prune()

        logger.info(
            "security_health_check",
            stale_threats=stale_threats,
            expired_windows=expired_windows,
            active_threats=len(self.monitor.threats)
        )
        return {"stale_threats": stale_threats, "expired_windows": expired_windows}

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error("security_health_check_failed", error=str(e))

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
