"""Per-action request rate limiting"""

import asyncio
import math
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple
from pydantic import BaseModel
import structlog

from threatguard.models.security import RateLimitRule, RequestContext
from threatguard.utils.clock import Clock, utc_now
from threatguard.utils.config import settings

logger = structlog.get_logger()


class RateLimitStatus(BaseModel):
    allowed: bool
    bucket: str
    limit: int
    remaining: int
    retry_after: int = 0


class RateLimiter:
    """
    Fixed-window counters keyed by (tenant, actor, bucket)

    The actor is the user id, falling back to the client ip. Buckets are
    ``login``, ``export``, ``api`` and ``default``.
    """

    def __init__(
        self,
        rules: Optional[Dict[str, RateLimitRule]] = None,
        clock: Optional[Clock] = None
    ):
        if rules is None:
            rules = {
                bucket: RateLimitRule(max_requests=limit[0], window_seconds=limit[1])
                for bucket, limit in settings.RATE_LIMITS.items()
            }
        self.rules = rules
        self.clock = clock or utc_now
        self._windows: Dict[Tuple[str, str, str], Tuple[datetime, int]] = {}
        self._lock = asyncio.Lock()

    def bucket_for(self, context: RequestContext) -> str:
        action = context.action.lower()
        if action in ("login", "export") and action in self.rules:
            return action
        if context.is_api and "api" in self.rules:
            return "api"
        return "default"

    async def hit(self, context: RequestContext) -> RateLimitStatus:
        """Count one request and report whether it is within the limit"""
        bucket = self.bucket_for(context)
        rule = self.rules.get(bucket)
        if rule is None:
            return RateLimitStatus(allowed=True, bucket=bucket, limit=0, remaining=0)

        actor = context.user_id or context.ip_address or "anonymous"
        key = (context.tenant_id or "", actor, bucket)
        now = self.clock()

        async with self._lock:
            reset_at, count = self._windows.get(key, (None, 0))
            if reset_at is None or now >= reset_at:
                reset_at, count = now + timedelta(seconds=rule.window_seconds), 0

            if count >= rule.max_requests:
                retry_after = max(1, math.ceil((reset_at - now).total_seconds()))
                logger.warning(
                    "rate_limit_exceeded",
                    tenant_id=context.tenant_id,
                    actor=actor,
                    bucket=bucket,
                    limit=rule.max_requests,
                    retry_after=retry_after
                )
                return RateLimitStatus(
                    allowed=False,
                    bucket=bucket,
                    limit=rule.max_requests,
                    remaining=0,
                    retry_after=retry_after
                )

            count += 1
            self._windows[key] = (reset_at, count)

        return RateLimitStatus(
            allowed=True,
            bucket=bucket,
            limit=rule.max_requests,
            remaining=rule.max_requests - count
        )

    async def reset(self, tenant_id: Optional[str] = None) -> None:
        async with self._lock:
            if tenant_id is None:
                self._windows.clear()
            else:
                self._windows = {
                    k: v for k, v in self._windows.items() if k[0] != tenant_id
                }

    async def prune(self) -> int:
        """Drop expired windows"""
        now = self.clock()
        async with self._lock:
            expired = [k for k, (reset_at, _) in self._windows.items() if now >= reset_at]
            for key in expired:
                del self._windows[key]
            return len(expired)
