"""Per-user event history buffer"""

import asyncio
from collections import deque
from datetime import timedelta
from typing import Deque, Dict, List, Optional, Tuple
import structlog

from threatguard.models.audit import AuditEvent
from threatguard.models.threat import EventHistoryEntry
from threatguard.utils.clock import Clock, ensure_utc, utc_now
from threatguard.utils.config import settings

logger = structlog.get_logger()

HistoryKey = Tuple[Optional[str], Optional[str]]


class EventStore:
    """
    Bounded in-memory history of recent events per (tenant, user)

    Oldest entries are evicted once a key holds more than ``max_size``
    entries. Appends to one key are serialized by a per-key lock; reads
    return a snapshot so callers never see a sequence mid-eviction.
    The durable record is the audit log, this is only an analysis cache.
    """

    def __init__(self, max_size: Optional[int] = None, clock: Optional[Clock] = None):
        self.max_size = max_size or settings.THREAT_DETECTION_HISTORY_SIZE
        self.clock = clock or utc_now
        self._history: Dict[HistoryKey, Deque[EventHistoryEntry]] = {}
        self._locks: Dict[HistoryKey, asyncio.Lock] = {}

    def _lock_for(self, key: HistoryKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks.setdefault(key, asyncio.Lock())
        return lock

    async def record(self, event: AuditEvent) -> EventHistoryEntry:
        """Append an event to its (tenant, user) history"""
        key = (event.tenant_id, event.user_id)
        entry = EventHistoryEntry(event=event, timestamp=ensure_utc(event.timestamp))

        async with self._lock_for(key):
            history = self._history.get(key)
            if history is None:
                history = self._history[key] = deque(maxlen=self.max_size)
            history.append(entry)

        return entry

    async def window(
        self,
        tenant_id: Optional[str],
        user_id: Optional[str],
        duration: timedelta
    ) -> List[EventHistoryEntry]:
        """Entries no older than ``duration``, in insertion order"""
        cutoff = self.clock() - duration
        return [
            entry for entry in await self.all(tenant_id, user_id)
            if entry.timestamp >= cutoff
        ]

    async def all(self, tenant_id: Optional[str], user_id: Optional[str]) -> List[EventHistoryEntry]:
        """Full retained history for a key"""
        history = self._history.get((tenant_id, user_id))
        if not history:
            return []
        return list(history)

    async def clear(self, tenant_id: Optional[str], user_id: Optional[str]) -> int:
        key = (tenant_id, user_id)
        async with self._lock_for(key):
            history = self._history.pop(key, None)
        self._locks.pop(key, None)
        count = len(history) if history else 0
        logger.info("event_history_cleared", tenant_id=tenant_id, user_id=user_id, entries=count)
        return count

    def keys(self) -> List[HistoryKey]:
        return list(self._history.keys())
