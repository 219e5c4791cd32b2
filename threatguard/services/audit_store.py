"""Audit record persistence"""

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from threatguard.models.audit import AuditAction, AuditQuery, AuditRecord, SortOrder
from threatguard.utils.clock import Clock, utc_now


class AuditStore:
    """
    Persistence interface for audit records

    Implementations assign ``log_id`` and a strictly increasing
    ``created_at`` on insert and never update a stored record.
    """

    async def insert(self, values: Dict[str, Any]) -> AuditRecord:
        raise NotImplementedError

    async def query(self, query: AuditQuery) -> List[AuditRecord]:
        raise NotImplementedError

    async def count(self, query: AuditQuery) -> int:
        raise NotImplementedError

    async def delete_older_than(self, cutoff: datetime, limit: int) -> int:
        """Delete at most ``limit`` records created at or before ``cutoff``"""
        raise NotImplementedError


class InMemoryAuditStore(AuditStore):
    """List-backed store for development and tests (use a database in production)"""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utc_now
        self.records: List[AuditRecord] = []
        self._lock = asyncio.Lock()
        self._last_created_at: Optional[datetime] = None

    async def insert(self, values: Dict[str, Any]) -> AuditRecord:
        async with self._lock:
            created_at = self.clock()
            if self._last_created_at and created_at <= self._last_created_at:
                created_at = self._last_created_at + timedelta(microseconds=1)
            self._last_created_at = created_at

            record = AuditRecord(
                log_id=str(uuid.uuid4()),
                created_at=created_at,
                **values
            )
            self.records.append(record)
            return record

    async def import_records(self, records: Iterable[AuditRecord]) -> int:
        """Load already-stamped records (migrations, fixtures)"""
        async with self._lock:
            added = list(records)
            self.records.extend(added)
            self.records.sort(key=lambda r: r.created_at)
            if self.records:
                self._last_created_at = self.records[-1].created_at
            return len(added)

    async def query(self, query: AuditQuery) -> List[AuditRecord]:
        results = self._filter(query)
        results.sort(key=lambda r: r.created_at, reverse=query.order == SortOrder.DESC)
        return results[query.offset:query.offset + query.limit]

    async def count(self, query: AuditQuery) -> int:
        return len(self._filter(query))

    async def delete_older_than(self, cutoff: datetime, limit: int) -> int:
        async with self._lock:
            expired = [r for r in self.records if r.created_at <= cutoff][:limit]
            if not expired:
                return 0
            expired_ids = {r.log_id for r in expired}
            self.records = [r for r in self.records if r.log_id not in expired_ids]
            return len(expired)

    def _filter(self, query: AuditQuery) -> List[AuditRecord]:
        action = None
        if query.action:
            action = AuditAction.normalize(query.action)
            if action.value != query.action.lower():
                # unknown actions are never stored, so nothing can match
                return []

        results = []
        for record in self.records:
            if query.tenant_id and record.tenant_id != query.tenant_id:
                continue
            if query.user_id and record.user_id != query.user_id:
                continue
            if action and record.action != action:
                continue
            if query.resource and record.resource != query.resource:
                continue
            if query.start_date and record.created_at < query.start_date:
                continue
            if query.end_date and record.created_at > query.end_date:
                continue
            if query.severity and record.severity != query.severity.value:
                continue
            if query.category and record.category != query.category.value:
                continue
            results.append(record)
        return results
