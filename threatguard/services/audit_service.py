"""Audit Service"""

import asyncio
import csv
import io
import json
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union
import structlog

from threatguard.models.audit import (
    AuditAction,
    AuditEvent,
    AuditQuery,
    AuditRecord,
    AuditReport,
    AuditStatistics,
    EventCategory,
    SearchOptions,
    SortOrder
)
from threatguard.models.compliance import ComplianceFramework, ComplianceReport, Severity
from threatguard.services.audit_store import AuditStore, InMemoryAuditStore
from threatguard.services.compliance_service import ComplianceService
from threatguard.services.encryption_service import DecryptionError, EncryptionService
from threatguard.services.masking_service import MaskingService
from threatguard.utils.clock import Clock, utc_now
from threatguard.utils.config import settings

logger = structlog.get_logger()

ViolationListener = Callable[[Dict[str, Any]], Awaitable[None]]

CSV_HEADERS = [
    "Timestamp",
    "Tenant ID",
    "User ID",
    "Action",
    "Resource",
    "Resource ID",
    "IP Address",
    "User Agent",
    "Severity",
    "Category"
]


class AuditService:
    """
    Append-only audit log writer and reader

    Features:
    - Writes never raise: failures are logged and the caller proceeds
    - Sensitive old/new values masked before storage
    - Optional per-tenant encryption of old/new values and metadata
    - FIFO background writer for fire-and-forget logging
    - Query, search, statistics, reports and CSV/JSON export
    - Retention cleanup that is itself audited
    """

    def __init__(
        self,
        store: Optional[AuditStore] = None,
        encryption: Optional[EncryptionService] = None,
        masking: Optional[MaskingService] = None,
        compliance: Optional[ComplianceService] = None,
        encrypt_sensitive_data: Optional[bool] = None,
        retention_days: Optional[int] = None,
        write_timeout: Optional[float] = None,
        clock: Optional[Clock] = None
    ):
        self.store = store or InMemoryAuditStore()
        self.encryption = encryption or EncryptionService()
        self.masking = masking or MaskingService()
        self.compliance = compliance or ComplianceService()
        self.encrypt_sensitive_data = (
            settings.ENCRYPT_AUDIT_DATA if encrypt_sensitive_data is None else encrypt_sensitive_data
        )
        self.retention_days = retention_days or settings.AUDIT_RETENTION_DAYS
        self.write_timeout = write_timeout or settings.AUDIT_WRITE_TIMEOUT_SECONDS
        self.clock = clock or utc_now

        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._violation_listeners: List[ViolationListener] = []

    # -----------------------------------------------------------------
    # Write side
    # -----------------------------------------------------------------

    async def log_event(self, event: AuditEvent) -> Optional[AuditRecord]:
        """
        Persist an audit event

        Never raises. Returns the stored record, or None when the write
        failed or timed out (the failure is logged).
        """
        try:
            record = await asyncio.wait_for(self._write(event), timeout=self.write_timeout)
        except asyncio.TimeoutError:
            logger.error(
                "audit_log_timeout",
                action=event.action,
                resource=event.resource,
                tenant_id=event.tenant_id,
                timeout=self.write_timeout
            )
            return None
        except Exception as e:
            logger.error(
                "audit_log_failed",
                action=event.action,
                resource=event.resource,
                tenant_id=event.tenant_id,
                error=str(e)
            )
            return None

        logger.info(
            "audit_log_created",
            log_id=record.log_id,
            action=record.action.value,
            resource=record.resource
        )

        await self._check_security_violations(event)
        return record

    async def _write(self, event: AuditEvent) -> AuditRecord:
        action = AuditAction.normalize(event.action)

        masked_old = self.masking.mask_sensitive_data(event.old_values) if event.old_values is not None else None
        masked_new = self.masking.mask_sensitive_data(event.new_values) if event.new_values is not None else None

        old_values: Optional[Union[Dict[str, Any], str]] = masked_old
        new_values: Optional[Union[Dict[str, Any], str]] = masked_new
        metadata: Dict[str, Any] = dict(event.metadata)

        encrypted = bool(self.encrypt_sensitive_data and event.tenant_id)
        if encrypted:
            if masked_old is not None:
                old_values = await self.encryption.encrypt_field(
                    json.dumps(masked_old, default=str), event.tenant_id, "audit_old_values"
                )
            if masked_new is not None:
                new_values = await self.encryption.encrypt_field(
                    json.dumps(masked_new, default=str), event.tenant_id, "audit_new_values"
                )
            if metadata:
                payload = await self.encryption.encrypt_field(
                    json.dumps(metadata, default=str), event.tenant_id, "audit_metadata"
                )
                metadata = {"payload": payload}

        metadata.update(
            severity=event.severity.value,
            category=event.category.value,
            encrypted=encrypted
        )

        return await self.store.insert({
            "tenant_id": event.tenant_id,
            "user_id": event.user_id,
            "action": action,
            "resource": event.resource,
            "resource_id": event.resource_id,
            "old_values": old_values,
            "new_values": new_values,
            "metadata": metadata,
            "ip_address": event.ip_address,
            "user_agent": event.user_agent,
            "request_id": event.request_id,
        })

    def start(self) -> None:
        """Start the background writer used by ``enqueue``"""
        if self._worker and not self._worker.done():
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._drain())
        logger.info("audit_writer_started")

    async def stop(self) -> None:
        """Write everything already queued, then stop the writer"""
        if not self._worker:
            return
        await self.flush()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("audit_writer_stopped")

    async def flush(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    def enqueue(self, event: AuditEvent) -> None:
        """
        Fire-and-forget write

        Events are written one at a time in submission order, so two events
        from the same actor are stored in the order they were enqueued.
        """
        if not self._worker or self._worker.done():
            self.start()
        self._queue.put_nowait(event)

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.log_event(event)
            finally:
                self._queue.task_done()

    def add_violation_listener(self, listener: ViolationListener) -> None:
        self._violation_listeners.append(listener)

    async def _check_security_violations(self, event: AuditEvent) -> None:
        """Post-write checks; findings are handed to violation listeners"""
        try:
            violations = await self._detect_violations(event)
        except Exception as e:
            logger.error("security_violation_check_failed", error=str(e))
            return

        if not violations:
            return

        logger.warning(
            "security_violation_detected",
            tenant_id=event.tenant_id,
            user_id=event.user_id,
            violations=violations
        )

        payload = {
            "tenant_id": event.tenant_id,
            "user_id": event.user_id,
            "violations": violations,
            "event": event,
            "timestamp": self.clock(),
        }
        for listener in self._violation_listeners:
            try:
                await listener(payload)
            except Exception as e:
                logger.error("violation_listener_failed", error=str(e))

    async def _detect_violations(self, event: AuditEvent) -> List[str]:
        violations = []
        action = AuditAction.normalize(event.action)
        now = self.clock()

        if action == AuditAction.LOGIN and event.metadata.get("failed"):
            recent = await self.query_logs(AuditQuery(
                tenant_id=event.tenant_id,
                user_id=event.user_id,
                action=AuditAction.LOGIN.value,
                start_date=now - timedelta(minutes=15),
                limit=settings.AUDIT_QUERY_MAX
            ))
            if sum(1 for r in recent if r.metadata.get("failed")) >= 5:
                violations.append("Multiple failed login attempts detected")

        if action == AuditAction.READ and event.resource == "sensitive_data":
            recent_count = await self.count_logs(AuditQuery(
                tenant_id=event.tenant_id,
                user_id=event.user_id,
                action=AuditAction.READ.value,
                resource="sensitive_data",
                start_date=now - timedelta(hours=1)
            ))
            if recent_count > 100:
                violations.append("Unusual data access pattern detected")

        if action == AuditAction.UPDATE and event.resource == "user_permissions":
            old_perms = (event.old_values or {}).get("permissions") or []
            new_perms = (event.new_values or {}).get("permissions") or []
            added = [p for p in new_perms if p not in old_perms]
            if any("admin" in str(p) or "super" in str(p) for p in added):
                violations.append("Privilege escalation detected")

        return violations

    # -----------------------------------------------------------------
    # Read side
    # -----------------------------------------------------------------

    async def query_logs(self, query: AuditQuery) -> List[AuditRecord]:
        """Query audit logs with filters; encrypted fields are decrypted"""
        records = await self.store.query(query)
        return [await self._decrypt_record(record) for record in records]

    async def count_logs(self, query: AuditQuery) -> int:
        return await self.store.count(query)

    async def _decrypt_record(self, record: AuditRecord) -> AuditRecord:
        if not record.encrypted or not record.tenant_id:
            return record

        try:
            updates: Dict[str, Any] = {}
            if isinstance(record.old_values, str):
                updates["old_values"] = json.loads(await self.encryption.decrypt_field(
                    record.old_values, record.tenant_id, "audit_old_values", strict=True
                ))
            if isinstance(record.new_values, str):
                updates["new_values"] = json.loads(await self.encryption.decrypt_field(
                    record.new_values, record.tenant_id, "audit_new_values", strict=True
                ))
            payload = record.metadata.get("payload")
            if payload:
                decrypted = json.loads(await self.encryption.decrypt_field(
                    payload, record.tenant_id, "audit_metadata", strict=True
                ))
                clear = {k: v for k, v in record.metadata.items() if k != "payload"}
                updates["metadata"] = {**decrypted, **clear}
        except (DecryptionError, ValueError) as e:
            logger.error("audit_log_decryption_failed", log_id=record.log_id, error=str(e))
            return record

        return record.model_copy(update=updates)

    async def generate_compliance_report(
        self,
        tenant_id: str,
        report_type: Union[ComplianceFramework, str],
        start_date: datetime,
        end_date: datetime
    ) -> ComplianceReport:
        """Build a SOC2/GDPR/PCI_DSS/HIPAA report for a period"""
        framework = ComplianceFramework(report_type)
        records = await self.query_logs(AuditQuery(
            tenant_id=tenant_id,
            start_date=start_date,
            end_date=end_date,
            limit=settings.AUDIT_QUERY_MAX
        ))
        return self.compliance.build_report(tenant_id, framework, start_date, end_date, records)

    async def generate_report(
        self,
        tenant_id: str,
        start_date: datetime,
        end_date: datetime,
        report_type: str = "summary"
    ) -> AuditReport:
        """Summary report; ``detailed`` includes every log instead of the first 100"""
        records = await self.query_logs(AuditQuery(
            tenant_id=tenant_id,
            start_date=start_date,
            end_date=end_date,
            limit=settings.AUDIT_QUERY_MAX
        ))

        return AuditReport(
            report_id=f"report-{uuid.uuid4()}",
            tenant_id=tenant_id,
            report_type=report_type,
            period_start=start_date,
            period_end=end_date,
            summary=self._aggregate(records),
            logs=records if report_type == "detailed" else records[:100],
            generated_at=self.clock()
        )

    async def get_statistics(
        self,
        tenant_id: Optional[str],
        start_date: datetime,
        end_date: datetime
    ) -> AuditStatistics:
        records = await self.query_logs(AuditQuery(
            tenant_id=tenant_id,
            start_date=start_date,
            end_date=end_date,
            limit=settings.AUDIT_QUERY_MAX
        ))
        return self._aggregate(records)

    def _aggregate(self, records: List[AuditRecord]) -> AuditStatistics:
        stats = AuditStatistics(total_events=len(records))

        for record in records:
            self._bump(stats.by_action, record.action.value)
            self._bump(stats.by_resource, record.resource)
            if record.category:
                self._bump(stats.by_category, record.category)
            if record.severity:
                self._bump(stats.by_severity, record.severity)
                if record.severity == Severity.CRITICAL.value:
                    stats.critical_event_count += 1
            if record.user_id:
                self._bump(stats.by_user, record.user_id)

        return stats

    @staticmethod
    def _bump(counter: Dict[str, int], key: str) -> None:
        counter[key] = counter.get(key, 0) + 1

    async def search_logs(self, options: SearchOptions) -> Tuple[List[AuditRecord], int]:
        """
        Text search over action and resource

        Returns:
            Tuple of (page of matching logs, total matches)
        """
        records = await self.query_logs(AuditQuery(
            tenant_id=options.tenant_id,
            severity=options.severity,
            category=options.category,
            limit=settings.AUDIT_QUERY_MAX
        ))

        if options.query:
            needle = options.query.lower()
            records = [
                r for r in records
                if needle in r.action.value or needle in r.resource.lower()
            ]

        total = len(records)
        return records[options.offset:options.offset + options.limit], total

    async def export_logs(
        self,
        tenant_id: str,
        start_date: datetime,
        end_date: datetime,
        format: str = "json"
    ) -> str:
        """Export a period of logs as ``json`` or ``csv``"""
        if format not in ("json", "csv"):
            raise ValueError(f"Unsupported export format: {format}")

        records = await self.query_logs(AuditQuery(
            tenant_id=tenant_id,
            start_date=start_date,
            end_date=end_date,
            limit=settings.AUDIT_EXPORT_MAX
        ))

        logger.info("audit_logs_exported", tenant_id=tenant_id, format=format, count=len(records))

        if format == "csv":
            return self._to_csv(records)
        return json.dumps([r.model_dump(mode="json") for r in records], indent=2)

    def _to_csv(self, records: List[AuditRecord]) -> str:
        if not records:
            return "No data available"

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for r in records:
            writer.writerow([
                r.created_at.isoformat(),
                r.tenant_id or "",
                r.user_id or "",
                r.action.value,
                r.resource,
                r.resource_id or "",
                r.ip_address or "",
                r.user_agent or "",
                r.severity or "",
                r.category or "",
            ])
        return buffer.getvalue().rstrip("\n")

    async def get_compliance_trail(
        self,
        tenant_id: Optional[str],
        start_date: datetime,
        end_date: datetime,
        framework: Optional[str] = None
    ) -> List[AuditRecord]:
        """Compliance-category events, optionally for one framework"""
        records = await self.query_logs(AuditQuery(
            tenant_id=tenant_id,
            start_date=start_date,
            end_date=end_date,
            category=EventCategory.COMPLIANCE,
            limit=settings.AUDIT_QUERY_MAX
        ))

        if framework:
            return [r for r in records if r.metadata.get("complianceFramework") == framework]
        return records

    async def cleanup_old_logs(
        self,
        stop_event: Optional[asyncio.Event] = None,
        batch_size: Optional[int] = None
    ) -> int:
        """
        Delete records older than the retention period

        Deletes in batches. When ``stop_event`` is set the batch in progress
        completes and no further batch starts. The cleanup itself is written
        to the audit log.
        """
        batch_size = batch_size or settings.AUDIT_CLEANUP_BATCH_SIZE
        cutoff = self.clock() - timedelta(days=self.retention_days)

        deleted = 0
        interrupted = False
        while True:
            batch = await self.store.delete_older_than(cutoff, batch_size)
            deleted += batch
            if batch < batch_size:
                break
            if stop_event is not None and stop_event.is_set():
                interrupted = True
                break

        logger.info(
            "audit_logs_cleaned_up",
            deleted=deleted,
            cutoff=cutoff.isoformat(),
            interrupted=interrupted
        )

        await self.log_event(AuditEvent(
            action=AuditAction.DELETE.value,
            resource="audit_logs",
            metadata={
                "operation": "retention_cleanup",
                "deleted": deleted,
                "cutoff": cutoff.isoformat(),
                "retention_days": self.retention_days,
                "interrupted": interrupted,
            },
            severity=Severity.HIGH,
            category=EventCategory.COMPLIANCE
        ))

        return deleted

    async def recent_logs(self, tenant_id: str, limit: int = 100) -> List[AuditRecord]:
        return await self.query_logs(AuditQuery(tenant_id=tenant_id, limit=limit, order=SortOrder.DESC))
