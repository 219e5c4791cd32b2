"""Audit log integrity verification"""

from datetime import timedelta
from typing import List
import structlog

from threatguard.models.audit import AuditQuery, AuditRecord, IntegrityResult, SortOrder
from threatguard.services.audit_service import AuditService
from threatguard.utils.config import settings

logger = structlog.get_logger()

MAX_TIMESTAMP_GAP = timedelta(hours=1)


class IntegrityVerifier:
    """
    Scans stored audit records for continuity and completeness anomalies

    Findings are returned as data; verification never raises.
    """

    def __init__(self, audit_service: AuditService, max_gap: timedelta = MAX_TIMESTAMP_GAP):
        self.audit_service = audit_service
        self.max_gap = max_gap

    async def verify_integrity(self, tenant_id: str) -> IntegrityResult:
        try:
            records = await self.audit_service.query_logs(AuditQuery(
                tenant_id=tenant_id,
                limit=settings.AUDIT_QUERY_MAX,
                order=SortOrder.ASC
            ))
        except Exception as e:
            logger.error("integrity_verification_failed", tenant_id=tenant_id, error=str(e))
            return IntegrityResult(
                is_integrity_valid=False,
                anomalies=[str(e) or type(e).__name__]
            )

        result = IntegrityResult(total_logs_verified=len(records))

        result.checks_performed.append("timestamp_continuity")
        result.anomalies.extend(self._timestamp_gaps(records))

        result.checks_performed.append("field_completeness")
        result.anomalies.extend(self._missing_fields(records))

        result.is_integrity_valid = not result.anomalies

        logger.info(
            "integrity_verified",
            tenant_id=tenant_id,
            total_logs=result.total_logs_verified,
            valid=result.is_integrity_valid,
            anomalies=len(result.anomalies)
        )

        return result

    def _timestamp_gaps(self, records: List[AuditRecord]) -> List[str]:
        anomalies = []
        # the gap into the final record is not flagged
        for i in range(1, len(records) - 1):
            gap = records[i].created_at - records[i - 1].created_at
            if gap > self.max_gap:
                anomalies.append(f"Large time gap detected at log {i}")
        return anomalies

    def _missing_fields(self, records: List[AuditRecord]) -> List[str]:
        return [
            f"Missing required fields at log {index}"
            for index, record in enumerate(records)
            if not record.action or not record.resource
        ]
