"""Audit Trail Endpoints"""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse, Response
from typing import Optional
from datetime import datetime, timedelta
import structlog

from threatguard.api.dependencies import get_core
from threatguard.core import SecurityCore
from threatguard.models.audit import (
    AuditEvent,
    AuditQuery,
    AuditReport,
    AuditStatistics,
    EventCategory,
    IntegrityResult,
    SearchOptions,
    SortOrder
)
from threatguard.models.compliance import ComplianceFramework, ComplianceReport, Severity
from threatguard.utils.clock import utc_now

router = APIRouter()
logger = structlog.get_logger()


def _period(start_date: Optional[datetime], end_date: Optional[datetime], days: int = 30):
    end = end_date or utc_now()
    return start_date or end - timedelta(days=days), end


@router.post("/logs")
async def create_audit_log(event: AuditEvent, core: SecurityCore = Depends(get_core)):
    """
    Record an audit event

    Audit failures never fail the request; ``logged`` is false instead.
    """
    record = await core.log_event(event)
    return {
        "logged": record is not None,
        "log_id": record.log_id if record else None
    }


@router.get("/logs")
async def get_audit_logs(
    tenant_id: Optional[str] = None,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    severity: Optional[Severity] = None,
    category: Optional[EventCategory] = None,
    order: SortOrder = SortOrder.DESC,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    core: SecurityCore = Depends(get_core)
):
    """
    Query audit logs

    Supports filtering by:
    - Tenant and user
    - Action type and resource
    - Date range
    - Severity and category
    """
    query = AuditQuery(
        tenant_id=tenant_id,
        user_id=user_id,
        action=action,
        resource=resource,
        start_date=start_date,
        end_date=end_date,
        severity=severity,
        category=category,
        order=order,
        limit=limit,
        offset=offset
    )

    logs = await core.query_logs(query)
    total = await core.audit.count_logs(query)

    return {
        "logs": logs,
        "total": total,
        "limit": limit,
        "offset": offset
    }


@router.get("/search")
async def search_audit_logs(
    q: Optional[str] = None,
    tenant_id: Optional[str] = None,
    severity: Optional[Severity] = None,
    category: Optional[EventCategory] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    core: SecurityCore = Depends(get_core)
):
    """Free-text search over action and resource"""
    logs, total = await core.audit.search_logs(SearchOptions(
        tenant_id=tenant_id,
        query=q,
        severity=severity,
        category=category,
        limit=limit,
        offset=offset
    ))
    return {"logs": logs, "total": total, "limit": limit, "offset": offset}


@router.get("/export")
async def export_audit_logs(
    tenant_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    format: str = Query(default="json", enum=["json", "csv"]),
    core: SecurityCore = Depends(get_core)
):
    """Export a period of audit logs as JSON or CSV"""
    start, end = _period(start_date, end_date)
    content = await core.export_logs(tenant_id, start, end, format)

    if format == "csv":
        return PlainTextResponse(content, media_type="text/csv")
    return Response(content, media_type="application/json")


@router.get("/report", response_model=AuditReport)
async def generate_audit_report(
    tenant_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    report_type: str = Query(default="summary", enum=["summary", "detailed"]),
    core: SecurityCore = Depends(get_core)
):
    """
    Generate audit summary report

    Includes:
    - Counts by action, resource, category, severity and user
    - First 100 logs (all logs for ``detailed``)
    """
    start, end = _period(start_date, end_date)
    return await core.audit.generate_report(tenant_id, start, end, report_type)


@router.get("/statistics", response_model=AuditStatistics)
async def get_audit_statistics(
    tenant_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    core: SecurityCore = Depends(get_core)
):
    start, end = _period(start_date, end_date)
    return await core.audit.get_statistics(tenant_id, start, end)


@router.get("/compliance/{framework}", response_model=ComplianceReport)
async def generate_compliance_report(
    framework: ComplianceFramework,
    tenant_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    core: SecurityCore = Depends(get_core)
):
    """
    Framework compliance report

    Frameworks: SOC2, GDPR, PCI_DSS, HIPAA
    """
    start, end = _period(start_date, end_date, days=90)
    return await core.audit.generate_compliance_report(tenant_id, framework, start, end)


@router.get("/compliance-trail")
async def get_compliance_trail(
    tenant_id: str,
    framework: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    core: SecurityCore = Depends(get_core)
):
    start, end = _period(start_date, end_date, days=90)
    events = await core.audit.get_compliance_trail(tenant_id, start, end, framework)
    return {
        "tenant_id": tenant_id,
        "framework": framework,
        "events": events,
        "total_events": len(events)
    }


@router.get("/integrity/{tenant_id}", response_model=IntegrityResult)
async def verify_integrity(tenant_id: str, core: SecurityCore = Depends(get_core)):
    """
    Verify audit log integrity

    Checks timestamp continuity and field completeness
    """
    return await core.verify_integrity(tenant_id)


@router.post("/cleanup")
async def cleanup_audit_logs(core: SecurityCore = Depends(get_core)):
    """Delete logs past the retention period (the cleanup itself is audited)"""
    try:
        deleted = await core.audit.cleanup_old_logs()
    except Exception as e:
        logger.error("audit_cleanup_request_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Audit log cleanup failed")

    return {
        "deleted": deleted,
        "retention_days": core.audit.retention_days
    }
