"""Audit Models"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any, Union
from datetime import datetime
from enum import Enum

from threatguard.models.compliance import Severity
from threatguard.utils.clock import ensure_utc, utc_now


class AuditAction(str, Enum):
    """Actions accepted by the audit log"""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LOGIN = "login"
    LOGOUT = "logout"
    EXPORT = "export"
    IMPORT = "import"

    @classmethod
    def normalize(cls, value: Any) -> "AuditAction":
        """Coerce any value to a known action, defaulting to read"""
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.READ


class EventCategory(str, Enum):
    """Audit event category"""
    SECURITY = "security"
    DATA = "data"
    SYSTEM = "system"
    USER = "user"
    COMPLIANCE = "compliance"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class AuditEvent(BaseModel):
    """An action to be recorded, as submitted by the host application"""
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    severity: Severity = Severity.MEDIUM
    category: EventCategory = EventCategory.SYSTEM
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    class Config:
        json_schema_extra = {
            "example": {
                "tenant_id": "tenant-42",
                "user_id": "user-12345",
                "action": "login",
                "resource": "session",
                "metadata": {"failed": True},
                "severity": "medium",
                "category": "security",
                "ip_address": "203.0.113.7",
                "user_agent": "Mozilla/5.0"
            }
        }


class AuditRecord(BaseModel):
    """Stored audit log entry; never modified after insert"""
    log_id: str
    created_at: datetime
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    action: AuditAction
    resource: str
    resource_id: Optional[str] = None
    # dict in clear, str when encrypted at rest
    old_values: Optional[Union[Dict[str, Any], str]] = None
    new_values: Optional[Union[Dict[str, Any], str]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None

    class Config:
        frozen = True

    @field_validator("created_at")
    @classmethod
    def _utc_created_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def severity(self) -> Optional[str]:
        return self.metadata.get("severity")

    @property
    def category(self) -> Optional[str]:
        return self.metadata.get("category")

    @property
    def encrypted(self) -> bool:
        return bool(self.metadata.get("encrypted"))


class AuditQuery(BaseModel):
    """Query parameters for audit logs"""
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    action: Optional[str] = None
    resource: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    severity: Optional[Severity] = None
    category: Optional[EventCategory] = None
    limit: int = Field(default=100, ge=1)
    offset: int = Field(default=0, ge=0)
    order: SortOrder = SortOrder.DESC

    @field_validator("start_date", "end_date")
    @classmethod
    def _utc_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value else value


class SearchOptions(BaseModel):
    """Free-text search over action and resource"""
    tenant_id: Optional[str] = None
    query: Optional[str] = None
    severity: Optional[Severity] = None
    category: Optional[EventCategory] = None
    limit: int = Field(default=100, ge=1)
    offset: int = Field(default=0, ge=0)


class AuditStatistics(BaseModel):
    total_events: int = 0
    by_action: Dict[str, int] = Field(default_factory=dict)
    by_resource: Dict[str, int] = Field(default_factory=dict)
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_user: Dict[str, int] = Field(default_factory=dict)
    critical_event_count: int = 0


class AuditReport(BaseModel):
    """Audit summary report"""
    report_id: str
    tenant_id: str
    report_type: str
    period_start: datetime
    period_end: datetime
    summary: AuditStatistics
    logs: List[AuditRecord]
    generated_at: datetime


class IntegrityResult(BaseModel):
    """Outcome of an audit log integrity scan"""
    is_integrity_valid: bool = True
    total_logs_verified: int = 0
    checks_performed: List[str] = Field(default_factory=list)
    anomalies: List[str] = Field(default_factory=list)
