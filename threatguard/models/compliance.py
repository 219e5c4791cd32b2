"""Compliance Models"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum


class Severity(str, Enum):
    """Event, threat and violation severity"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_BASE_SCORES = {
    Severity.LOW: 25,
    Severity.MEDIUM: 50,
    Severity.HIGH: 75,
    Severity.CRITICAL: 100,
}


class ComplianceFramework(str, Enum):
    """Supported compliance report types"""
    SOC2 = "SOC2"
    GDPR = "GDPR"
    PCI_DSS = "PCI_DSS"
    HIPAA = "HIPAA"


class AuditViolation(BaseModel):
    """Compliance violation derived from audit records"""
    type: str
    description: str
    severity: Severity
    count: int
    first_occurrence: datetime
    last_occurrence: datetime
    affected_resources: List[Optional[str]] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "type": "GDPR_DATA_ACCESS_WITHOUT_CONSENT",
                "description": "Personal data accessed without explicit consent",
                "severity": "high",
                "count": 3,
                "first_occurrence": "2024-01-15T10:30:00Z",
                "last_occurrence": "2024-01-15T11:05:00Z",
                "affected_resources": ["customer-123"]
            }
        }


class ComplianceReport(BaseModel):
    """Framework-specific compliance report built from the audit log"""
    tenant_id: str
    report_type: ComplianceFramework
    start_date: datetime
    end_date: datetime
    total_events: int
    security_events: int
    data_access_events: int
    user_events: int
    system_events: int
    critical_events: int
    violations: List[AuditViolation]
    recommendations: List[str]
