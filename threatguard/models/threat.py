"""Threat Detection Models"""

import re
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime, timedelta
from enum import Enum

from threatguard.models.audit import AuditEvent
from threatguard.models.compliance import Severity
from threatguard.utils.clock import utc_now


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    REGEX = "regex"


class ThreatCondition(BaseModel):
    """Single predicate over an event field"""
    field: str  # dot path, e.g. "metadata.failed"
    operator: ConditionOperator
    value: Any
    weight: float = Field(default=1.0, gt=0)

    class Config:
        frozen = True

    @model_validator(mode="after")
    def _check_regex(self) -> "ThreatCondition":
        if self.operator == ConditionOperator.REGEX:
            try:
                re.compile(str(self.value))
            except re.error as e:
                raise ValueError(f"Invalid regex for {self.field}: {e}")
        return self


class ThreatPattern(BaseModel):
    """Configurable windowed threat pattern"""
    id: str
    name: str
    description: str = ""
    severity: Severity
    conditions: List[ThreatCondition]
    time_window: timedelta
    threshold: int = Field(ge=1)
    enabled: bool = True
    # share of total condition weight an event must satisfy to match
    match_ratio: float = Field(default=1.0, gt=0, le=1)

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "id": "brute_force_login",
                "name": "Brute Force Login Attack",
                "description": "Multiple failed login attempts in short time",
                "severity": "high",
                "conditions": [
                    {"field": "action", "operator": "equals", "value": "login", "weight": 1},
                    {"field": "metadata.failed", "operator": "equals", "value": True, "weight": 1}
                ],
                "time_window": 300,
                "threshold": 5,
                "enabled": True
            }
        }


class ThreatAnalysis(BaseModel):
    """Result of one pattern or heuristic firing"""
    threat_id: str
    confidence: float = Field(ge=0, le=100)
    risk_score: float = Field(ge=0, le=100)
    severity: Severity = Severity.MEDIUM
    indicators: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)


class EventHistoryEntry(BaseModel):
    """Event retained in the per-user history buffer"""
    event: AuditEvent
    timestamp: datetime

    class Config:
        frozen = True


class ThreatStatus(str, Enum):
    ACTIVE = "active"
    MITIGATED = "mitigated"
    RESOLVED = "resolved"


class SecurityThreat(BaseModel):
    """Tenant-level threat tracked by the security monitor"""
    id: str
    tenant_id: Optional[str]
    type: str
    severity: Severity
    description: str
    source: str
    first_detected: datetime
    last_seen: datetime
    count: int = 1
    status: ThreatStatus = ThreatStatus.ACTIVE
    affected_resources: List[str] = Field(default_factory=list)
    recommended_actions: List[str] = Field(default_factory=list)
    resolution: Optional[str] = None
    resolved_by: Optional[str] = None


class SecurityMetrics(BaseModel):
    """Rolling per-tenant security counters"""
    tenant_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    failed_logins: int = 0
    successful_logins: int = 0
    data_access_attempts: int = 0
    privilege_escalations: int = 0
    suspicious_activities: int = 0
    threat_level: Severity = Severity.LOW


class SecurityDashboard(BaseModel):
    metrics: SecurityMetrics
    active_threats: List[SecurityThreat]
    threat_level: Severity
    summary: Dict[str, Any]
