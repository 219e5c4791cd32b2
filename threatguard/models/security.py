"""Decision Gate Models"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from enum import Enum

from threatguard.models.threat import ThreatAnalysis


class RequestContext(BaseModel):
    """One inbound unit of work as seen by the decision gate"""
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    tier: Optional[str] = None
    is_api: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "tenant_id": "tenant-42",
                "user_id": "user-12345",
                "action": "export",
                "resource": "customers",
                "ip_address": "203.0.113.7",
                "tier": "enterprise"
            }
        }


class DecisionOutcome(str, Enum):
    ALLOW = "allow"
    FLAG = "flag"
    BLOCK = "block"


class SecurityDecision(BaseModel):
    """Verdict returned by the decision gate"""
    outcome: DecisionOutcome
    reason: Optional[str] = None
    message: Optional[str] = None
    threat_ids: List[str] = Field(default_factory=list)
    risk_score: float = 0
    analyses: List[ThreatAnalysis] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)

    @property
    def allowed(self) -> bool:
        return self.outcome != DecisionOutcome.BLOCK


class TenantSecurityPolicy(BaseModel):
    """Per-tenant access policy consulted by the gate"""
    tenant_id: str
    tier: Optional[str] = None
    ip_allowlist_enabled: bool = False
    ip_allowlist: List[str] = Field(default_factory=list)  # addresses or CIDR blocks


class RateLimitRule(BaseModel):
    max_requests: int = Field(ge=1)
    window_seconds: int = Field(ge=1)
