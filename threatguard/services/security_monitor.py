"""Security Monitor"""

import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional
import structlog

from threatguard.models.audit import AuditAction, AuditEvent
from threatguard.models.compliance import Severity
from threatguard.models.threat import (
    SecurityDashboard,
    SecurityMetrics,
    SecurityThreat,
    ThreatAnalysis,
    ThreatStatus
)
from threatguard.utils.clock import Clock, utc_now
from threatguard.utils.config import settings

logger = structlog.get_logger()

SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]

VIOLATION_SEVERITY_MARKERS = [
    (Severity.CRITICAL, ("privilege escalation", "data exfiltration")),
    (Severity.HIGH, ("brute force", "unauthorized access", "failed login")),
    (Severity.MEDIUM, ("suspicious", "unusual")),
]

VIOLATION_ACTIONS = {
    "failed login": [
        "Enable account lockout after failed attempts",
        "Implement CAPTCHA for suspicious IPs"
    ],
    "privilege escalation": [
        "Review user permissions immediately",
        "Audit recent permission changes"
    ],
    "data access": [
        "Review data access patterns",
        "Implement additional access controls"
    ],
}


class SecurityMonitor:
    """
    Tenant-level security state

    Features:
    - Rolling metrics per tenant with a derived threat level
    - Active threats raised from audit violations and gate analyses
    - Critical active threats put the tenant in lockdown
    - Threat resolution and stale threat cleanup
    """

    def __init__(self, clock: Optional[Clock] = None, stale_after: Optional[timedelta] = None):
        self.clock = clock or utc_now
        self.stale_after = stale_after or timedelta(hours=settings.STALE_THREAT_HOURS)
        self.metrics: Dict[str, SecurityMetrics] = {}
        self.threats: Dict[str, SecurityThreat] = {}

    def observe(self, event: AuditEvent) -> None:
        """Update tenant metrics from one activity event"""
        if not event.tenant_id:
            return

        metrics = self._metrics_for(event.tenant_id)
        action = AuditAction.normalize(event.action)

        if action == AuditAction.LOGIN:
            if event.metadata.get("failed"):
                metrics.failed_logins += 1
            else:
                metrics.successful_logins += 1
        elif action == AuditAction.READ:
            if "sensitive" in event.resource or "personal" in event.resource:
                metrics.data_access_attempts += 1
        elif action == AuditAction.UPDATE:
            if event.resource == "user_permissions":
                metrics.privilege_escalations += 1

        self._refresh(metrics)

    async def handle_security_violation(self, violation: Dict[str, Any]) -> SecurityThreat:
        """Raise an active threat from audit post-write violations"""
        violations: List[str] = violation["violations"]
        event: AuditEvent = violation["event"]

        threat = self._raise_threat(
            tenant_id=violation.get("tenant_id"),
            threat_type=", ".join(violations),
            severity=self.calculate_threat_severity(violations),
            description=f"Security violation detected: {', '.join(violations)}",
            source=event.ip_address or "unknown",
            resource=event.resource,
            recommended_actions=self.get_recommended_actions(violations)
        )

        if threat.severity == Severity.CRITICAL:
            logger.warning(
                "critical_threat_detected",
                threat_id=threat.id,
                tenant_id=threat.tenant_id,
                user_id=violation.get("user_id"),
                type=threat.type
            )

        return threat

    def record_analyses(
        self,
        tenant_id: Optional[str],
        analyses: List[ThreatAnalysis],
        source: Optional[str] = None,
        resource: Optional[str] = None
    ) -> List[SecurityThreat]:
        """Raise active threats for analyses the gate acted on"""
        threats = []
        for analysis in analyses:
            threats.append(self._raise_threat(
                tenant_id=tenant_id,
                threat_type=analysis.threat_id,
                severity=analysis.severity,
                description="; ".join(analysis.indicators) or analysis.threat_id,
                source=source or "unknown",
                resource=resource,
                recommended_actions=analysis.recommendations
            ))

        if tenant_id and analyses:
            metrics = self._metrics_for(tenant_id)
            metrics.suspicious_activities += len(analyses)
            self._refresh(metrics)

        return threats

    def has_active_critical_threat(self, tenant_id: Optional[str]) -> bool:
        return any(
            t.tenant_id == tenant_id
            and t.status == ThreatStatus.ACTIVE
            and t.severity == Severity.CRITICAL
            for t in self.threats.values()
        )

    def get_active_threats(self, tenant_id: Optional[str]) -> List[SecurityThreat]:
        active = [
            t for t in self.threats.values()
            if t.tenant_id == tenant_id and t.status == ThreatStatus.ACTIVE
        ]
        return sorted(active, key=lambda t: t.last_seen, reverse=True)

    def get_metrics(self, tenant_id: str) -> Optional[SecurityMetrics]:
        return self.metrics.get(tenant_id)

    def resolve_threat(self, threat_id: str, resolution: str, user_id: Optional[str] = None) -> Optional[SecurityThreat]:
        threat = self.threats.get(threat_id)
        if threat is None:
            return None

        threat.status = ThreatStatus.RESOLVED
        threat.resolution = resolution
        threat.resolved_by = user_id

        logger.info(
            "threat_resolved",
            threat_id=threat_id,
            tenant_id=threat.tenant_id,
            resolved_by=user_id
        )
        return threat

    def cleanup_stale_threats(self) -> int:
        """Forget threats not seen within the stale period"""
        cutoff = self.clock() - self.stale_after
        stale = [tid for tid, t in self.threats.items() if t.last_seen < cutoff]
        for threat_id in stale:
            del self.threats[threat_id]
            logger.info("stale_threat_removed", threat_id=threat_id)
        return len(stale)

    def get_dashboard(self, tenant_id: str) -> SecurityDashboard:
        metrics = self.metrics.get(tenant_id) or SecurityMetrics(tenant_id=tenant_id, timestamp=self.clock())
        active = self.get_active_threats(tenant_id)

        return SecurityDashboard(
            metrics=metrics,
            active_threats=active,
            threat_level=metrics.threat_level,
            summary={
                "total_threats": len(active),
                "critical_threats": sum(1 for t in active if t.severity == Severity.CRITICAL),
                "high_threats": sum(1 for t in active if t.severity == Severity.HIGH),
                "lockdown": self.has_active_critical_threat(tenant_id),
                "last_updated": self.clock().isoformat(),
            }
        )

    @staticmethod
    def calculate_threat_level(metrics: SecurityMetrics) -> Severity:
        score = (
            metrics.failed_logins * 2
            + metrics.privilege_escalations * 10
            + metrics.suspicious_activities * 5
            + metrics.data_access_attempts // 100
        )

        if score >= 50:
            return Severity.CRITICAL
        if score >= 25:
            return Severity.HIGH
        if score >= 10:
            return Severity.MEDIUM
        return Severity.LOW

    @staticmethod
    def calculate_threat_severity(violations: List[str]) -> Severity:
        text = [v.lower() for v in violations]
        for severity, markers in VIOLATION_SEVERITY_MARKERS:
            if any(marker in v for v in text for marker in markers):
                return severity
        return Severity.LOW

    @staticmethod
    def get_recommended_actions(violations: List[str]) -> List[str]:
        actions: List[str] = []
        for violation in violations:
            lowered = violation.lower()
            for marker, recommended in VIOLATION_ACTIONS.items():
                if marker in lowered:
                    actions.extend(recommended)
        return list(dict.fromkeys(actions))

    def _metrics_for(self, tenant_id: str) -> SecurityMetrics:
        metrics = self.metrics.get(tenant_id)
        if metrics is None:
            metrics = SecurityMetrics(tenant_id=tenant_id, timestamp=self.clock())
            self.metrics[tenant_id] = metrics
        return metrics

    def _refresh(self, metrics: SecurityMetrics) -> None:
        level = self.calculate_threat_level(metrics)
        if level != metrics.threat_level:
            logger.info(
                "threat_level_changed",
                tenant_id=metrics.tenant_id,
                old_level=metrics.threat_level.value,
                new_level=level.value
            )
        metrics.threat_level = level
        metrics.timestamp = self.clock()

    def _raise_threat(
        self,
        tenant_id: Optional[str],
        threat_type: str,
        severity: Severity,
        description: str,
        source: str,
        resource: Optional[str],
        recommended_actions: List[str]
    ) -> SecurityThreat:
        now = self.clock()

        for threat in self.threats.values():
            if (
                threat.tenant_id == tenant_id
                and threat.type == threat_type
                and threat.source == source
                and threat.status == ThreatStatus.ACTIVE
            ):
                threat.count += 1
                threat.last_seen = now
                if SEVERITY_ORDER.index(severity) > SEVERITY_ORDER.index(threat.severity):
                    threat.severity = severity
                if resource and resource not in threat.affected_resources:
                    threat.affected_resources.append(resource)
                return threat

        threat = SecurityThreat(
            id=f"threat_{uuid.uuid4().hex[:12]}",
            tenant_id=tenant_id,
            type=threat_type,
            severity=severity,
            description=description,
            source=source,
            first_detected=now,
            last_seen=now,
            affected_resources=[resource] if resource else [],
            recommended_actions=recommended_actions
        )
        self.threats[threat.id] = threat

        logger.warning(
            "security_threat_raised",
            threat_id=threat.id,
            tenant_id=tenant_id,
            type=threat_type,
            severity=severity.value,
            source=source
        )
        return threat
