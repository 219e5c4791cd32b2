"""Tests for tenant security monitoring"""

from datetime import timedelta

import pytest

from threatguard.models.compliance import Severity
from threatguard.models.threat import SecurityMetrics, ThreatAnalysis, ThreatStatus
from threatguard.services.security_monitor import SecurityMonitor


@pytest.fixture
def monitor(clock):
    return SecurityMonitor(clock=clock, stale_after=timedelta(hours=24))


def violation(make_event, *violations, **event_kwargs):
    event = make_event(ip_address="203.0.113.9", **event_kwargs)
    return {"tenant_id": event.tenant_id, "user_id": event.user_id, "violations": list(violations), "event": event}


class TestThreatLevel:

    @pytest.mark.parametrize("kwargs,expected", [
        ({}, Severity.LOW),
        ({"failed_logins": 5}, Severity.MEDIUM),
        ({"privilege_escalations": 3}, Severity.HIGH),
        ({"suspicious_activities": 10}, Severity.CRITICAL),
        ({"data_access_attempts": 999}, Severity.LOW),
        ({"data_access_attempts": 1000}, Severity.MEDIUM),
    ])
    def test_calculate_threat_level(self, kwargs, expected):
        """Test calculate threat level"""
        metrics = SecurityMetrics(tenant_id="tenant-a", **kwargs)
        assert SecurityMonitor.calculate_threat_level(metrics) == expected

    def test_observe_updates_metrics(self, monitor, make_event):
        """Test observe updates metrics"""
        for _ in range(5):
            monitor.observe(make_event(action="login", resource="session", metadata={"failed": True}))
        monitor.observe(make_event(action="login", resource="session"))
        monitor.observe(make_event(action="read", resource="sensitive_data"))
        monitor.observe(make_event(action="update", resource="user_permissions"))

        metrics = monitor.get_metrics("tenant-a")
        assert metrics.failed_logins == 5
        assert metrics.successful_logins == 1
        assert metrics.data_access_attempts == 1
        assert metrics.privilege_escalations == 1
        assert metrics.threat_level == Severity.MEDIUM

    def test_system_events_have_no_metrics(self, monitor, make_event):
        """Test system events have no metrics"""
        monitor.observe(make_event(tenant_id=None))
        assert monitor.metrics == {}


class TestThreats:

    @pytest.mark.asyncio
    async def test_violation_raises_threat(self, monitor, make_event):
        """Test violation raises threat"""
        threat = await monitor.handle_security_violation(
            violation(make_event, "Multiple failed login attempts detected", action="login", resource="session")
        )

        assert threat.severity == Severity.HIGH
        assert threat.source == "203.0.113.9"
        assert threat.affected_resources == ["session"]
        assert "Enable account lockout after failed attempts" in threat.recommended_actions
        assert monitor.has_active_critical_threat("tenant-a") is False

    @pytest.mark.asyncio
    async def test_privilege_escalation_triggers_lockdown(self, monitor, make_event):
        """Test privilege escalation triggers lockdown"""
        threat = await monitor.handle_security_violation(
            violation(make_event, "Privilege escalation detected", action="update", resource="user_permissions")
        )

        assert threat.severity == Severity.CRITICAL
        assert monitor.has_active_critical_threat("tenant-a") is True
        assert monitor.has_active_critical_threat("tenant-b") is False

        monitor.resolve_threat(threat.id, "permissions reverted", "admin-1")

        assert monitor.has_active_critical_threat("tenant-a") is False
        assert monitor.threats[threat.id].status == ThreatStatus.RESOLVED
        assert monitor.threats[threat.id].resolved_by == "admin-1"

    def test_repeated_analyses_update_one_threat(self, monitor, clock):
        """Test repeated analyses update one threat"""
        analysis = ThreatAnalysis(threat_id="brute_force_login", confidence=100, risk_score=90, severity=Severity.HIGH)

        first = monitor.record_analyses("tenant-a", [analysis], "203.0.113.9", "session")
        clock.advance(minutes=1)
        second = monitor.record_analyses("tenant-a", [analysis], "203.0.113.9", "session")

        assert first[0].id == second[0].id
        assert second[0].count == 2
        assert second[0].last_seen == clock()
        assert monitor.get_metrics("tenant-a").suspicious_activities == 2

    def test_resolve_unknown_threat(self, monitor):
        """Test resolve unknown threat"""
        assert monitor.resolve_threat("missing", "n/a") is None

    def test_stale_threats_are_removed(self, monitor, clock):
        """Test stale threats are removed"""
        analysis = ThreatAnalysis(threat_id="rapid_data_access", confidence=80, risk_score=70, severity=Severity.HIGH)
        monitor.record_analyses("tenant-a", [analysis])

        clock.advance(hours=23)
        assert monitor.cleanup_stale_threats() == 0
        clock.advance(hours=2)
        assert monitor.cleanup_stale_threats() == 1
        assert monitor.get_active_threats("tenant-a") == []

    @pytest.mark.asyncio
    async def test_dashboard(self, monitor, make_event):
        """Test dashboard"""
        await monitor.handle_security_violation(
            violation(make_event, "Privilege escalation detected", action="update", resource="user_permissions")
        )

        dashboard = monitor.get_dashboard("tenant-a")

        assert dashboard.summary["total_threats"] == 1
        assert dashboard.summary["critical_threats"] == 1
        assert dashboard.summary["lockdown"] is True
        assert dashboard.threat_level == Severity.LOW

    def test_severity_from_violation_text(self):
        """Test severity from violation text"""
        assert SecurityMonitor.calculate_threat_severity(["Unusual data access pattern detected"]) == Severity.MEDIUM
        assert SecurityMonitor.calculate_threat_severity(["something else"]) == Severity.LOW
