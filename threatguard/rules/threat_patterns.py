"""Default threat patterns and remediation advice"""

from datetime import timedelta
from typing import Dict, List

from threatguard.models.compliance import Severity
from threatguard.models.threat import ConditionOperator, ThreatCondition, ThreatPattern


def load_default_patterns() -> Dict[str, ThreatPattern]:
    """Built-in patterns seeded into every registry"""
    return {
        "brute_force_login": ThreatPattern(
            id="brute_force_login",
            name="Brute Force Login Attack",
            description="Multiple failed login attempts in short time",
            severity=Severity.HIGH,
            conditions=[
                ThreatCondition(field="action", operator=ConditionOperator.EQUALS, value="login"),
                ThreatCondition(field="metadata.failed", operator=ConditionOperator.EQUALS, value=True)
            ],
            time_window=timedelta(minutes=5),
            threshold=5
        ),
        "privilege_escalation": ThreatPattern(
            id="privilege_escalation",
            name="Privilege Escalation Attempt",
            description="Unauthorized attempt to gain higher privileges",
            severity=Severity.CRITICAL,
            conditions=[
                ThreatCondition(field="action", operator=ConditionOperator.EQUALS, value="update"),
                ThreatCondition(
                    field="resource",
                    operator=ConditionOperator.CONTAINS,
                    value="permission",
                    weight=2
                )
            ],
            time_window=timedelta(hours=1),
            threshold=1
        ),
        "data_exfiltration": ThreatPattern(
            id="data_exfiltration",
            name="Data Exfiltration Attempt",
            description="Unusual data export or access patterns",
            severity=Severity.CRITICAL,
            conditions=[
                ThreatCondition(
                    field="action",
                    operator=ConditionOperator.EQUALS,
                    value="export",
                    weight=2
                )
            ],
            time_window=timedelta(minutes=10),
            threshold=10
        ),
        "unusual_access_time": ThreatPattern(
            id="unusual_access_time",
            name="Unusual Access Time",
            description="Access outside normal business hours",
            severity=Severity.MEDIUM,
            conditions=[
                ThreatCondition(field="off_hours", operator=ConditionOperator.EQUALS, value=True)
            ],
            time_window=timedelta(hours=1),
            threshold=5
        ),
    }


RECOMMENDATIONS: Dict[str, List[str]] = {
    "brute_force_login": [
        "Enable account lockout after failed attempts",
        "Implement CAPTCHA for suspicious IPs",
        "Consider IP-based rate limiting"
    ],
    "privilege_escalation": [
        "Review user permissions immediately",
        "Audit recent permission changes",
        "Implement approval workflow for privilege changes"
    ],
    "data_exfiltration": [
        "Review data access patterns",
        "Implement data loss prevention (DLP)",
        "Monitor large data exports"
    ],
    "unusual_access_time": [
        "Verify user identity for off-hours access",
        "Implement additional authentication for unusual times",
        "Monitor for other suspicious activities"
    ],
}

DEFAULT_RECOMMENDATIONS = ["Review and investigate the activity"]


def get_recommendations(pattern_id: str) -> List[str]:
    return list(RECOMMENDATIONS.get(pattern_id, DEFAULT_RECOMMENDATIONS))
