"""Compliance Service"""

from datetime import datetime
from typing import Callable, Dict, List
import structlog

from threatguard.models.audit import AuditAction, AuditRecord, EventCategory
from threatguard.models.compliance import (
    AuditViolation,
    ComplianceFramework,
    ComplianceReport,
    Severity
)

logger = structlog.get_logger()

PHI_RESOURCE_MARKERS = ("patient", "phi", "medical", "health")

RECOMMENDATIONS: Dict[str, List[str]] = {
    "GDPR_DATA_ACCESS_WITHOUT_CONSENT": [
        "Implement explicit consent tracking for all personal data access",
        "Review and update privacy policies"
    ],
    "PCI_UNENCRYPTED_PAYMENT_DATA": [
        "Enable encryption for all payment data storage and transmission",
        "Implement tokenization for sensitive payment information"
    ],
    "HIPAA_PHI_ACCESS_WITHOUT_PURPOSE": [
        "Require a documented purpose for every PHI access",
        "Limit PHI access to the minimum necessary fields"
    ],
}

FRAMEWORK_RECOMMENDATIONS: Dict[ComplianceFramework, List[str]] = {
    ComplianceFramework.SOC2: [
        "Implement regular access reviews",
        "Enhance monitoring and alerting systems"
    ],
}


class ComplianceService:
    """
    Framework-specific compliance analysis over audit records

    Records are expected decrypted (as returned by ``AuditService.query_logs``).
    """

    def __init__(self):
        self._detectors: Dict[ComplianceFramework, List[Callable[[List[AuditRecord]], List[AuditViolation]]]] = {
            ComplianceFramework.GDPR: [self._gdpr_consent],
            ComplianceFramework.PCI_DSS: [self._pci_unencrypted_payment],
            ComplianceFramework.HIPAA: [self._hipaa_purpose],
            ComplianceFramework.SOC2: [],
        }

    def build_report(
        self,
        tenant_id: str,
        framework: ComplianceFramework,
        start_date: datetime,
        end_date: datetime,
        records: List[AuditRecord]
    ) -> ComplianceReport:
        """Aggregate counts, violations and recommendations for a period"""
        violations = self.detect_violations(records, framework)

        report = ComplianceReport(
            tenant_id=tenant_id,
            report_type=framework,
            start_date=start_date,
            end_date=end_date,
            total_events=len(records),
            security_events=self._count_category(records, EventCategory.SECURITY),
            data_access_events=self._count_category(records, EventCategory.DATA),
            user_events=self._count_category(records, EventCategory.USER),
            system_events=self._count_category(records, EventCategory.SYSTEM),
            critical_events=sum(1 for r in records if r.severity == Severity.CRITICAL.value),
            violations=violations,
            recommendations=self.generate_recommendations(violations, framework)
        )

        logger.info(
            "compliance_report_generated",
            tenant_id=tenant_id,
            report_type=framework.value,
            total_events=report.total_events,
            violations=len(violations)
        )

        return report

    def detect_violations(
        self,
        records: List[AuditRecord],
        framework: ComplianceFramework
    ) -> List[AuditViolation]:
        violations = []
        for detector in self._detectors.get(framework, []):
            violations.extend(detector(records))
        return violations

    def generate_recommendations(
        self,
        violations: List[AuditViolation],
        framework: ComplianceFramework
    ) -> List[str]:
        """Generate recommendations based on violations"""
        recommendations: List[str] = []

        for violation in violations:
            recommendations.extend(RECOMMENDATIONS.get(violation.type, []))

        recommendations.extend(FRAMEWORK_RECOMMENDATIONS.get(framework, []))

        if not violations and not recommendations:
            recommendations.append(
                "No violations detected. Continue monitoring and regular assessments."
            )

        # dedupe, keep order
        return list(dict.fromkeys(recommendations))

    def _gdpr_consent(self, records: List[AuditRecord]) -> List[AuditViolation]:
        offending = [
            r for r in records
            if r.action == AuditAction.READ
            and "personal_data" in r.resource
            and not r.metadata.get("consent")
        ]
        return self._violation(
            offending,
            "GDPR_DATA_ACCESS_WITHOUT_CONSENT",
            "Personal data accessed without explicit consent",
            Severity.HIGH
        )

    def _pci_unencrypted_payment(self, records: List[AuditRecord]) -> List[AuditViolation]:
        offending = [
            r for r in records
            if "payment" in r.resource and not r.metadata.get("encrypted")
        ]
        return self._violation(
            offending,
            "PCI_UNENCRYPTED_PAYMENT_DATA",
            "Payment data accessed without encryption",
            Severity.CRITICAL
        )

    def _hipaa_purpose(self, records: List[AuditRecord]) -> List[AuditViolation]:
        offending = [
            r for r in records
            if r.action in (AuditAction.READ, AuditAction.EXPORT)
            and any(marker in r.resource.lower() for marker in PHI_RESOURCE_MARKERS)
            and not r.metadata.get("purpose")
        ]
        return self._violation(
            offending,
            "HIPAA_PHI_ACCESS_WITHOUT_PURPOSE",
            "Protected health information accessed without a documented purpose",
            Severity.HIGH
        )

    def _violation(
        self,
        offending: List[AuditRecord],
        violation_type: str,
        description: str,
        severity: Severity
    ) -> List[AuditViolation]:
        if not offending:
            return []

        return [AuditViolation(
            type=violation_type,
            description=description,
            severity=severity,
            count=len(offending),
            first_occurrence=min(r.created_at for r in offending),
            last_occurrence=max(r.created_at for r in offending),
            affected_resources=list(dict.fromkeys(r.resource_id for r in offending))
        )]

    def _count_category(self, records: List[AuditRecord], category: EventCategory) -> int:
        return sum(1 for r in records if r.category == category.value)
