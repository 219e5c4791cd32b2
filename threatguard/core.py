"""
ThreatGuard Security Core
Threat detection, access decisions and audit trail for multi-tenant apps
"""

from datetime import datetime
from typing import List, Optional
import structlog

from threatguard.models.audit import AuditEvent, AuditQuery, AuditRecord, IntegrityResult
from threatguard.models.security import RequestContext, SecurityDecision
from threatguard.models.threat import ThreatAnalysis
from threatguard.services.audit_service import AuditService
from threatguard.services.audit_store import AuditStore, InMemoryAuditStore
from threatguard.services.behavioral_analyzer import BehavioralAnalyzer
from threatguard.services.compromise_evaluator import (
    CompromiseEvaluator,
    IpReputationSource,
    StaticIpReputation
)
from threatguard.services.encryption_service import EncryptionService
from threatguard.services.event_store import EventStore
from threatguard.services.health_check import SecurityHealthCheck
from threatguard.services.integrity_verifier import IntegrityVerifier
from threatguard.services.masking_service import MaskingService
from threatguard.services.pattern_registry import PatternRegistry
from threatguard.services.rate_limiter import RateLimiter
from threatguard.services.retention import RetentionJob
from threatguard.services.security_gate import SecurityGate
from threatguard.services.security_monitor import SecurityMonitor
from threatguard.services.threat_analyzer import ThreatAnalyzer
from threatguard.utils.clock import Clock, utc_now

logger = structlog.get_logger()


class SecurityCore:
    """
    Owns every stateful component and their lifecycle

    Construct once at startup, ``await start()`` inside a running loop and
    ``await stop()`` on shutdown. Components can be replaced for tests or
    to plug in durable storage and external reputation feeds.
    """

    def __init__(
        self,
        audit_store: Optional[AuditStore] = None,
        reputation: Optional[IpReputationSource] = None,
        encryption: Optional[EncryptionService] = None,
        masking: Optional[MaskingService] = None,
        registry: Optional[PatternRegistry] = None,
        encrypt_audit_data: Optional[bool] = None,
        history_size: Optional[int] = None,
        clock: Optional[Clock] = None,
        enable_retention: bool = True,
        health_check_interval: Optional[float] = None
    ):
        self.clock = clock or utc_now

        self.event_store = EventStore(max_size=history_size, clock=self.clock)
        self.registry = registry or PatternRegistry()
        self.analyzer = ThreatAnalyzer(self.event_store, self.registry)
        self.behavioral = BehavioralAnalyzer(self.event_store)
        self.compromise = CompromiseEvaluator(self.event_store, reputation or StaticIpReputation())

        self.encryption = encryption or EncryptionService()
        self.masking = masking or MaskingService()
        self.audit = AuditService(
            store=audit_store or InMemoryAuditStore(clock=self.clock),
            encryption=self.encryption,
            masking=self.masking,
            encrypt_sensitive_data=encrypt_audit_data,
            clock=self.clock
        )
        self.integrity = IntegrityVerifier(self.audit)

        self.monitor = SecurityMonitor(clock=self.clock)
        self.audit.add_violation_listener(self.monitor.handle_security_violation)

        self.rate_limiter = RateLimiter(clock=self.clock)
        self.gate = SecurityGate(
            event_store=self.event_store,
            analyzer=self.analyzer,
            behavioral=self.behavioral,
            compromise=self.compromise,
            audit=self.audit,
            monitor=self.monitor,
            rate_limiter=self.rate_limiter,
            clock=self.clock
        )

        self.retention = RetentionJob(self.audit) if enable_retention else None
        self.health_check = SecurityHealthCheck(
            self.monitor,
            self.rate_limiter,
            interval_seconds=health_check_interval
        )

    async def start(self) -> None:
        self.audit.start()
        if self.retention:
            self.retention.start()
        self.health_check.start()
        logger.info(
            "security_core_started",
            patterns=len(self.registry.list()),
            retention=self.retention is not None
        )

    async def stop(self) -> None:
        await self.health_check.stop()
        if self.retention:
            await self.retention.stop()
        await self.audit.stop()
        logger.info("security_core_stopped")

    # Audit log

    async def log_event(self, event: AuditEvent) -> Optional[AuditRecord]:
        """Write an audit event; never raises"""
        self.monitor.observe(event)
        return await self.audit.log_event(event)

    def enqueue_event(self, event: AuditEvent) -> None:
        """Fire-and-forget audit write, FIFO with other queued events"""
        self.monitor.observe(event)
        self.audit.enqueue(event)

    async def query_logs(self, query: AuditQuery) -> List[AuditRecord]:
        return await self.audit.query_logs(query)

    async def export_logs(
        self,
        tenant_id: str,
        start_date: datetime,
        end_date: datetime,
        format: str = "json"
    ) -> str:
        return await self.audit.export_logs(tenant_id, start_date, end_date, format)

    async def verify_integrity(self, tenant_id: str) -> IntegrityResult:
        return await self.integrity.verify_integrity(tenant_id)

    # Threat detection

    async def analyze_event(self, event: AuditEvent) -> List[ThreatAnalysis]:
        return await self.analyzer.analyze(event)

    async def perform_behavioral_analysis(
        self,
        user_id: Optional[str],
        tenant_id: Optional[str]
    ) -> List[ThreatAnalysis]:
        return await self.behavioral.analyze_behavior(user_id, tenant_id)

    async def is_account_compromised(self, tenant_id: Optional[str], user_id: Optional[str]) -> bool:
        return await self.compromise.is_compromised(tenant_id, user_id)

    async def is_ip_blacklisted(self, ip_address: Optional[str]) -> bool:
        return await self.compromise.is_blacklisted(ip_address)

    # Decision gate

    async def evaluate(self, context: RequestContext) -> SecurityDecision:
        return await self.gate.evaluate(context)

    async def enforce(self, context: RequestContext) -> SecurityDecision:
        return await self.gate.enforce(context)
