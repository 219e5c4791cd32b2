"""Security Decision Gate"""

import asyncio
import ipaddress
from typing import Dict, List, Optional
import structlog

from threatguard.models.audit import AuditEvent, EventCategory
from threatguard.models.compliance import Severity
from threatguard.models.security import (
    DecisionOutcome,
    RequestContext,
    SecurityDecision,
    TenantSecurityPolicy
)
from threatguard.models.threat import ThreatAnalysis
from threatguard.services.audit_service import AuditService
from threatguard.services.behavioral_analyzer import BehavioralAnalyzer
from threatguard.services.compromise_evaluator import CompromiseEvaluator
from threatguard.services.event_store import EventStore
from threatguard.services.rate_limiter import RateLimiter
from threatguard.services.security_monitor import SEVERITY_ORDER, SecurityMonitor
from threatguard.services.threat_analyzer import ThreatAnalyzer
from threatguard.utils.clock import Clock, utc_now
from threatguard.utils.config import settings
from threatguard.utils.errors import (
    AccountCompromisedError,
    BlacklistedIpError,
    ERRORS_BY_REASON,
    ForbiddenActionError,
    IpNotAllowedError,
    LockdownError,
    RateLimitExceededError,
    ThreatBlockedError
)

logger = structlog.get_logger()


class SecurityGate:
    """
    Allow / flag / block decisions for inbound units of work

    Checks run in order: account compromise, ip blacklist, tenant lockdown,
    ip allow-list for privileged tiers, rate limit, then threat and
    behavioral analysis. Every decision is written to the audit log.
    """

    def __init__(
        self,
        event_store: EventStore,
        analyzer: ThreatAnalyzer,
        behavioral: BehavioralAnalyzer,
        compromise: CompromiseEvaluator,
        audit: AuditService,
        monitor: SecurityMonitor,
        rate_limiter: Optional[RateLimiter] = None,
        block_score: Optional[float] = None,
        flag_score: Optional[float] = None,
        clock: Optional[Clock] = None
    ):
        self.event_store = event_store
        self.analyzer = analyzer
        self.behavioral = behavioral
        self.compromise = compromise
        self.audit = audit
        self.monitor = monitor
        self.rate_limiter = rate_limiter or RateLimiter()
        self.block_score = settings.BLOCK_RISK_SCORE if block_score is None else block_score
        self.flag_score = settings.FLAG_RISK_SCORE if flag_score is None else flag_score
        self.clock = clock or utc_now
        self.lockdown_allowed_actions = {a.lower() for a in settings.LOCKDOWN_ALLOWED_ACTIONS}
        self.privileged_tiers = set(settings.PRIVILEGED_TIERS)
        self.policies: Dict[str, TenantSecurityPolicy] = {}

    def set_tenant_policy(self, policy: TenantSecurityPolicy) -> None:
        self.policies[policy.tenant_id] = policy
        logger.info(
            "tenant_policy_updated",
            tenant_id=policy.tenant_id,
            ip_allowlist_enabled=policy.ip_allowlist_enabled,
            allowlist_size=len(policy.ip_allowlist)
        )

    async def evaluate(self, context: RequestContext) -> SecurityDecision:
        """Decide whether a unit of work may proceed"""
        event = self._to_event(context)
        self.monitor.observe(event)

        if await self.compromise.is_compromised(context.tenant_id, context.user_id):
            return await self._block(
                AccountCompromisedError.reason,
                "Account shows multiple indicators of compromise",
                context, event
            )

        if await self.compromise.is_blacklisted(context.ip_address):
            return await self._block(
                BlacklistedIpError.reason,
                "Requests from this IP address are blocked",
                context, event
            )

        if (
            self.monitor.has_active_critical_threat(context.tenant_id)
            and context.action.lower() not in self.lockdown_allowed_actions
        ):
            return await self._block(
                LockdownError.reason,
                "Tenant is in security lockdown; only "
                f"{', '.join(sorted(self.lockdown_allowed_actions))} actions are permitted",
                context, event,
                extra={"allowed_actions": sorted(self.lockdown_allowed_actions)}
            )

        if not self._ip_allowed(context):
            return await self._block(
                IpNotAllowedError.reason,
                "IP address is not in the tenant allow-list",
                context, event
            )

        status = await self.rate_limiter.hit(context)
        if not status.allowed:
            return await self._block(
                RateLimitExceededError.reason,
                "Too many requests. Please try again later.",
                context, event,
                extra={
                    "bucket": status.bucket,
                    "limit": status.limit,
                    "retry_after": status.retry_after
                }
            )

        threat_analyses, behavior_analyses = await asyncio.gather(
            self.analyzer.analyze(event),
            self.behavioral.analyze_behavior(context.user_id, context.tenant_id)
        )
        analyses: List[ThreatAnalysis] = threat_analyses + behavior_analyses
        risk_score = max((a.risk_score for a in analyses), default=0)
        acted_on = [a for a in analyses if a.risk_score >= self.flag_score]
        threat_ids = [a.threat_id for a in acted_on]

        if risk_score >= self.block_score:
            self.monitor.record_analyses(context.tenant_id, acted_on, context.ip_address, context.resource)
            decision = SecurityDecision(
                outcome=DecisionOutcome.BLOCK,
                reason=ThreatBlockedError.reason,
                message="Action blocked due to detected security threat",
                threat_ids=threat_ids,
                risk_score=risk_score,
                analyses=analyses
            )
            await self._audit(decision, context, self._highest_severity(acted_on))
            return decision

        if risk_score >= self.flag_score:
            self.monitor.record_analyses(context.tenant_id, acted_on, context.ip_address, context.resource)
            decision = SecurityDecision(
                outcome=DecisionOutcome.FLAG,
                reason="suspicious_activity",
                message="Action allowed but flagged for review",
                threat_ids=threat_ids,
                risk_score=risk_score,
                analyses=analyses
            )
            await self._audit(decision, context, self._highest_severity(acted_on))
            return decision

        decision = SecurityDecision(
            outcome=DecisionOutcome.ALLOW,
            risk_score=risk_score,
            analyses=analyses
        )
        await self._audit(decision, context, Severity.LOW)
        return decision

    async def enforce(self, context: RequestContext) -> SecurityDecision:
        """Like ``evaluate`` but raises a ``ForbiddenActionError`` on block"""
        decision = await self.evaluate(context)
        if decision.outcome != DecisionOutcome.BLOCK:
            return decision

        error_cls = ERRORS_BY_REASON.get(decision.reason, ForbiddenActionError)
        kwargs = {
            "threat_ids": decision.threat_ids,
            "risk_score": decision.risk_score,
            "context": decision.context,
        }
        if error_cls is RateLimitExceededError:
            kwargs["retry_after"] = decision.context.get("retry_after", 0)
        raise error_cls(decision.message, **kwargs)

    def _ip_allowed(self, context: RequestContext) -> bool:
        policy = self.policies.get(context.tenant_id or "")
        if policy is None or not policy.ip_allowlist_enabled:
            return True

        tier = context.tier or policy.tier
        if tier not in self.privileged_tiers:
            return True

        if not context.ip_address:
            return False

        try:
            address = ipaddress.ip_address(context.ip_address)
        except ValueError:
            return False

        for entry in policy.ip_allowlist:
            try:
                if address in ipaddress.ip_network(entry, strict=False):
                    return True
            except ValueError:
                logger.warning("invalid_allowlist_entry", tenant_id=policy.tenant_id, entry=entry)
        return False

    async def _block(
        self,
        reason: str,
        message: str,
        context: RequestContext,
        event: AuditEvent,
        extra: Optional[Dict] = None
    ) -> SecurityDecision:
        # blocked attempts still count toward history
        await self.event_store.record(event)

        decision = SecurityDecision(
            outcome=DecisionOutcome.BLOCK,
            reason=reason,
            message=message,
            risk_score=100 if reason == AccountCompromisedError.reason else 0,
            context=extra or {}
        )
        await self._audit(decision, context, Severity.HIGH)
        return decision

    async def _audit(self, decision: SecurityDecision, context: RequestContext, severity: Severity) -> None:
        metadata = dict(context.metadata)
        metadata.update(
            decision=decision.outcome.value,
            reason=decision.reason,
            risk_score=decision.risk_score,
            threat_ids=decision.threat_ids
        )

        resource = context.resource
        if decision.outcome == DecisionOutcome.FLAG:
            resource = "suspicious_activity"
            metadata.update(
                tags=["threat_detection"],
                target_resource=context.resource
            )

        await self.audit.log_event(AuditEvent(
            tenant_id=context.tenant_id,
            user_id=context.user_id,
            action=context.action,
            resource=resource,
            resource_id=context.resource_id,
            metadata=metadata,
            severity=severity,
            category=EventCategory.SECURITY,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            request_id=context.request_id
        ))

        log = logger.warning if decision.outcome != DecisionOutcome.ALLOW else logger.debug
        log(
            "security_decision",
            outcome=decision.outcome.value,
            reason=decision.reason,
            tenant_id=context.tenant_id,
            user_id=context.user_id,
            action=context.action,
            risk_score=decision.risk_score,
            threat_ids=decision.threat_ids
        )

    def _to_event(self, context: RequestContext) -> AuditEvent:
        return AuditEvent(
            tenant_id=context.tenant_id,
            user_id=context.user_id,
            action=context.action,
            resource=context.resource,
            resource_id=context.resource_id,
            metadata=dict(context.metadata),
            category=EventCategory.SECURITY,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            request_id=context.request_id,
            timestamp=self.clock()
        )

    @staticmethod
    def _highest_severity(analyses: List[ThreatAnalysis]) -> Severity:
        return max((a.severity for a in analyses), key=SEVERITY_ORDER.index, default=Severity.MEDIUM)
