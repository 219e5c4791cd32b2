"""Behavioral Analysis Service"""

from datetime import timedelta
from typing import List, Optional, Tuple
import structlog

from threatguard.models.compliance import Severity
from threatguard.models.threat import EventHistoryEntry, ThreatAnalysis
from threatguard.rules.conditions import is_off_hours
from threatguard.services.event_store import EventStore
from threatguard.utils.config import settings

logger = structlog.get_logger()

DATA_ACCESS_ACTIONS = ("read", "export")


class BehavioralAnalyzer:
    """
    Heuristics over a user's full retained history

    Independent of the pattern registry. Each heuristic needs a minimum
    number of samples; sparse histories produce no analysis at all rather
    than a low-risk one.
    """

    MIN_LOGIN_EVENTS = 5
    MAX_DISTINCT_LOGIN_IPS = 3
    MIN_DATA_ACCESS_EVENTS = 10
    RAPID_ACCESS_SPAN = timedelta(minutes=10)
    OFF_HOURS_RATIO = 0.5

    def __init__(
        self,
        event_store: EventStore,
        min_events: Optional[int] = None,
        business_hours: Optional[Tuple[int, int]] = None
    ):
        self.event_store = event_store
        self.min_events = min_events or settings.BEHAVIOR_MIN_EVENTS
        self.business_hours = business_hours or (
            settings.BUSINESS_HOURS_START,
            settings.BUSINESS_HOURS_END
        )

    async def analyze_behavior(self, user_id: Optional[str], tenant_id: Optional[str]) -> List[ThreatAnalysis]:
        """Run all heuristics over the user's history"""
        history = await self.event_store.all(tenant_id, user_id)

        analyses = []
        for heuristic in (
            self._analyze_login_patterns,
            self._analyze_data_access_patterns,
            self._analyze_time_patterns,
        ):
            analysis = heuristic(history)
            if analysis:
                analyses.append(analysis)

        if analyses:
            logger.info(
                "behavioral_anomalies_detected",
                tenant_id=tenant_id,
                user_id=user_id,
                threat_ids=[a.threat_id for a in analyses]
            )

        return analyses

    def _analyze_login_patterns(self, history: List[EventHistoryEntry]) -> Optional[ThreatAnalysis]:
        """Logins spread over many IP addresses"""
        logins = [e for e in history if e.event.action.lower() == "login"]
        if len(logins) < self.MIN_LOGIN_EVENTS:
            return None

        distinct_ips = {e.event.ip_address for e in logins}
        if len(distinct_ips) <= self.MAX_DISTINCT_LOGIN_IPS:
            return None

        return ThreatAnalysis(
            threat_id="unusual_login_locations",
            confidence=min(100.0, len(distinct_ips) * 100 / len(logins)),
            risk_score=60,
            severity=Severity.MEDIUM,
            indicators=[f"Logins from {len(distinct_ips)} different IP addresses"],
            recommendations=["Verify user identity", "Check for account compromise"]
        )

    def _analyze_data_access_patterns(self, history: List[EventHistoryEntry]) -> Optional[ThreatAnalysis]:
        """Burst of reads/exports in a short span"""
        data_events = [e for e in history if e.event.action.lower() in DATA_ACCESS_ACTIONS]
        if len(data_events) < self.MIN_DATA_ACCESS_EVENTS:
            return None

        span = data_events[-1].timestamp - data_events[0].timestamp
        if span >= self.RAPID_ACCESS_SPAN:
            return None

        return ThreatAnalysis(
            threat_id="rapid_data_access",
            confidence=80,
            risk_score=70,
            severity=Severity.HIGH,
            indicators=[
                f"{len(data_events)} data access events in {round(span.total_seconds())} seconds"
            ],
            recommendations=["Review data access patterns", "Check for data exfiltration"]
        )

    def _analyze_time_patterns(self, history: List[EventHistoryEntry]) -> Optional[ThreatAnalysis]:
        """Majority of activity outside business hours"""
        if len(history) < self.min_events:
            return None

        off_hours = [e for e in history if is_off_hours(e.timestamp, *self.business_hours)]
        if len(off_hours) <= len(history) * self.OFF_HOURS_RATIO:
            return None

        return ThreatAnalysis(
            threat_id="unusual_time_patterns",
            confidence=70,
            risk_score=50,
            severity=Severity.MEDIUM,
            indicators=[f"{len(off_hours)} events outside business hours"],
            recommendations=["Verify legitimate business need for off-hours access"]
        )
