"""Threat Analyzer Service"""

from typing import List, Optional
import structlog

from threatguard.models.audit import AuditEvent
from threatguard.models.compliance import SEVERITY_BASE_SCORES
from threatguard.models.threat import EventHistoryEntry, ThreatAnalysis, ThreatPattern
from threatguard.rules.conditions import ConditionEvaluator
from threatguard.rules.threat_patterns import get_recommendations
from threatguard.services.event_store import EventStore
from threatguard.services.pattern_registry import PatternRegistry

logger = structlog.get_logger()


class ThreatAnalyzer:
    """
    Windowed pattern matching over the per-user event stream

    For every enabled pattern, only the events inside the pattern's time
    window are scanned. A pattern fires when the number of matching events
    reaches its threshold.
    """

    def __init__(
        self,
        event_store: EventStore,
        registry: PatternRegistry,
        evaluator: Optional[ConditionEvaluator] = None
    ):
        self.event_store = event_store
        self.registry = registry
        self.evaluator = evaluator or ConditionEvaluator()

    async def analyze(self, event: AuditEvent) -> List[ThreatAnalysis]:
        """
        Record an event and evaluate all enabled patterns against its window

        Args:
            event: Incoming activity event

        Returns:
            Analyses for the patterns that fired (possibly empty)
        """
        await self.event_store.record(event)

        analyses = []
        for pattern in self.registry.snapshot().values():
            if not pattern.enabled:
                continue
            analysis = await self._check_pattern(event, pattern)
            if analysis:
                analyses.append(analysis)

        if analyses:
            logger.warning(
                "threats_detected",
                tenant_id=event.tenant_id,
                user_id=event.user_id,
                threat_ids=[a.threat_id for a in analyses],
                max_risk_score=max(a.risk_score for a in analyses)
            )

        return analyses

    async def _check_pattern(
        self,
        event: AuditEvent,
        pattern: ThreatPattern
    ) -> Optional[ThreatAnalysis]:
        """Check a single pattern against the event's history window"""
        try:
            window = await self.event_store.window(
                event.tenant_id,
                event.user_id,
                pattern.time_window
            )
            matching = [
                entry for entry in window
                if self.evaluator.matches(entry.event, pattern)
            ]
        except Exception as e:
            logger.error(
                "threat_pattern_check_failed",
                pattern_id=pattern.id,
                error=str(e)
            )
            return None

        if len(matching) < pattern.threshold:
            return None

        return ThreatAnalysis(
            threat_id=pattern.id,
            confidence=self.calculate_confidence(len(matching), pattern.threshold),
            risk_score=self.calculate_risk_score(pattern, len(matching)),
            severity=pattern.severity,
            indicators=self._extract_indicators(pattern, matching),
            recommendations=get_recommendations(pattern.id)
        )

    @staticmethod
    def calculate_confidence(match_count: int, threshold: int) -> float:
        return min(100.0, match_count * 100 / threshold)

    @staticmethod
    def calculate_risk_score(pattern: ThreatPattern, match_count: int) -> float:
        """Severity base score scaled by frequency, capped at 2x and 100"""
        base = SEVERITY_BASE_SCORES[pattern.severity]
        scaled = min(2 * base, base * match_count / pattern.threshold)
        return min(100.0, scaled)

    def _extract_indicators(
        self,
        pattern: ThreatPattern,
        matching: List[EventHistoryEntry]
    ) -> List[str]:
        indicators = [f'{len(matching)} events matching pattern "{pattern.name}"']

        if matching:
            span = matching[-1].timestamp - matching[0].timestamp
            indicators.append(f"Events occurred over {round(span.total_seconds())} seconds")

        return indicators
