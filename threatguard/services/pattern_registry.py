"""Threat pattern registry"""

import threading
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional
import structlog

from threatguard.models.threat import ThreatPattern
from threatguard.rules.threat_patterns import load_default_patterns

logger = structlog.get_logger()


class PatternRegistry:
    """
    In-memory registry of threat patterns keyed by id

    Mutations build a new mapping and swap it in under a lock, so readers
    always see a complete pattern set. Patterns themselves are frozen;
    toggling replaces the pattern with an updated copy.
    """

    def __init__(self, patterns: Optional[Iterable[ThreatPattern]] = None, seed_defaults: bool = True):
        self._lock = threading.Lock()
        initial: Dict[str, ThreatPattern] = load_default_patterns() if seed_defaults else {}
        for pattern in patterns or []:
            initial[pattern.id] = pattern
        self._patterns: Mapping[str, ThreatPattern] = MappingProxyType(initial)

        logger.info("threat_patterns_initialized", count=len(initial))

    def snapshot(self) -> Mapping[str, ThreatPattern]:
        """Current immutable pattern set"""
        return self._patterns

    def add(self, pattern: ThreatPattern) -> None:
        """Insert or overwrite a pattern by id"""
        with self._lock:
            updated = dict(self._patterns)
            updated[pattern.id] = pattern
            self._patterns = MappingProxyType(updated)

        logger.info("threat_pattern_added", pattern_id=pattern.id, name=pattern.name)

    def remove(self, pattern_id: str) -> bool:
        with self._lock:
            if pattern_id not in self._patterns:
                return False
            updated = dict(self._patterns)
            del updated[pattern_id]
            self._patterns = MappingProxyType(updated)

        logger.info("threat_pattern_removed", pattern_id=pattern_id)
        return True

    def get(self, pattern_id: str) -> Optional[ThreatPattern]:
        return self._patterns.get(pattern_id)

    def list(self) -> List[ThreatPattern]:
        """All patterns, enabled and disabled"""
        return list(self._patterns.values())

    def enabled(self) -> List[ThreatPattern]:
        return [p for p in self._patterns.values() if p.enabled]

    def set_enabled(self, pattern_id: str, enabled: bool) -> Optional[ThreatPattern]:
        with self._lock:
            pattern = self._patterns.get(pattern_id)
            if pattern is None:
                return None
            toggled = pattern.model_copy(update={"enabled": enabled})
            updated = dict(self._patterns)
            updated[pattern_id] = toggled
            self._patterns = MappingProxyType(updated)

        logger.info(
            "threat_pattern_toggled",
            pattern_id=pattern_id,
            enabled=enabled
        )
        return toggled
