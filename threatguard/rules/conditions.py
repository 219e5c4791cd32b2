"""Condition evaluation for threat patterns"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from threatguard.models.audit import AuditEvent
from threatguard.models.threat import ConditionOperator, ThreatCondition, ThreatPattern
from threatguard.utils.config import settings


def is_off_hours(
    timestamp: datetime,
    start_hour: Optional[int] = None,
    end_hour: Optional[int] = None
) -> bool:
    """True when the UTC hour falls before start_hour or after end_hour"""
    start = settings.BUSINESS_HOURS_START if start_hour is None else start_hour
    end = settings.BUSINESS_HOURS_END if end_hour is None else end_hour
    return timestamp.hour < start or timestamp.hour > end


class ConditionEvaluator:
    """
    Resolves event fields by path and evaluates pattern conditions

    Supported paths:
    - top level event attributes (``action``, ``resource``, ``ip_address``...)
    - ``metadata.*``, ``old_values.*`` and ``new_values.*`` lookups
    - derived fields ``hour_of_day`` and ``off_hours``
    """

    MAPPING_ROOTS = ("metadata", "old_values", "new_values")

    def __init__(self, business_hours: Optional[Tuple[int, int]] = None):
        self.business_hours = business_hours or (
            settings.BUSINESS_HOURS_START,
            settings.BUSINESS_HOURS_END
        )
        self._derived: Dict[str, Callable[[AuditEvent], Any]] = {
            "hour_of_day": lambda e: e.timestamp.hour,
            "off_hours": lambda e: is_off_hours(e.timestamp, *self.business_hours),
            "action": lambda e: e.action.lower(),
        }

    def resolve(self, event: AuditEvent, path: str) -> Any:
        """Get a field value from an event; unknown paths resolve to None"""
        if path in self._derived:
            return self._derived[path](event)

        root, _, rest = path.partition(".")
        if root in self.MAPPING_ROOTS:
            value = getattr(event, root) or {}
            return self._get_nested_value(value, rest) if rest else value

        if rest or root not in AuditEvent.model_fields:
            return None

        value = getattr(event, root)
        if isinstance(value, Enum):
            return value.value
        return value

    def evaluate(self, field_value: Any, condition: ThreatCondition) -> bool:
        operator = condition.operator

        if operator == ConditionOperator.EQUALS:
            return self._strict_equals(field_value, condition.value)

        if field_value is None:
            return False

        if operator == ConditionOperator.CONTAINS:
            return str(condition.value).lower() in str(field_value).lower()

        if operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
            try:
                left, right = float(field_value), float(condition.value)
            except (TypeError, ValueError):
                return False
            if operator == ConditionOperator.GREATER_THAN:
                return left > right
            return left < right

        if operator == ConditionOperator.REGEX:
            return re.search(str(condition.value), str(field_value)) is not None

        return False

    def match_weight(self, event: AuditEvent, pattern: ThreatPattern) -> Tuple[float, float]:
        """Return (satisfied weight, total weight) of a pattern's conditions"""
        satisfied = 0.0
        total = 0.0
        for condition in pattern.conditions:
            total += condition.weight
            if self.evaluate(self.resolve(event, condition.field), condition):
                satisfied += condition.weight
        return satisfied, total

    def matches(self, event: AuditEvent, pattern: ThreatPattern) -> bool:
        satisfied, total = self.match_weight(event, pattern)
        if pattern.match_ratio >= 1.0:
            return satisfied == total
        return satisfied >= pattern.match_ratio * total

    def _strict_equals(self, left: Any, right: Any) -> bool:
        if left is None or right is None:
            return left is right
        # bools only equal bools, never 1/0
        if isinstance(left, bool) or isinstance(right, bool):
            return isinstance(left, bool) and isinstance(right, bool) and left == right
        if isinstance(left, (int, float)) and isinstance(right, (int, float)):
            return left == right
        return type(left) is type(right) and left == right

    def _get_nested_value(self, data: Dict[str, Any], path: str) -> Any:
        """Get value from nested dictionary"""
        value: Any = data
        for key in path.split("."):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return None
        return value
