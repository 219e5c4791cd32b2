"""Exceptions raised by the security core"""

from typing import Any, Dict, List, Optional


class ThreatGuardError(Exception):
    """Base class for all security core errors"""


class PatternNotFoundError(ThreatGuardError, KeyError):
    """Raised when an operator references an unknown threat pattern"""

    def __init__(self, pattern_id: str):
        super().__init__(f"Threat pattern not found: {pattern_id}")
        self.pattern_id = pattern_id

    def __str__(self) -> str:
        return self.args[0]


class ForbiddenActionError(ThreatGuardError):
    """
    Raised when the decision gate refuses a unit of work

    Attributes:
        reason: Machine-readable reason code (e.g. ``threat_detected``)
        threat_ids: Threat or pattern ids that triggered the block
        risk_score: Highest risk score observed (0-100)
        context: Extra structured context for the caller
    """

    reason = "forbidden"

    def __init__(
        self,
        message: str,
        *,
        threat_ids: Optional[List[str]] = None,
        risk_score: float = 0,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.threat_ids = threat_ids or []
        self.risk_score = risk_score
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason,
            "message": self.message,
            "threat_ids": self.threat_ids,
            "risk_score": self.risk_score,
            "context": self.context
        }


class AccountCompromisedError(ForbiddenActionError):
    reason = "account_compromised"


class BlacklistedIpError(ForbiddenActionError):
    reason = "ip_blacklisted"


class LockdownError(ForbiddenActionError):
    reason = "critical_lockdown"


class IpNotAllowedError(ForbiddenActionError):
    reason = "ip_not_allowed"


class RateLimitExceededError(ForbiddenActionError):
    reason = "rate_limit_exceeded"

    def __init__(self, message: str, *, retry_after: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data


class ThreatBlockedError(ForbiddenActionError):
    reason = "threat_detected"


ERRORS_BY_REASON = {
    cls.reason: cls
    for cls in (
        AccountCompromisedError,
        BlacklistedIpError,
        LockdownError,
        IpNotAllowedError,
        RateLimitExceededError,
        ThreatBlockedError,
    )
}
