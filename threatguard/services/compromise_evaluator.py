"""Account compromise and IP reputation checks"""

from typing import Iterable, List, Optional, Set
import structlog

from threatguard.models.threat import EventHistoryEntry
from threatguard.services.event_store import EventStore
from threatguard.utils.config import settings

logger = structlog.get_logger()


class IpReputationSource:
    """Known-bad IP lookup; subclass for file or remote feeds"""

    async def is_known_bad(self, ip_address: str) -> bool:
        raise NotImplementedError


class StaticIpReputation(IpReputationSource):
    """Fixed blacklist, seeded from settings by default"""

    def __init__(self, addresses: Optional[Iterable[str]] = None):
        self.addresses: Set[str] = set(
            settings.IP_BLACKLIST if addresses is None else addresses
        )

    async def is_known_bad(self, ip_address: str) -> bool:
        return ip_address in self.addresses

    def add(self, ip_address: str) -> None:
        self.addresses.add(ip_address)
        logger.info("ip_blacklisted", ip_address=ip_address)

    def discard(self, ip_address: str) -> None:
        self.addresses.discard(ip_address)
        logger.info("ip_unblacklisted", ip_address=ip_address)


class CompromiseEvaluator:
    """
    Aggregates binary indicators of compromise over a user's history

    An account is compromised when at least ``min_indicators`` of:
    - logins from more than 5 distinct IPs
    - more than 3 password changes
    - more than 100 read/export events
    - any permission or role change
    """

    MAX_LOGIN_IPS = 5
    MAX_PASSWORD_CHANGES = 3
    MAX_DATA_ACCESS = 100

    def __init__(
        self,
        event_store: EventStore,
        reputation: Optional[IpReputationSource] = None,
        min_indicators: int = 2
    ):
        self.event_store = event_store
        self.reputation = reputation or StaticIpReputation()
        self.min_indicators = min_indicators

    async def is_compromised(self, tenant_id: Optional[str], user_id: Optional[str]) -> bool:
        history = await self.event_store.all(tenant_id, user_id)
        indicators = self.indicators(history)

        fired = [name for name, hit in indicators.items() if hit]
        compromised = len(fired) >= self.min_indicators
        if compromised:
            logger.warning(
                "account_compromise_suspected",
                tenant_id=tenant_id,
                user_id=user_id,
                indicators=fired
            )
        return compromised

    def indicators(self, history: List[EventHistoryEntry]) -> dict:
        return {
            "unusual_login_locations": self._check_login_locations(history),
            "rapid_password_changes": self._check_password_changes(history),
            "unusual_data_access": self._check_data_access(history),
            "privilege_escalation": self._check_privilege_changes(history),
        }

    async def is_blacklisted(self, ip_address: Optional[str]) -> bool:
        if not ip_address:
            return False
        try:
            return await self.reputation.is_known_bad(ip_address)
        except Exception as e:
            logger.error("ip_reputation_lookup_failed", ip_address=ip_address, error=str(e))
            return False

    def _check_login_locations(self, history: List[EventHistoryEntry]) -> bool:
        ips = {e.event.ip_address for e in history if e.event.action.lower() == "login"}
        return len(ips) > self.MAX_LOGIN_IPS

    def _check_password_changes(self, history: List[EventHistoryEntry]) -> bool:
        changes = [
            e for e in history
            if e.event.action.lower() == "password_change" or "password" in e.event.resource.lower()
        ]
        return len(changes) > self.MAX_PASSWORD_CHANGES

    def _check_data_access(self, history: List[EventHistoryEntry]) -> bool:
        reads = [e for e in history if e.event.action.lower() in ("read", "export")]
        return len(reads) > self.MAX_DATA_ACCESS

    def _check_privilege_changes(self, history: List[EventHistoryEntry]) -> bool:
        return any(
            "permission" in e.event.resource.lower() or "role" in e.event.resource.lower()
            for e in history
        )
