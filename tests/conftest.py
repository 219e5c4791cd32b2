"""Shared fixtures"""

from datetime import datetime, timedelta, timezone

import pytest

from threatguard.models.audit import AuditEvent

# a Tuesday, inside business hours
NOON = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, now: datetime = NOON):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_event(clock):
    """Build an AuditEvent stamped with the fake clock"""

    def _make(action="read", resource="documents", tenant_id="tenant-a", user_id="user-1", **kwargs):
        kwargs.setdefault("timestamp", clock())
        return AuditEvent(
            tenant_id=tenant_id,
            user_id=user_id,
            action=action,
            resource=resource,
            **kwargs
        )

    return _make
