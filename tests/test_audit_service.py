"""Tests for the audit log writer and reader"""

import asyncio
import csv
import io
import json
from datetime import timedelta

import pytest

from threatguard.models.audit import (
    AuditAction,
    AuditEvent,
    AuditQuery,
    AuditRecord,
    EventCategory,
    SearchOptions,
    SortOrder
)
from threatguard.models.compliance import ComplianceFramework, Severity
from threatguard.services.audit_service import AuditService
from threatguard.services.audit_store import InMemoryAuditStore
from threatguard.services.encryption_service import EncryptionService
from threatguard.services.masking_service import MaskingService


@pytest.fixture
def store(clock):
    return InMemoryAuditStore(clock=clock)


@pytest.fixture
def encryption():
    return EncryptionService(secret="test-secret", salt="test-salt")


@pytest.fixture
def audit(store, encryption, clock):
    return AuditService(
        store=store,
        encryption=encryption,
        masking=MaskingService(),
        encrypt_sensitive_data=False,
        clock=clock
    )


@pytest.fixture
def encrypted_audit(store, encryption, clock):
    return AuditService(
        store=store,
        encryption=encryption,
        masking=MaskingService(),
        encrypt_sensitive_data=True,
        clock=clock
    )


class FailingStore(InMemoryAuditStore):
    async def insert(self, values):
        raise RuntimeError("database unavailable")


class SlowStore(InMemoryAuditStore):
    async def insert(self, values):
        await asyncio.sleep(1)
        return await super().insert(values)


class TestLogEvent:

    @pytest.mark.asyncio
    async def test_writes_record(self, audit, make_event):
        """Test writes record"""
        record = await audit.log_event(make_event(action="create", resource="invoice", resource_id="inv-1"))

        assert record.action == AuditAction.CREATE
        assert record.resource == "invoice"
        assert record.resource_id == "inv-1"
        assert record.log_id
        assert record.severity == "medium"
        assert record.category == "system"

    @pytest.mark.asyncio
    async def test_never_raises_on_store_failure(self, make_event):
        """Test never raises on store failure"""
        audit = AuditService(store=FailingStore(), encrypt_sensitive_data=False)
        assert await audit.log_event(make_event()) is None

    @pytest.mark.asyncio
    async def test_times_out_instead_of_hanging(self, make_event):
        """Test times out instead of hanging"""
        audit = AuditService(store=SlowStore(), encrypt_sensitive_data=False, write_timeout=0.01)
        assert await audit.log_event(make_event()) is None

    @pytest.mark.asyncio
    async def test_unknown_action_becomes_read(self, audit, make_event):
        """Test unknown action becomes read"""
        record = await audit.log_event(make_event(action="teleport"))
        assert record.action == AuditAction.READ

    @pytest.mark.asyncio
    async def test_masks_old_and_new_values(self, audit, make_event):
        """Test masks old and new values"""
        record = await audit.log_event(make_event(
            action="update",
            resource="user",
            old_values={"email": "a@example.com", "password": "old-pw"},
            new_values={"email": "b@example.com", "password": "new-pw"}
        ))

        assert record.old_values == {"email": "a@example.com", "password": "[REDACTED]"}
        assert record.new_values == {"email": "b@example.com", "password": "[REDACTED]"}

    @pytest.mark.asyncio
    async def test_timestamps_strictly_increase(self, audit, make_event):
        """Test timestamps strictly increase"""
        first = await audit.log_event(make_event())
        second = await audit.log_event(make_event())
        assert second.created_at > first.created_at


class TestEncryptionAtRest:

    @pytest.mark.asyncio
    async def test_values_and_metadata_encrypted_in_store(self, encrypted_audit, store, make_event):
        """Test values and metadata encrypted in store"""
        await encrypted_audit.log_event(make_event(
            action="update",
            resource="user",
            old_values={"nickname": "ada-before"},
            new_values={"nickname": "ada-after"},
            metadata={"reason": "profile edit"}
        ))

        stored = store.records[0]
        assert isinstance(stored.old_values, str)
        assert "ada-before" not in stored.old_values
        assert "profile edit" not in json.dumps(stored.metadata)
        assert stored.encrypted is True
        assert stored.severity == "medium"

    @pytest.mark.asyncio
    async def test_query_decrypts(self, encrypted_audit, make_event):
        """Test query decrypts"""
        await encrypted_audit.log_event(make_event(
            action="update",
            resource="user",
            old_values={"nickname": "ada", "password": "pw"},
            metadata={"reason": "profile edit"}
        ))

        [record] = await encrypted_audit.query_logs(AuditQuery(tenant_id="tenant-a"))

        assert record.old_values == {"nickname": "ada", "password": "[REDACTED]"}
        assert record.metadata["reason"] == "profile edit"
        assert record.metadata["encrypted"] is True

    @pytest.mark.asyncio
    async def test_undecryptable_record_returned_raw(self, encrypted_audit, store, clock, make_event):
        """Test undecryptable record returned raw"""
        await encrypted_audit.log_event(make_event(action="update", resource="user", old_values={"a": 1}))

        other_key = AuditService(
            store=store,
            encryption=EncryptionService(secret="other-secret", salt="other-salt"),
            encrypt_sensitive_data=True,
            clock=clock
        )
        [record] = await other_key.query_logs(AuditQuery(tenant_id="tenant-a"))

        assert isinstance(record.old_values, str)
        assert record.old_values == store.records[0].old_values

    @pytest.mark.asyncio
    async def test_system_events_are_not_encrypted(self, encrypted_audit, store, make_event):
        """Test system events are not encrypted"""
        await encrypted_audit.log_event(make_event(tenant_id=None, new_values={"setting": "on"}))

        assert store.records[0].new_values == {"setting": "on"}
        assert store.records[0].encrypted is False


class TestQuery:

    @pytest.mark.asyncio
    async def test_filters_order_and_pagination(self, audit, make_event, clock):
        """Test filters order and pagination"""
        for i in range(5):
            await audit.log_event(make_event(resource=f"doc-{i}"))
            clock.advance(minutes=1)
        await audit.log_event(make_event(tenant_id="tenant-b", resource="other"))
        await audit.log_event(make_event(action="delete", resource="doc-0"))

        newest = await audit.query_logs(AuditQuery(tenant_id="tenant-a", action="read", limit=2))
        assert [r.resource for r in newest] == ["doc-4", "doc-3"]

        page = await audit.query_logs(AuditQuery(
            tenant_id="tenant-a", action="read", limit=2, offset=2, order=SortOrder.ASC
        ))
        assert [r.resource for r in page] == ["doc-2", "doc-3"]

        assert await audit.count_logs(AuditQuery(tenant_id="tenant-a")) == 6
        assert await audit.count_logs(AuditQuery(resource="doc-0")) == 2

    @pytest.mark.asyncio
    async def test_unknown_action_filter_matches_nothing(self, audit, make_event):
        """Test unknown action filter matches nothing"""
        await audit.log_event(make_event(action="teleport"))
        assert await audit.query_logs(AuditQuery(action="teleport")) == []

    @pytest.mark.asyncio
    async def test_date_range(self, audit, make_event, clock):
        """Test date range"""
        await audit.log_event(make_event(resource="early"))
        start = clock.advance(hours=1)
        await audit.log_event(make_event(resource="late"))

        records = await audit.query_logs(AuditQuery(start_date=start))
        assert [r.resource for r in records] == ["late"]

    @pytest.mark.asyncio
    async def test_severity_and_category_filters(self, audit, make_event):
        """Test severity and category filters"""
        await audit.log_event(make_event(severity=Severity.CRITICAL, category=EventCategory.SECURITY))
        await audit.log_event(make_event(severity=Severity.LOW, category=EventCategory.DATA))

        critical = await audit.query_logs(AuditQuery(severity=Severity.CRITICAL))
        data = await audit.query_logs(AuditQuery(category=EventCategory.DATA))

        assert [r.severity for r in critical] == ["critical"]
        assert [r.category for r in data] == ["data"]


class TestReadSide:

    @pytest.mark.asyncio
    async def test_statistics(self, audit, make_event, clock):
        """Test statistics"""
        start = clock()
        await audit.log_event(make_event(action="login", resource="session", category=EventCategory.SECURITY))
        await audit.log_event(make_event(action="read", resource="customers", severity=Severity.CRITICAL))
        await audit.log_event(make_event(action="read", resource="customers", user_id="user-2"))

        stats = await audit.get_statistics("tenant-a", start, clock() + timedelta(minutes=1))

        assert stats.total_events == 3
        assert stats.by_action == {"login": 1, "read": 2}
        assert stats.by_resource == {"session": 1, "customers": 2}
        assert stats.by_user == {"user-1": 2, "user-2": 1}
        assert stats.critical_event_count == 1

    @pytest.mark.asyncio
    async def test_search(self, audit, make_event):
        """Test search"""
        await audit.log_event(make_event(resource="invoices"))
        await audit.log_event(make_event(resource="customers"))
        await audit.log_event(make_event(action="export", resource="orders"))

        logs, total = await audit.search_logs(SearchOptions(tenant_id="tenant-a", query="INVOICE"))
        assert total == 1
        assert logs[0].resource == "invoices"

        logs, total = await audit.search_logs(SearchOptions(tenant_id="tenant-a", query="export"))
        assert [r.resource for r in logs] == ["orders"]

        logs, total = await audit.search_logs(SearchOptions(tenant_id="tenant-a", limit=1))
        assert total == 3
        assert len(logs) == 1

    @pytest.mark.asyncio
    async def test_export_csv(self, audit, make_event, clock):
        """Test export CSV"""
        start = clock()
        await audit.log_event(make_event(action="export", resource="customers", ip_address="203.0.113.7"))

        content = await audit.export_logs("tenant-a", start, clock() + timedelta(minutes=1), "csv")
        rows = list(csv.reader(io.StringIO(content)))

        assert rows[0][:5] == ["Timestamp", "Tenant ID", "User ID", "Action", "Resource"]
        assert rows[1][1:5] == ["tenant-a", "user-1", "export", "customers"]
        assert rows[1][6] == "203.0.113.7"
        assert len(rows) == 2

    @pytest.mark.asyncio
    async def test_export_csv_empty(self, audit, clock):
        """Test export CSV empty"""
        content = await audit.export_logs("tenant-a", clock() - timedelta(days=1), clock(), "csv")
        assert content == "No data available"

    @pytest.mark.asyncio
    async def test_export_json(self, audit, make_event, clock):
        """Test export JSON"""
        start = clock()
        await audit.log_event(make_event(resource="customers"))

        content = await audit.export_logs("tenant-a", start, clock() + timedelta(minutes=1), "json")
        data = json.loads(content)

        assert len(data) == 1
        assert data[0]["resource"] == "customers"
        assert data[0]["action"] == "read"

    @pytest.mark.asyncio
    async def test_export_rejects_unknown_format(self, audit, clock):
        """Test export rejects unknown format"""
        with pytest.raises(ValueError):
            await audit.export_logs("tenant-a", clock(), clock(), "pdf")

    @pytest.mark.asyncio
    async def test_summary_report_caps_logs(self, audit, make_event, clock):
        """Test summary report caps logs"""
        start = clock()
        for _ in range(105):
            await audit.log_event(make_event())

        end = clock() + timedelta(minutes=1)
        summary = await audit.generate_report("tenant-a", start, end)
        detailed = await audit.generate_report("tenant-a", start, end, "detailed")

        assert summary.summary.total_events == 105
        assert len(summary.logs) == 100
        assert len(detailed.logs) == 105

    @pytest.mark.asyncio
    async def test_compliance_trail(self, audit, make_event, clock):
        """Test compliance trail"""
        start = clock()
        await audit.log_event(make_event(category=EventCategory.COMPLIANCE, metadata={"complianceFramework": "GDPR"}))
        await audit.log_event(make_event(category=EventCategory.COMPLIANCE, metadata={"complianceFramework": "SOC2"}))
        await audit.log_event(make_event(category=EventCategory.DATA))
        end = clock() + timedelta(minutes=1)

        assert len(await audit.get_compliance_trail("tenant-a", start, end)) == 2
        gdpr = await audit.get_compliance_trail("tenant-a", start, end, "GDPR")
        assert [r.metadata["complianceFramework"] for r in gdpr] == ["GDPR"]

    @pytest.mark.asyncio
    async def test_compliance_report(self, audit, make_event, clock):
        """Test compliance report"""
        start = clock()
        await audit.log_event(make_event(action="read", resource="personal_data", resource_id="p-1"))
        await audit.log_event(make_event(action="read", resource="personal_data", metadata={"consent": True}))
        end = clock() + timedelta(minutes=1)

        report = await audit.generate_compliance_report("tenant-a", "GDPR", start, end)

        assert report.report_type == ComplianceFramework.GDPR
        assert report.total_events == 2
        assert [v.type for v in report.violations] == ["GDPR_DATA_ACCESS_WITHOUT_CONSENT"]
        assert report.violations[0].count == 1
        assert report.violations[0].affected_resources == ["p-1"]


class TestRetention:

    @staticmethod
    def old_record(clock, index, days=3000):
        return AuditRecord(
            log_id=f"old-{index}",
            created_at=clock() - timedelta(days=days, minutes=index),
            tenant_id="tenant-a",
            action=AuditAction.READ,
            resource="documents"
        )

    @pytest.mark.asyncio
    async def test_cleanup_deletes_expired_and_audits_itself(self, audit, store, make_event, clock):
        """Test cleanup deletes expired and audits itself"""
        await store.import_records([self.old_record(clock, i) for i in range(3)])
        await audit.log_event(make_event(resource="recent"))

        deleted = await audit.cleanup_old_logs()

        assert deleted == 3
        resources = [r.resource for r in store.records]
        assert "documents" not in resources
        assert "recent" in resources

        [cleanup] = await audit.query_logs(AuditQuery(resource="audit_logs"))
        assert cleanup.action == AuditAction.DELETE
        assert cleanup.metadata["deleted"] == 3
        assert cleanup.severity == "high"

    @pytest.mark.asyncio
    async def test_stop_signal_finishes_current_batch(self, audit, store, clock):
        """Test stop signal finishes current batch"""
        await store.import_records([self.old_record(clock, i) for i in range(5)])
        stop = asyncio.Event()
        stop.set()

        deleted = await audit.cleanup_old_logs(stop_event=stop, batch_size=2)

        assert deleted == 2
        assert sum(1 for r in store.records if r.resource == "documents") == 3

    @pytest.mark.asyncio
    async def test_records_inside_retention_are_kept(self, audit, store, clock):
        """Test records inside retention are kept"""
        await store.import_records([self.old_record(clock, 0, days=30)])

        assert await audit.cleanup_old_logs() == 0


class TestBackgroundWriter:

    @pytest.mark.asyncio
    async def test_enqueue_preserves_order(self, audit, store, make_event):
        """Test enqueue preserves order"""
        audit.start()
        for i in range(20):
            audit.enqueue(make_event(resource=f"doc-{i}"))
        await audit.stop()

        assert [r.resource for r in store.records] == [f"doc-{i}" for i in range(20)]

    @pytest.mark.asyncio
    async def test_enqueue_starts_writer(self, audit, store, make_event):
        """Test enqueue starts writer"""
        audit.enqueue(make_event())
        await audit.flush()
        await audit.stop()

        assert len(store.records) == 1


class TestViolationChecks:

    @pytest.mark.asyncio
    async def test_failed_login_burst_notifies_listeners(self, audit, make_event, clock):
        """Test failed login burst notifies listeners"""
        received = []

        async def listener(violation):
            received.append(violation)

        audit.add_violation_listener(listener)
        for _ in range(5):
            await audit.log_event(make_event(action="login", resource="session", metadata={"failed": True}))
            clock.advance(seconds=30)

        assert len(received) == 1
        assert received[0]["violations"] == ["Multiple failed login attempts detected"]
        assert received[0]["tenant_id"] == "tenant-a"

    @pytest.mark.asyncio
    async def test_admin_grant_is_privilege_escalation(self, audit, make_event):
        """Test admin grant is privilege escalation"""
        received = []

        async def listener(violation):
            received.append(violation)

        audit.add_violation_listener(listener)
        await audit.log_event(make_event(
            action="update",
            resource="user_permissions",
            old_values={"permissions": ["read"]},
            new_values={"permissions": ["read", "admin"]}
        ))

        assert received[0]["violations"] == ["Privilege escalation detected"]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_logging(self, audit, make_event):
        """Test failing listener does not break logging"""
        async def listener(violation):
            raise RuntimeError("listener down")

        audit.add_violation_listener(listener)
        record = await audit.log_event(make_event(
            action="update",
            resource="user_permissions",
            new_values={"permissions": ["super_user"]}
        ))

        assert record is not None
