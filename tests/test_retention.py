"""Tests for the scheduled retention job"""

import asyncio
from datetime import timedelta

import pytest

from threatguard.models.audit import AuditAction, AuditQuery, AuditRecord
from threatguard.services.audit_service import AuditService
from threatguard.services.audit_store import InMemoryAuditStore
from threatguard.services.retention import RetentionJob


@pytest.fixture
def audit(clock):
    return AuditService(
        store=InMemoryAuditStore(clock=clock),
        encrypt_sensitive_data=False,
        retention_days=30,
        clock=clock
    )


async def seed(audit, clock):
    records = [
        AuditRecord(
            log_id=f"log-{age}",
            created_at=clock() - timedelta(days=age),
            tenant_id="tenant-a",
            action=AuditAction.READ,
            resource="documents"
        )
        for age in (1, 10, 45, 400)
    ]
    await audit.store.import_records(records)


class TestRetentionJob:

    @pytest.mark.asyncio
    async def test_run_once_deletes_expired_records(self, audit, clock):
        """Test run once deletes expired records"""
        await seed(audit, clock)
        job = RetentionJob(audit, interval_seconds=3600)

        assert await job.run_once() == 2

        remaining = await audit.query_logs(AuditQuery(tenant_id="tenant-a"))
        assert sorted(r.log_id for r in remaining) == ["log-1", "log-10"]

    @pytest.mark.asyncio
    async def test_start_runs_cleanup_and_stop_waits(self, audit, clock):
        """Test start runs cleanup and stop waits"""
        await seed(audit, clock)
        job = RetentionJob(audit, interval_seconds=3600)

        job.start()
        assert job.running
        await asyncio.sleep(0.05)
        await job.stop()

        assert not job.running
        [cleanup] = await audit.query_logs(AuditQuery(resource="audit_logs"))
        assert cleanup.metadata["deleted"] == 2
        assert cleanup.metadata["operation"] == "retention_cleanup"

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_the_job(self, clock):
        """Test failures do not stop the job"""
        class BrokenStore(InMemoryAuditStore):
            async def delete_older_than(self, cutoff, limit):
                raise RuntimeError("disk full")

        job = RetentionJob(
            AuditService(store=BrokenStore(clock=clock), encrypt_sensitive_data=False, clock=clock),
            interval_seconds=0.01
        )

        job.start()
        await asyncio.sleep(0.05)
        assert job.running
        await job.stop()
        assert not job.running

    @pytest.mark.asyncio
    async def test_stop_without_start(self, audit):
        """Test stop without start"""
        job = RetentionJob(audit)
        await job.stop()
        assert not job.running
