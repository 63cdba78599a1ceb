"""
Tests for the background scan job manager.
"""

import asyncio

from scrapers.manager import JobStatus, ScanManager


async def _value(value, delay=0):
    await asyncio.sleep(delay)
    return value


async def _fail(message):
    raise ValueError(message)


class TestScanManager:
    """Test job lifecycle transitions."""

    def test_job_succeeds(self):
        async def scenario():
            manager = ScanManager()
            job = manager.submit('user_scan', lambda: _value({'loads_found': 3}), user_id='user-1')
            assert job.status == JobStatus.PENDING
            await manager.wait(job.job_id)
            return job

        job = asyncio.run(scenario())

        assert job.status == JobStatus.SUCCEEDED
        assert job.result == {'loads_found': 3}
        assert job.meta == {'user_id': 'user-1'}
        assert job.started_at is not None
        assert job.finished_at is not None

    def test_job_failure_recorded(self):
        async def scenario():
            manager = ScanManager()
            job = manager.submit('user_scan', lambda: _fail("scraper exploded"))
            await manager.wait(job.job_id)
            return job

        job = asyncio.run(scenario())

        assert job.status == JobStatus.FAILED
        assert job.error == "scraper exploded"
        assert job.to_dict()['status'] == 'failed'

    def test_cancel_running_job(self):
        async def scenario():
            manager = ScanManager()
            job = manager.submit('user_scan', lambda: _value(None, delay=10))
            await asyncio.sleep(0)
            assert job.status == JobStatus.RUNNING
            assert manager.cancel(job.job_id) is True
            await manager.wait(job.job_id)
            return manager, job

        manager, job = asyncio.run(scenario())

        assert job.status == JobStatus.CANCELLED
        assert job.finished_at is not None
        assert manager.cancel(job.job_id) is False

    def test_cancel_before_start(self):
        async def scenario():
            manager = ScanManager()
            job = manager.submit('user_scan', lambda: _value(None))
            manager.cancel(job.job_id)
            await manager.wait(job.job_id)
            return job

        job = asyncio.run(scenario())

        assert job.status == JobStatus.CANCELLED
        assert job.started_at is None

    def test_cancel_unknown_job(self):
        assert ScanManager().cancel("missing") is False

    def test_list_jobs_filters_kind(self):
        async def scenario():
            manager = ScanManager()
            manager.submit('user_scan', lambda: _value(1))
            manager.submit('backhaul_scan', lambda: _value(2))
            await asyncio.sleep(0.01)
            return manager

        manager = asyncio.run(scenario())

        assert len(manager.list_jobs()) == 2
        assert [j.kind for j in manager.list_jobs('backhaul_scan')] == ['backhaul_scan']

    def test_shutdown_cancels_outstanding(self):
        async def scenario():
            manager = ScanManager()
            job = manager.submit('cron_scan', lambda: _value(None, delay=10))
            await asyncio.sleep(0)
            await manager.shutdown(timeout=1.0)
            return job

        job = asyncio.run(scenario())

        assert job.status == JobStatus.CANCELLED

    def test_finished_jobs_pruned(self):
        async def scenario():
            manager = ScanManager()
            manager.MAX_FINISHED_JOBS = 2
            first = manager.submit('user_scan', lambda: _value(1))
            await manager.wait(first.job_id)
            for i in range(3):
                job = manager.submit('user_scan', lambda: _value(1))
                await manager.wait(job.job_id)
            manager.submit('user_scan', lambda: _value(1))
            return manager, first

        manager, first = asyncio.run(scenario())

        assert manager.get(first.job_id) is None
        finished = [j for j in manager.list_jobs() if j.done]
        assert len(finished) <= 3
