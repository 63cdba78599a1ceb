"""
Scan Manager - runs scans as tracked background jobs.

A scan is triggered by a user action and must not hold the HTTP response
open. Instead of a detached, unobserved task, every scan is submitted here
and gets a ScanJob handle whose status, result and error can be polled, and
which can be cancelled.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINISHED_STATUSES = {JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED}


@dataclass
class ScanJob:
    """Handle for one background scan."""
    job_id: str
    kind: str
    meta: Dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    result: Any = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def done(self) -> bool:
        return self.status in FINISHED_STATUSES

    def to_dict(self) -> Dict:
        result = self.result
        if hasattr(result, 'to_dict'):
            result = result.to_dict()
        return {
            'job_id': self.job_id,
            'kind': self.kind,
            'meta': self.meta,
            'status': self.status.value,
            'result': result,
            'error': self.error,
            'created_at': self.created_at.isoformat(),
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }


class ScanManager:
    """
    Registry of background scan jobs.

    Usage:
        manager = ScanManager()
        job = manager.submit('user_scan', lambda: scan(...), user_id='u1')
        manager.get(job.job_id).status
        await manager.wait(job.job_id)
    """

    # Finished jobs kept for polling before the oldest are pruned
    MAX_FINISHED_JOBS = 500

    def __init__(self):
        self._jobs: Dict[str, ScanJob] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    def submit(self, kind: str, coro_factory: Callable[[], Awaitable[Any]], **meta) -> ScanJob:
        """
        Schedule a job on the running event loop and return its handle immediately.

        Args:
            kind: Job type label (e.g. 'user_scan', 'backhaul_scan')
            coro_factory: Zero-arg callable returning the coroutine to run
            **meta: Identifiers stored on the job for display (user_id, criteria_id)
        """
        job = ScanJob(job_id=uuid.uuid4().hex, kind=kind, meta=meta)
        self._jobs[job.job_id] = job
        task = asyncio.get_running_loop().create_task(
            self._run(job, coro_factory),
            name=f"{kind}:{job.job_id}",
        )
        task.add_done_callback(lambda t, job_id=job.job_id: self._on_done(job_id, t))
        self._tasks[job.job_id] = task
        logger.info(f"Submitted {kind} job {job.job_id} {meta}")
        self._prune()
        return job

    async def _run(self, job: ScanJob, coro_factory: Callable[[], Awaitable[Any]]):
        job.status = JobStatus.RUNNING
        job.started_at = datetime.now(timezone.utc)
        try:
            job.result = await coro_factory()
            job.status = JobStatus.SUCCEEDED
            logger.info(f"Job {job.job_id} ({job.kind}) succeeded")
        except asyncio.CancelledError:
            job.status = JobStatus.CANCELLED
            logger.info(f"Job {job.job_id} ({job.kind}) cancelled")
            raise
        except Exception as e:
            job.status = JobStatus.FAILED
            job.error = str(e)
            logger.exception(f"Job {job.job_id} ({job.kind}) failed: {e}")
        finally:
            job.finished_at = datetime.now(timezone.utc)

    def _on_done(self, job_id: str, task: asyncio.Task):
        self._tasks.pop(job_id, None)
        job = self._jobs.get(job_id)
        # Cancelled before its first step: _run never executed
        if job is not None and not job.done and task.cancelled():
            job.status = JobStatus.CANCELLED
            job.finished_at = datetime.now(timezone.utc)

    def get(self, job_id: str) -> Optional[ScanJob]:
        return self._jobs.get(job_id)

    def list_jobs(self, kind: Optional[str] = None) -> List[ScanJob]:
        jobs = list(self._jobs.values())
        if kind:
            jobs = [j for j in jobs if j.kind == kind]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    def cancel(self, job_id: str) -> bool:
        """Request cancellation. Returns False if the job is unknown or already finished."""
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return False
        return task.cancel()

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> Optional[ScanJob]:
        """Wait for a job to finish (cancellation is reported on the job, not raised)."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task}, timeout=timeout)
        return self._jobs.get(job_id)

    async def shutdown(self, timeout: float = 5.0):
        """Cancel outstanding jobs and wait briefly for them to unwind."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        if not tasks:
            return
        logger.info(f"Cancelling {len(tasks)} running scan job(s)...")
        for task in tasks:
            task.cancel()
        await asyncio.wait(tasks, timeout=timeout)

    def _prune(self):
        finished = [j for j in self._jobs.values() if j.done]
        excess = len(finished) - self.MAX_FINISHED_JOBS
        if excess <= 0:
            return
        for job in sorted(finished, key=lambda j: j.finished_at or j.created_at)[:excess]:
            self._jobs.pop(job.job_id, None)
