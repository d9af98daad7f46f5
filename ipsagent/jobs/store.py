"""Job store contract and the in-memory implementation.

Every state change is a single conditional update:

- ``claim_*``: pending → running, returns the job to exactly one caller
- ``update_progress``: only while running, never moves ``completed_steps`` back
- ``complete`` / ``fail``: only from running
- ``cancel``: only from pending or running

Terminal jobs never change again.
"""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import timedelta
from typing import Any, Optional, Protocol

from ipsagent.core.clock import Clock, system_clock
from ipsagent.core.logging import get_logger

from .models import Job, JobFailure, JobKind, JobProgress, JobStatus


logger = get_logger("jobs.store")


def new_job_id() -> str:
    return uuid.uuid4().hex


class JobStore(Protocol):
    """Persistence contract used by the dispatcher and runner."""

    async def create_job(
        self,
        kind: JobKind,
        params: dict[str, Any],
        *,
        user_id: Optional[str] = None,
        progress: Optional[JobProgress] = None,
    ) -> Job: ...

    async def get(self, job_id: str) -> Optional[Job]: ...

    async def list_jobs(
        self,
        *,
        kind: Optional[JobKind] = None,
        status: Optional[JobStatus] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[Job]: ...

    async def claim_next_pending(self, kind: Optional[JobKind] = None) -> Optional[Job]: ...

    async def claim_by_id(self, job_id: str) -> Optional[Job]: ...

    async def update_progress(self, job_id: str, progress: JobProgress) -> bool: ...

    async def complete(self, job_id: str, result: dict[str, Any]) -> bool: ...

    async def fail(self, job_id: str, error: JobFailure) -> bool: ...

    async def cancel(self, job_id: str) -> bool: ...

    async def find_stuck_pending(
        self, older_than: timedelta, kind: Optional[JobKind] = None
    ) -> list[Job]: ...


class InMemoryJobStore:
    """Process-local job store guarded by a single lock.

    No awaits happen while the lock is held, so each method is atomic with
    respect to both threads and other coroutines.
    """

    def __init__(self, *, clock: Clock = system_clock):
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _snapshot(job: Job) -> Job:
        return copy.deepcopy(job)

    async def create_job(
        self,
        kind: JobKind,
        params: dict[str, Any],
        *,
        user_id: Optional[str] = None,
        progress: Optional[JobProgress] = None,
    ) -> Job:
        job = Job(
            id=new_job_id(),
            kind=JobKind(kind),
            status=JobStatus.PENDING,
            params=copy.deepcopy(params),
            created_at=self._clock.now(),
            progress=progress or JobProgress(),
            user_id=user_id,
        )
        with self._lock:
            self._jobs[job.id] = job
            return self._snapshot(job)

    async def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return self._snapshot(job) if job else None

    async def list_jobs(
        self,
        *,
        kind: Optional[JobKind] = None,
        status: Optional[JobStatus] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[Job]:
        with self._lock:
            jobs = [
                j
                for j in self._jobs.values()
                if (kind is None or j.kind == kind)
                and (status is None or j.status == status)
                and (user_id is None or j.user_id == user_id)
            ]
            jobs.sort(key=lambda j: j.created_at, reverse=True)
            return [self._snapshot(j) for j in jobs[:limit]]

    def _claim(self, job: Job) -> Job:
        # Caller holds the lock and has checked status
        job.status = JobStatus.RUNNING
        job.started_at = self._clock.now()
        return self._snapshot(job)

    async def claim_next_pending(self, kind: Optional[JobKind] = None) -> Optional[Job]:
        with self._lock:
            pending = [
                j
                for j in self._jobs.values()
                if j.status == JobStatus.PENDING and (kind is None or j.kind == kind)
            ]
            if not pending:
                return None
            # dicts keep insertion order, so ties resolve to the first created
            oldest = min(pending, key=lambda j: j.created_at)
            return self._claim(oldest)

    async def claim_by_id(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PENDING:
                return None
            return self._claim(job)

    async def update_progress(self, job_id: str, progress: JobProgress) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.RUNNING:
                return False
            if progress.completed_steps < job.progress.completed_steps:
                logger.debug(
                    f"Ignoring progress regression for {job_id}: "
                    f"{job.progress.completed_steps} -> {progress.completed_steps}"
                )
                return False
            job.progress = progress
            return True

    async def complete(self, job_id: str, result: dict[str, Any]) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.RUNNING:
                return False
            job.status = JobStatus.COMPLETED
            job.result = copy.deepcopy(result)
            job.completed_at = self._clock.now()
            return True

    async def fail(self, job_id: str, error: JobFailure) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.RUNNING:
                return False
            job.status = JobStatus.FAILED
            job.error = error
            job.completed_at = self._clock.now()
            return True

    async def cancel(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in (JobStatus.PENDING, JobStatus.RUNNING):
                return False
            now = self._clock.now()
            job.status = JobStatus.CANCELLED
            job.started_at = job.started_at or now
            job.completed_at = now
            return True

    async def find_stuck_pending(
        self, older_than: timedelta, kind: Optional[JobKind] = None
    ) -> list[Job]:
        cutoff = self._clock.now() - older_than
        with self._lock:
            stuck = [
                j
                for j in self._jobs.values()
                if j.status == JobStatus.PENDING
                and j.created_at < cutoff
                and (kind is None or j.kind == kind)
            ]
            stuck.sort(key=lambda j: j.created_at)
            return [self._snapshot(j) for j in stuck]
