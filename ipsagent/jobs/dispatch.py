"""Job dispatch: submission, in-process workers and the trigger surface.

``submit`` validates the payload, stores a pending job and then notifies
workers: the job id goes onto an in-process queue (when workers are running)
and to the optional external notifier (Celery). A job that no worker picks up
stays pending and is found later by the poller or the stuck-job sweep.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import timedelta
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from ipsagent.core.exceptions import NotFoundError, ValidationError
from ipsagent.core.logging import get_logger
from ipsagent.schemas.jobs import PARAMS_BY_KIND

from .models import Job, JobKind, JobStatus
from .pipelines import get_pipeline
from .runner import JobRunner
from .store import JobStore


logger = get_logger("jobs.dispatch")

Notifier = Callable[[str], Any]


def enqueue_job_run(job_id: str) -> str:
    """Send a job id to the Celery worker and return the task id."""
    from ipsagent.celery_app import celery_app

    result = celery_app.send_task("jobs.process_job", args=[job_id])
    return result.id


class JobDispatcher:
    """Creates jobs and routes run triggers to the runner."""

    def __init__(
        self,
        store: JobStore,
        runner: JobRunner,
        *,
        stuck_after_seconds: float = 60,
        max_symbols: int = 100,
        notifier: Notifier | None = None,
    ):
        self.store = store
        self.runner = runner
        self.stuck_after = timedelta(seconds=stuck_after_seconds)
        self.max_symbols = max_symbols
        self._notifier = notifier
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []

    # =========================================================================
    # Submission
    # =========================================================================

    def validate(self, kind: JobKind | str, params: dict[str, Any]) -> tuple[JobKind, dict[str, Any]]:
        """Validate ``params`` for ``kind`` and return the normalized payload."""
        try:
            job_kind = JobKind(kind)
        except ValueError as e:
            raise ValidationError(
                f"Unknown job kind: {kind}",
                details={"allowed": [k.value for k in JobKind]},
            ) from e

        model = PARAMS_BY_KIND[job_kind]
        try:
            validated = model.model_validate(params or {})
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid job parameters",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

        symbols = getattr(validated, "symbols", None)
        if symbols is not None and len(symbols) > self.max_symbols:
            raise ValidationError(
                f"Too many symbols (max {self.max_symbols})",
                details={"count": len(symbols), "max": self.max_symbols},
            )
        return job_kind, validated.model_dump(mode="json")

    async def submit(
        self,
        kind: JobKind | str,
        params: dict[str, Any],
        *,
        user_id: Optional[str] = None,
    ) -> str:
        """Validate, store as pending, then notify workers. Returns the job id."""
        job_kind, clean = self.validate(kind, params)
        pipeline = get_pipeline(job_kind)
        total_symbols = len(clean.get("symbols") or clean.get("positions") or [])

        job = await self.store.create_job(
            job_kind,
            clean,
            user_id=user_id,
            progress=pipeline.initial_progress(total_symbols),
        )
        logger.info(
            f"Job {job.id} queued ({job_kind.value}, {total_symbols} symbols)",
            extra={"job_id": job.id, "kind": job_kind.value},
        )
        self._notify(job.id)
        return job.id

    def _notify(self, job_id: str) -> None:
        if self._workers:
            self._queue.put_nowait(job_id)
        if self._notifier is not None:
            try:
                self._notifier(job_id)
            except Exception:
                # Job stays pending; the poller and stuck sweep still find it
                logger.exception(f"Failed to notify worker for job {job_id}")

    # =========================================================================
    # In-process workers
    # =========================================================================

    @property
    def running_workers(self) -> int:
        return sum(1 for t in self._workers if not t.done())

    async def start(self, workers: int = 1) -> None:
        if self._workers:
            return
        for n in range(workers):
            self._workers.append(
                asyncio.create_task(self._worker(n), name=f"job-worker-{n}")
            )
        logger.info(f"Started {workers} job workers")

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("Job workers stopped")

    async def join(self) -> None:
        """Wait until every queued job id has been handled."""
        await self._queue.join()

    async def _worker(self, n: int) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self.runner.run_by_id(job_id)
            except Exception:
                logger.exception(f"Worker {n} crashed while running job {job_id}")
            finally:
                self._queue.task_done()

    # =========================================================================
    # Trigger surface
    # =========================================================================

    async def status(self, job_id: str) -> Job:
        job = await self.store.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    async def list_jobs(
        self,
        *,
        kind: Optional[JobKind] = None,
        status: Optional[JobStatus] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[Job]:
        return await self.store.list_jobs(kind=kind, status=status, user_id=user_id, limit=limit)

    async def process_job(self, job_id: str) -> bool:
        """Run a specific job now. False if it could not be claimed."""
        return await self.runner.run_by_id(job_id)

    async def process_next_pending(self) -> Optional[str]:
        """Claim and run the oldest pending job. Returns its id or None."""
        return await self.runner.run_next_pending()

    async def recover_stuck(self) -> Optional[str]:
        """Run the oldest job that has sat pending past the stuck window."""
        for job in await self.store.find_stuck_pending(self.stuck_after):
            claimed = await self.store.claim_by_id(job.id)
            if claimed is None:
                continue
            logger.warning(
                f"Recovering stuck job {job.id} (pending since {job.created_at.isoformat()})"
            )
            await self.runner.execute(claimed)
            return claimed.id
        return None

    async def cancel(self, job_id: str) -> bool:
        await self.status(job_id)
        cancelled = await self.store.cancel(job_id)
        if cancelled:
            logger.info(f"Job {job_id} cancelled")
        return cancelled
