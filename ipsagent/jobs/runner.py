"""Job runner: claim, step through the pipeline, record the outcome.

The runner never raises for a pipeline failure. Any exception or timeout
becomes a ``failed`` job with the failing step recorded; a lost claim is a
silent no-op so racing triggers are harmless.
"""

from __future__ import annotations

import asyncio
import traceback
from typing import Optional

from ipsagent.core.clock import Clock, system_clock
from ipsagent.core.exceptions import JobPipelineError
from ipsagent.core.logging import get_logger, job_id_var
from ipsagent.repositories.candidates import CandidateRepository
from ipsagent.services.market_data import MarketDataGateway

from .models import Job, JobFailure, JobKind, JobStatus
from .pipelines import PIPELINES, JobContext, Pipeline
from .store import JobStore


logger = get_logger("jobs.runner")

ERROR_MESSAGE_LIMIT = 1000
TRACEBACK_LIMIT = 4000


class _Cancelled(Exception):
    """Job was cancelled externally between steps."""


class JobRunner:
    """Runs claimed jobs through their pipeline under a wall-clock cap."""

    def __init__(
        self,
        store: JobStore,
        gateway: MarketDataGateway,
        candidates: CandidateRepository,
        *,
        clock: Clock = system_clock,
        timeout_seconds: float = 300,
        pipelines: dict[JobKind, Pipeline] | None = None,
    ):
        self.store = store
        self.gateway = gateway
        self.candidates = candidates
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._pipelines = pipelines or PIPELINES

    async def run_by_id(self, job_id: str) -> bool:
        """Claim ``job_id`` and run it. Returns False if another trigger won."""
        job = await self.store.claim_by_id(job_id)
        if job is None:
            logger.debug(f"Job {job_id} not claimed (already taken or not pending)")
            return False
        await self.execute(job)
        return True

    async def run_next_pending(self, kind: Optional[JobKind] = None) -> Optional[str]:
        """Claim and run the oldest pending job, if any."""
        job = await self.store.claim_next_pending(kind)
        if job is None:
            return None
        await self.execute(job)
        return job.id

    async def execute(self, job: Job) -> JobStatus:
        """Run an already-claimed job to a terminal state."""
        token = job_id_var.set(job.id)
        try:
            return await self._execute(job)
        finally:
            job_id_var.reset(token)

    async def _execute(self, job: Job) -> JobStatus:
        started = self._clock.monotonic()
        pipeline = self._pipelines[job.kind]
        ctx = JobContext(
            job=job,
            gateway=self.gateway,
            candidates=self.candidates,
            clock=self._clock,
            progress=job.progress.advance(total_steps=pipeline.total_steps),
            report=lambda progress: self.store.update_progress(job.id, progress),
        )
        logger.info(f"Job {job.id} ({job.kind.value}) started")

        try:
            await asyncio.wait_for(self._run_steps(pipeline, ctx), timeout=self.timeout_seconds)
            ctx.progress = ctx.progress.advance(
                current_step="completed",
                completed_steps=pipeline.total_steps,
                message="Job completed",
            )
            await self.store.update_progress(job.id, ctx.progress)
            completed = await self.store.complete(job.id, ctx.result or {})
        except _Cancelled:
            logger.info(f"Job {job.id} cancelled before step '{ctx.progress.current_step}'")
            return JobStatus.CANCELLED
        except asyncio.TimeoutError:
            failure = JobFailure(
                message=f"Job timed out after {self.timeout_seconds:g}s",
                details={"name": "TimeoutError", "step": ctx.progress.current_step},
            )
            logger.error(f"Job {job.id} timed out in step '{ctx.progress.current_step}'")
            return await self._fail(job, failure)
        except JobPipelineError as e:
            return await self._fail_with(job, e.__cause__ or e, e.step)
        except Exception as e:
            # Store errors between steps; the job must not stay running.
            return await self._fail_with(job, e, ctx.progress.current_step)

        if not completed:
            logger.warning(f"Job {job.id} finished but was no longer running; result dropped")
            return (await self._current_status(job.id)) or JobStatus.CANCELLED

        duration_ms = int((self._clock.monotonic() - started) * 1000)
        logger.info(
            f"Job {job.id} completed in {duration_ms}ms",
            extra={"job_id": job.id, "duration_ms": duration_ms},
        )
        return JobStatus.COMPLETED

    async def _run_steps(self, pipeline: Pipeline, ctx: JobContext) -> None:
        for index, step in enumerate(pipeline.steps):
            current = await self.store.get(ctx.job.id)
            if current is None or current.status == JobStatus.CANCELLED:
                raise _Cancelled()

            ctx.progress = ctx.progress.advance(
                current_step=step.name,
                completed_steps=index,
                message=step.message,
            )
            await self.store.update_progress(ctx.job.id, ctx.progress)
            logger.info(f"Job {ctx.job.id} step {index + 1}/{pipeline.total_steps}: {step.name}")

            try:
                await step.run(ctx)
            except Exception as e:
                raise JobPipelineError(step.name, str(e)) from e

    async def _fail_with(self, job: Job, cause: BaseException, step: str) -> JobStatus:
        failure = JobFailure(
            message=(str(cause) or type(cause).__name__)[:ERROR_MESSAGE_LIMIT],
            details={
                "name": type(cause).__name__,
                "step": step,
                "traceback": "".join(traceback.format_exception(cause))[-TRACEBACK_LIMIT:],
            },
        )
        logger.error(
            f"Job {job.id} failed in step '{step}': {cause}",
            exc_info=(type(cause), cause, cause.__traceback__),
        )
        return await self._fail(job, failure)

    async def _fail(self, job: Job, failure: JobFailure) -> JobStatus:
        if not await self.store.fail(job.id, failure):
            logger.warning(f"Job {job.id} failed but was no longer running; error dropped")
            return (await self._current_status(job.id)) or JobStatus.CANCELLED
        return JobStatus.FAILED

    async def _current_status(self, job_id: str) -> Optional[JobStatus]:
        job = await self.store.get(job_id)
        return job.status if job else None
