"""Job store backed by PostgreSQL via SQLAlchemy ORM.

Every transition is one conditional UPDATE so two workers can never both
win a claim:

    UPDATE analysis_jobs SET status='running' ... WHERE id=:id AND status='pending'
    RETURNING *

``claim_next_pending`` locks the oldest pending row with
``FOR UPDATE SKIP LOCKED`` so concurrent pollers pick different rows.

Usage:
    from ipsagent.repositories.jobs_orm import SqlAlchemyJobStore

    store = SqlAlchemyJobStore()
    job = await store.claim_by_id(job_id)
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ipsagent.core.clock import Clock, system_clock
from ipsagent.core.logging import get_logger
from ipsagent.database.connection import get_session
from ipsagent.database.orm import AnalysisJob
from ipsagent.jobs.models import Job, JobFailure, JobKind, JobProgress, JobStatus
from ipsagent.jobs.store import new_job_id


logger = get_logger("repositories.jobs_orm")

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_ACTIVE = (JobStatus.PENDING.value, JobStatus.RUNNING.value)


def _row_to_job(row: AnalysisJob) -> Job:
    """Convert ORM row to a Job record."""
    error = None
    if row.status == JobStatus.FAILED.value or row.error_message:
        error = JobFailure(
            message=row.error_message or "",
            details=row.error_details or {},
        )
    return Job(
        id=row.id,
        kind=JobKind(row.kind),
        status=JobStatus(row.status),
        params=row.params or {},
        created_at=row.created_at,
        progress=JobProgress.from_dict(row.progress),
        result=row.result,
        error=error,
        user_id=row.user_id,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


class SqlAlchemyJobStore:
    """``JobStore`` implementation over the ``analysis_jobs`` table."""

    def __init__(
        self,
        session_factory: SessionFactory = get_session,
        *,
        clock: Clock = system_clock,
    ):
        self._session = session_factory
        self._clock = clock

    # =========================================================================
    # CREATE / READ
    # =========================================================================

    async def create_job(
        self,
        kind: JobKind,
        params: dict[str, Any],
        *,
        user_id: Optional[str] = None,
        progress: Optional[JobProgress] = None,
    ) -> Job:
        row = AnalysisJob(
            id=new_job_id(),
            kind=JobKind(kind).value,
            status=JobStatus.PENDING.value,
            user_id=user_id,
            params=params,
            progress=(progress or JobProgress()).to_dict(),
            created_at=self._clock.now(),
        )
        async with self._session() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _row_to_job(row)

    async def get(self, job_id: str) -> Optional[Job]:
        async with self._session() as session:
            row = await session.get(AnalysisJob, job_id)
            return _row_to_job(row) if row else None

    async def list_jobs(
        self,
        *,
        kind: Optional[JobKind] = None,
        status: Optional[JobStatus] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[Job]:
        stmt = select(AnalysisJob)
        if kind is not None:
            stmt = stmt.where(AnalysisJob.kind == JobKind(kind).value)
        if status is not None:
            stmt = stmt.where(AnalysisJob.status == JobStatus(status).value)
        if user_id is not None:
            stmt = stmt.where(AnalysisJob.user_id == user_id)
        stmt = stmt.order_by(AnalysisJob.created_at.desc()).limit(limit)

        async with self._session() as session:
            result = await session.execute(stmt)
            return [_row_to_job(row) for row in result.scalars().all()]

    # =========================================================================
    # CLAIMS
    # =========================================================================

    async def claim_next_pending(self, kind: Optional[JobKind] = None) -> Optional[Job]:
        """Claim the oldest pending job.

        Uses FOR UPDATE SKIP LOCKED for safe concurrent access.
        """
        stmt = (
            select(AnalysisJob)
            .where(AnalysisJob.status == JobStatus.PENDING.value)
            .order_by(AnalysisJob.created_at.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        if kind is not None:
            stmt = stmt.where(AnalysisJob.kind == JobKind(kind).value)

        async with self._session() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            if row is None:
                return None

            row.status = JobStatus.RUNNING.value
            row.started_at = self._clock.now()

            await session.commit()
            await session.refresh(row)
            return _row_to_job(row)

    async def claim_by_id(self, job_id: str) -> Optional[Job]:
        stmt = (
            update(AnalysisJob)
            .where(
                AnalysisJob.id == job_id,
                AnalysisJob.status == JobStatus.PENDING.value,
            )
            .values(status=JobStatus.RUNNING.value, started_at=self._clock.now())
            .returning(AnalysisJob)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            await session.commit()
            return _row_to_job(row) if row else None

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def _transition(self, job_id: str, *conditions: Any, **values: Any) -> bool:
        stmt = (
            update(AnalysisJob)
            .where(AnalysisJob.id == job_id, *conditions)
            .values(**values)
            .returning(AnalysisJob.id)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            changed = result.scalar_one_or_none() is not None
            await session.commit()
            return changed

    async def update_progress(self, job_id: str, progress: JobProgress) -> bool:
        return await self._transition(
            job_id,
            AnalysisJob.status == JobStatus.RUNNING.value,
            AnalysisJob.progress["completed_steps"].as_integer() <= progress.completed_steps,
            progress=progress.to_dict(),
        )

    async def complete(self, job_id: str, result: dict[str, Any]) -> bool:
        return await self._transition(
            job_id,
            AnalysisJob.status == JobStatus.RUNNING.value,
            status=JobStatus.COMPLETED.value,
            result=result,
            completed_at=self._clock.now(),
        )

    async def fail(self, job_id: str, error: JobFailure) -> bool:
        return await self._transition(
            job_id,
            AnalysisJob.status == JobStatus.RUNNING.value,
            status=JobStatus.FAILED.value,
            error_message=error.message[:1000],
            error_details=error.details,
            completed_at=self._clock.now(),
        )

    async def cancel(self, job_id: str) -> bool:
        now = self._clock.now()
        return await self._transition(
            job_id,
            AnalysisJob.status.in_(_ACTIVE),
            status=JobStatus.CANCELLED.value,
            started_at=func.coalesce(AnalysisJob.started_at, now),
            completed_at=now,
        )

    async def find_stuck_pending(
        self, older_than: timedelta, kind: Optional[JobKind] = None
    ) -> list[Job]:
        cutoff = self._clock.now() - older_than
        stmt = select(AnalysisJob).where(
            AnalysisJob.status == JobStatus.PENDING.value,
            AnalysisJob.created_at < cutoff,
        )
        if kind is not None:
            stmt = stmt.where(AnalysisJob.kind == JobKind(kind).value)
        stmt = stmt.order_by(AnalysisJob.created_at.asc())

        async with self._session() as session:
            result = await session.execute(stmt)
            return [_row_to_job(row) for row in result.scalars().all()]
