"""Tests for the SQLAlchemy job store: statement shape and row mapping.

The session is mocked, so these check the SQL each transition emits rather
than PostgreSQL behaviour.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta

import pytest
from conftest import FakeClock
from sqlalchemy.dialects import postgresql

from ipsagent.database.orm import AnalysisJob
from ipsagent.jobs.models import JobFailure, JobKind, JobProgress, JobStatus
from ipsagent.repositories.jobs_orm import SqlAlchemyJobStore, _row_to_job


def _compile(stmt):
    return stmt.compile(dialect=postgresql.dialect())


def _row(clock: FakeClock, **overrides) -> AnalysisJob:
    fields = {
        "id": "job-1",
        "kind": "agent_analysis",
        "status": "pending",
        "user_id": "u1",
        "params": {"symbols": ["AAPL"]},
        "progress": {"current_step": "queued", "total_steps": 5},
        "created_at": clock.now(),
    }
    fields.update(overrides)
    return AnalysisJob(**fields)


@pytest.fixture
def session(mocker):
    session = mocker.MagicMock()
    session.execute = mocker.AsyncMock(return_value=mocker.MagicMock())
    session.commit = mocker.AsyncMock()
    session.refresh = mocker.AsyncMock()
    session.get = mocker.AsyncMock()
    return session


@pytest.fixture
def store(session, clock: FakeClock) -> SqlAlchemyJobStore:
    @asynccontextmanager
    async def factory():
        yield session

    return SqlAlchemyJobStore(factory, clock=clock)


def _returns(session, value) -> None:
    session.execute.return_value.scalar_one_or_none.return_value = value


def _executed(session):
    return _compile(session.execute.await_args.args[0])


class TestRowMapping:
    def test_row_to_job(self, clock: FakeClock):
        job = _row_to_job(_row(clock))

        assert job.kind == JobKind.AGENT_ANALYSIS
        assert job.status == JobStatus.PENDING
        assert job.progress.total_steps == 5
        assert job.progress.completed_steps == 0
        assert job.error is None

    def test_failed_row_carries_error(self, clock: FakeClock):
        job = _row_to_job(
            _row(clock, status="failed", error_message="boom", error_details={"step": "score"})
        )
        assert job.error == JobFailure("boom", {"step": "score"})


class TestClaims:
    @pytest.mark.asyncio
    async def test_claim_by_id_is_conditional_update(self, store, session, clock):
        """The claim only matches pending rows and returns the claimed row."""
        _returns(session, _row(clock, status="running", started_at=clock.now()))

        job = await store.claim_by_id("job-1")

        compiled = _executed(session)
        sql = str(compiled)
        assert sql.startswith("UPDATE analysis_jobs")
        assert "RETURNING" in sql
        assert "pending" in compiled.params.values()
        assert "running" in compiled.params.values()
        assert job.status == JobStatus.RUNNING
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lost_claim_returns_none(self, store, session):
        _returns(session, None)
        assert await store.claim_by_id("job-1") is None

    @pytest.mark.asyncio
    async def test_claim_next_skips_locked_rows(self, store, session, clock):
        row = _row(clock)
        _returns(session, row)

        job = await store.claim_next_pending()

        sql = str(_executed(session))
        assert "FOR UPDATE SKIP LOCKED" in sql
        assert "ORDER BY analysis_jobs.created_at ASC" in sql
        assert row.status == "running"
        assert row.started_at == clock.now()
        assert job.status == JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_claim_next_empty(self, store, session):
        _returns(session, None)

        assert await store.claim_next_pending(JobKind.DASHBOARD_REFRESH) is None
        session.commit.assert_not_awaited()


class TestTransitions:
    @pytest.mark.asyncio
    async def test_progress_guarded_by_status_and_step_count(self, store, session):
        """The update matches running rows whose stored step count is not ahead."""
        _returns(session, "job-1")

        assert await store.update_progress("job-1", JobProgress(completed_steps=2))

        compiled = _executed(session)
        sql = str(compiled)
        assert "->>" in sql
        assert "<=" in sql
        assert "running" in compiled.params.values()

    @pytest.mark.asyncio
    async def test_transition_miss_returns_false(self, store, session):
        _returns(session, None)
        assert await store.complete("job-1", {"candidates": []}) is False

    @pytest.mark.asyncio
    async def test_fail_truncates_message(self, store, session):
        _returns(session, "job-1")

        await store.fail("job-1", JobFailure("x" * 5000, {"step": "fetch_data"}))

        params = _executed(session).params
        assert len(params["error_message"]) == 1000
        assert params["status"] == "failed"

    @pytest.mark.asyncio
    async def test_cancel_keeps_existing_started_at(self, store, session):
        _returns(session, "job-1")

        assert await store.cancel("job-1")

        sql = str(_executed(session)).lower()
        assert "coalesce(analysis_jobs.started_at" in sql


class TestQueries:
    @pytest.mark.asyncio
    async def test_find_stuck_pending(self, store, session, clock):
        session.execute.return_value.scalars.return_value.all.return_value = [_row(clock)]

        stuck = await store.find_stuck_pending(timedelta(seconds=60))

        compiled = _executed(session)
        assert "analysis_jobs.created_at <" in str(compiled)
        assert clock.now() - timedelta(seconds=60) in compiled.params.values()
        assert [j.id for j in stuck] == ["job-1"]

    @pytest.mark.asyncio
    async def test_get_missing(self, store, session):
        session.get.return_value = None
        assert await store.get("nope") is None
