"""SQLAlchemy ORM models for IPS agent jobs and trade candidates.

Usage:
    from ipsagent.database.orm import AnalysisJob
    from ipsagent.database.connection import get_session

    async with get_session() as session:
        job = await session.get(AnalysisJob, "3f2a...")
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Naming convention for constraints and indexes (deterministic names for migrations)
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for all ORM models with naming convention."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# =============================================================================
# JOBS
# =============================================================================


class AnalysisJob(Base):
    """Background analysis job (agent run or dashboard refresh)."""
    __tablename__ = "analysis_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    user_id: Mapped[str | None] = mapped_column(String(64))
    params: Mapped[dict] = mapped_column(JSONB, nullable=False)
    progress: Mapped[dict] = mapped_column(JSONB, nullable=False)
    result: Mapped[dict | None] = mapped_column(JSONB)
    error_message: Mapped[str | None] = mapped_column(Text)
    error_details: Mapped[dict | None] = mapped_column(JSONB)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="status",
        ),
        CheckConstraint(
            "kind IN ('agent_analysis', 'dashboard_refresh')",
            name="kind",
        ),
        Index("idx_analysis_jobs_status_created", "status", "created_at"),
        Index("idx_analysis_jobs_user", "user_id"),
    )


class TradeCandidateRow(Base):
    """A selected trade candidate produced by an agent run."""
    __tablename__ = "trade_candidates"

    id: Mapped[int] = mapped_column(primary_key=True)
    candidate_id: Mapped[str] = mapped_column(String(64), nullable=False)
    job_id: Mapped[str] = mapped_column(
        ForeignKey("analysis_jobs.id", ondelete="CASCADE"), nullable=False
    )
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    strategy: Mapped[str] = mapped_column(String(40), nullable=False)
    expiry: Mapped[date] = mapped_column(Date, nullable=False)
    dte: Mapped[int] = mapped_column(Integer, nullable=False)
    short_strike: Mapped[float] = mapped_column(Numeric(12, 4), nullable=False)
    long_strike: Mapped[float] = mapped_column(Numeric(12, 4), nullable=False)
    entry_mid: Mapped[float] = mapped_column(Numeric(12, 4), nullable=False)
    max_loss: Mapped[float] = mapped_column(Numeric(12, 4), nullable=False)
    breakeven: Mapped[float] = mapped_column(Numeric(12, 4), nullable=False)
    est_pop: Mapped[float] = mapped_column(Numeric(6, 4), nullable=False)
    alignment: Mapped[float | None] = mapped_column(Numeric(6, 4))
    tier: Mapped[str | None] = mapped_column(String(20))
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_trade_candidates_job", "job_id"),
        Index("idx_trade_candidates_symbol", "symbol"),
    )
