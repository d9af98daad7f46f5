"""Trade candidate repository using SQLAlchemy ORM."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import delete, select

from ipsagent.analysis.candidates import TradeCandidate
from ipsagent.core.logging import get_logger
from ipsagent.database.connection import get_session
from ipsagent.database.orm import TradeCandidateRow

from .jobs_orm import SessionFactory


logger = get_logger("repositories.candidates_orm")


def _candidate_to_row(job_id: str, candidate: TradeCandidate) -> TradeCandidateRow:
    return TradeCandidateRow(
        candidate_id=candidate.id,
        job_id=job_id,
        symbol=candidate.symbol,
        strategy=candidate.strategy,
        expiry=candidate.expiry,
        dte=candidate.dte,
        short_strike=candidate.short_leg.contract.strike,
        long_strike=candidate.long_leg.contract.strike,
        entry_mid=round(candidate.entry_mid, 4),
        max_loss=round(candidate.max_loss, 4),
        breakeven=round(candidate.breakeven, 4),
        est_pop=round(candidate.est_pop, 4),
        alignment=candidate.alignment,
        tier=candidate.tier,
        payload=candidate.to_dict(),
    )


class SqlAlchemyCandidateRepository:
    """Stores the selected candidates of a job; saving again replaces them."""

    def __init__(self, session_factory: SessionFactory = get_session):
        self._session = session_factory

    async def save_candidates(self, job_id: str, candidates: Sequence[TradeCandidate]) -> int:
        async with self._session() as session:
            await session.execute(delete(TradeCandidateRow).where(TradeCandidateRow.job_id == job_id))
            session.add_all([_candidate_to_row(job_id, c) for c in candidates])
            await session.commit()

        logger.info(f"Saved {len(candidates)} candidates for job {job_id}")
        return len(candidates)

    async def list_candidates(self, job_id: str) -> list[dict[str, Any]]:
        async with self._session() as session:
            result = await session.execute(
                select(TradeCandidateRow)
                .where(TradeCandidateRow.job_id == job_id)
                .order_by(TradeCandidateRow.alignment.desc().nulls_last(), TradeCandidateRow.id.asc())
            )
            return [row.payload for row in result.scalars().all()]
