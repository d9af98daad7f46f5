"""Trade candidate persistence contract and in-memory repository."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from typing import Any, Protocol

from ipsagent.analysis.candidates import TradeCandidate


class CandidateRepository(Protocol):
    async def save_candidates(self, job_id: str, candidates: Sequence[TradeCandidate]) -> int: ...

    async def list_candidates(self, job_id: str) -> list[dict[str, Any]]: ...


class InMemoryCandidateRepository:
    """Keeps candidate dicts per job; saving again for a job replaces them."""

    def __init__(self) -> None:
        self._by_job: dict[str, list[dict[str, Any]]] = {}
        self._lock = threading.Lock()

    async def save_candidates(self, job_id: str, candidates: Sequence[TradeCandidate]) -> int:
        rows = [c.to_dict() for c in candidates]
        with self._lock:
            self._by_job[job_id] = rows
        return len(rows)

    async def list_candidates(self, job_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._by_job.get(job_id, []))
