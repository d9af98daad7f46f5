"""Job record types."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class JobKind(str, Enum):
    AGENT_ANALYSIS = "agent_analysis"
    DASHBOARD_REFRESH = "dashboard_refresh"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


@dataclass(frozen=True)
class JobProgress:
    """Progress snapshot written by the runner before each step."""

    current_step: str = "queued"
    total_steps: int = 0
    completed_steps: int = 0
    symbols_processed: int = 0
    total_symbols: int = 0
    candidates_found: int = 0
    message: str = "Job queued, waiting for worker..."

    def advance(self, **changes: Any) -> JobProgress:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> JobProgress:
        if not data:
            return cls()
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True)
class JobFailure:
    """Failure payload recorded on a failed job."""

    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "details": self.details}


@dataclass
class Job:
    """A unit of background analysis work."""

    id: str
    kind: JobKind
    status: JobStatus
    params: dict[str, Any]
    created_at: datetime
    progress: JobProgress = field(default_factory=JobProgress)
    result: Optional[dict[str, Any]] = None
    error: Optional[JobFailure] = None
    user_id: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "status": self.status.value,
            "params": self.params,
            "progress": self.progress.to_dict(),
            "result": self.result,
            "error": self.error.to_dict() if self.error else None,
            "user_id": self.user_id,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }
