"""Background analysis jobs: records, store, runner and dispatch."""

from .models import Job, JobFailure, JobKind, JobProgress, JobStatus
from .store import InMemoryJobStore, JobStore


__all__ = [
    "InMemoryJobStore",
    "Job",
    "JobFailure",
    "JobKind",
    "JobProgress",
    "JobStatus",
    "JobStore",
]
