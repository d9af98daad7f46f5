"""Celery tasks for background jobs.

Each worker process builds one container on first use and reuses it; the
dispatcher inside it is driven directly (no in-process queue workers).
"""

from __future__ import annotations

import asyncio
from typing import Any

from ipsagent.celery_app import celery_app
from ipsagent.container import Container, build_container
from ipsagent.core.logging import get_logger

from .base_task import ReliableTask


logger = get_logger("jobs.celery_tasks")

# Per-worker event loop for Celery prefork pool
_worker_loop: asyncio.AbstractEventLoop | None = None
_container: Container | None = None


def _get_worker_loop() -> asyncio.AbstractEventLoop:
    """Get or create a persistent event loop for the worker process."""
    global _worker_loop
    if _worker_loop is None or _worker_loop.is_closed():
        _worker_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_worker_loop)
    return _worker_loop


def _run_async(coro: Any) -> Any:
    """Run async coroutine in the worker's event loop.

    Uses a persistent event loop so pooled async connections stay valid
    across tasks.
    """
    loop = _get_worker_loop()
    return loop.run_until_complete(coro)


def get_container() -> Container:
    global _container
    if _container is None:
        _container = build_container()
    return _container


@celery_app.task(name="jobs.process_job", base=ReliableTask, bind=True)
def process_job_task(self, job_id: str) -> str:
    """Run one submitted job; a job already claimed elsewhere is skipped."""
    ran = _run_async(get_container().dispatcher.process_job(job_id))
    return f"Processed {job_id}" if ran else f"Skipped {job_id}: not pending"


@celery_app.task(name="jobs.process_next_pending", base=ReliableTask, bind=True)
def process_next_pending_task(self) -> str:
    job_id = _run_async(get_container().dispatcher.process_next_pending())
    return f"Processed {job_id}" if job_id else "No pending jobs"


@celery_app.task(name="jobs.recover_stuck", base=ReliableTask, bind=True)
def recover_stuck_task(self) -> str:
    job_id = _run_async(get_container().dispatcher.recover_stuck())
    if job_id:
        logger.info(f"Recovered stuck job {job_id}")
        return f"Recovered {job_id}"
    return "No stuck jobs"
