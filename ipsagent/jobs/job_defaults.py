"""Shared defaults for worker tasks.

Task Categories:
    1. ON-DEMAND
       - process_job: Run one submitted job (sent by the dispatcher on submit)

    2. PERIODIC (Celery beat)
       - process_next_pending: Poll for the oldest pending job
       - recover_stuck: Run jobs that have sat pending past the stuck window
"""

from __future__ import annotations

from ipsagent.core.config import settings


# =============================================================================
# SCHEDULE DEFINITIONS
# =============================================================================
# Format: job_name -> (interval_seconds, human_description)

DEFAULT_SCHEDULES: dict[str, tuple[float, str]] = {
    "process_next_pending": (
        settings.poll_interval_seconds,
        "Pending job poller - claims and runs the oldest pending job. "
        "Picks up jobs whose submit notification was lost.",
    ),
    "recover_stuck": (
        60.0,
        "Stuck job sweep - runs jobs pending for longer than the stuck window. "
        "Every minute.",
    ),
}


# =============================================================================
# QUEUE ROUTING
# =============================================================================

JOB_PRIORITIES: dict[str, dict[str, int | str]] = {
    "process_job": {"queue": "high", "priority": 9},
    "process_next_pending": {"queue": "default", "priority": 5},
    "recover_stuck": {"queue": "low", "priority": 3},
}


def get_job_priority(name: str) -> dict[str, int | str]:
    return JOB_PRIORITIES.get(name, {"queue": "default", "priority": 5})


def build_beat_schedule() -> dict[str, dict[str, object]]:
    """Celery beat entries for the periodic tasks."""
    return {
        job_name: {
            "task": f"jobs.{job_name}",
            "schedule": interval,
            "options": get_job_priority(job_name),
        }
        for job_name, (interval, _description) in DEFAULT_SCHEDULES.items()
    }
