"""Celery app for the job worker and beat.

The worker consumes ``process_job`` notifications sent on submit; beat drives
the pending-job poller and the stuck-job sweep. Job execution itself is
capped by the runner, so the Celery time limits only stop a wedged worker.
"""

from __future__ import annotations

from celery import Celery
from kombu import Queue

from ipsagent.core.config import Settings, settings
from ipsagent.jobs.job_defaults import JOB_PRIORITIES, build_beat_schedule


MAX_PRIORITY = 9


def _task_routes() -> dict[str, dict[str, int | str]]:
    return {f"jobs.{name}": dict(config) for name, config in JOB_PRIORITIES.items()}


def _queues() -> tuple[Queue, ...]:
    names = sorted({str(config["queue"]) for config in JOB_PRIORITIES.values()} | {"default"})
    return tuple(Queue(name, routing_key=name, max_priority=MAX_PRIORITY) for name in names)


def create_celery_app(config: Settings) -> Celery:
    broker_url = config.celery_broker_url or config.valkey_url
    app = Celery(
        "ipsagent",
        broker=broker_url,
        backend=config.celery_result_backend or broker_url,
    )
    app.conf.update(
        timezone=config.scheduler_timezone,
        enable_utc=True,
        broker_connection_retry_on_startup=True,
        worker_prefetch_multiplier=1,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        task_track_started=True,
        task_soft_time_limit=config.job_timeout_seconds + 20,
        task_time_limit=config.job_timeout_seconds + 40,
        worker_max_tasks_per_child=config.celery_max_tasks_per_child,
        task_default_queue="default",
        task_default_priority=5,
        task_queue_max_priority=MAX_PRIORITY,
        task_routes=_task_routes(),
        task_queues=_queues(),
        # A job is acked late; redeliver only after it could no longer be running
        broker_transport_options={
            "visibility_timeout": config.job_timeout_seconds * 4,
            "priority_steps": list(range(MAX_PRIORITY + 1)),
        },
        beat_schedule=build_beat_schedule(),
    )
    app.autodiscover_tasks(["ipsagent.jobs"])
    return app


celery_app = create_celery_app(settings)
