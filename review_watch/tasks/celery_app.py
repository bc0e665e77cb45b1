"""Celery app for scheduled review syncs.

The beat entry drains the job queue every ``schedule_interval_seconds``.
Each run is bounded by ``time_budget_seconds``; the hard limit only exists
to reap a worker wedged on a stuck network call.
"""

from __future__ import annotations

from celery import Celery

from ..utils.config import GlobalSettings, get_settings

SYNC_QUEUE = "review-sync"
DEFAULT_BROKER_URL = "redis://localhost:6379/0"


def create_celery_app(settings: GlobalSettings) -> Celery:
    broker_url = settings.redis_url or DEFAULT_BROKER_URL
    app = Celery("review_watch", broker=broker_url, backend=broker_url)

    budget = settings.time_budget_seconds
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        result_expires=settings.schedule_interval_seconds * 12,
        timezone="UTC",
        enable_utc=True,
        worker_hijack_root_logger=False,
        worker_prefetch_multiplier=1,
        task_acks_late=False,
        task_default_queue=SYNC_QUEUE,
        task_soft_time_limit=budget * 4,
        task_time_limit=budget * 5,
        beat_schedule={
            "process-review-sync-jobs": {
                "task": "review_watch.process_job_queue",
                "schedule": float(settings.schedule_interval_seconds),
                "options": {"expires": float(settings.schedule_interval_seconds)},
            },
        },
    )
    return app


celery_app = create_celery_app(get_settings())
celery_app.autodiscover_tasks(["review_watch.tasks"], related_name="sync")
