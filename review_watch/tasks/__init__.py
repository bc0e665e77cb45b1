"""Celery task package exposing the configured app and sync tasks."""

from __future__ import annotations

from .celery_app import celery_app as app
from .sync import process_job_queue_task, sync_account_task

__all__ = [
    "app",
    "process_job_queue_task",
    "sync_account_task",
]
