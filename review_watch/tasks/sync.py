"""Scheduled and on-demand Celery tasks wrapping the async sync pipeline.

Tasks never auto-retry: failed jobs stay ``failed`` for manual re-drive and
every pipeline step is already retried individually.
"""

from __future__ import annotations

import asyncio
from typing import Any

from ..exceptions import ReviewWatchError
from ..sync.pipeline import process_queue_once, run_once
from ..utils.config import build_sync_config, ensure_runtime_configuration, get_settings
from ..utils.logging import setup_logger
from .celery_app import celery_app

logger = setup_logger(__name__, context={"component": "celery"})


@celery_app.task(name="review_watch.process_job_queue")
def process_job_queue_task(max_jobs: int | None = None) -> dict[str, Any]:
    """Claim and run queued sync jobs."""

    ensure_runtime_configuration(get_settings())
    result = asyncio.run(process_queue_once(build_sync_config(), max_jobs=max_jobs))
    summary = {**result.as_dict(), "aborted": result.aborted}
    logger.info("Job queue processed", extra={"status": "done"})
    return summary


@celery_app.task(name="review_watch.sync_account")
def sync_account_task(
    account_id: str | None = None,
    location_id: int | None = None,
    *,
    dry_run: bool = False,
    force: bool = False,
) -> dict[str, Any]:
    """Sync one account (or every connected account) outside the job queue."""

    ensure_runtime_configuration(get_settings())
    try:
        report = asyncio.run(
            run_once(
                build_sync_config(),
                account_id=account_id,
                location_id=location_id,
                dry_run=dry_run,
                force=force,
                process_jobs=False,
            )
        )
    except ReviewWatchError as exc:
        logger.error(
            "Sync task failed",
            extra={"account_id": account_id or "-", "status": "error", "error": str(exc)},
        )
        raise
    return report.to_dict()
