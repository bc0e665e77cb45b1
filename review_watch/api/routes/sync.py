"""Sync trigger, job enqueue and status endpoints."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse

from ...models.store import ReviewStore
from ...schemas.api import EnqueueRequest, SyncRequest
from ...sync.jobs import enqueue_sync_job
from ...sync.pipeline import SyncPipeline
from ...sync.status import StatusRecorder
from ...utils.config import SyncConfig
from ...utils.logging import setup_logger
from ..dependencies import (
    get_pipeline,
    get_request_id,
    get_store,
    get_sync_config,
    require_cron_secret,
)

logger = setup_logger(__name__, context={"component": "sync_api"})
router = APIRouter(dependencies=[Depends(require_cron_secret)])


@router.get("/sync")
async def sync_healthcheck(request_id: str = Depends(get_request_id)) -> dict[str, Any]:
    """Healthcheck for schedulers; never starts a sync."""

    return {
        "ok": True,
        "requestId": request_id,
        "mode": "healthcheck",
        "message": "Use POST to run the sync.",
    }


@router.post("/sync")
async def run_sync(
    payload: SyncRequest | None = Body(default=None),
    pipeline: SyncPipeline = Depends(get_pipeline),
    request_id: str = Depends(get_request_id),
) -> dict[str, Any]:
    """Drain the job queue, then sync the targeted (or all connected) accounts."""

    payload = payload or SyncRequest()
    logger.info(
        "Sync triggered",
        extra={"request_id": request_id, "account_id": payload.account_id or "-", "status": "started"},
    )
    report = await pipeline.run(
        account_id=payload.account_id,
        location_id=payload.location_id,
        dry_run=payload.dry_run,
        force=payload.force,
        process_jobs=payload.process_jobs,
        time_budget_seconds=payload.time_budget_seconds,
        request_id=request_id,
    )
    body = report.to_dict()
    if report.account_errors:
        body["accountErrors"] = report.account_errors
    return body


@router.post("/jobs", status_code=status.HTTP_202_ACCEPTED)
async def enqueue_job(
    payload: EnqueueRequest,
    store: ReviewStore = Depends(get_store),
    request_id: str = Depends(get_request_id),
) -> JSONResponse:
    """Queue a sync job for an account, reusing an active one if present."""

    job, created = enqueue_sync_job(store, payload.account_id, location_id=payload.location_id)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED if created else status.HTTP_200_OK,
        content={
            "ok": True,
            "requestId": request_id,
            "created": created,
            "job": {"id": job.id, "accountId": job.account_id, "status": job.status},
        },
    )


@router.get("/status/{account_id}")
async def account_status(
    account_id: str,
    store: ReviewStore = Depends(get_store),
    config: SyncConfig = Depends(get_sync_config),
    request_id: str = Depends(get_request_id),
) -> dict[str, Any]:
    """Connection snapshot and the latest import status per location."""

    recorder = StatusRecorder(store, reauth_signal_ttl=timedelta(hours=config.reauth_signal_ttl_hours))
    connection = recorder.connection_status(account_id)
    imports = [
        {
            "locationId": row.location_id,
            "status": row.status,
            "aborted": row.aborted,
            "pagesExhausted": row.pages_exhausted,
            "stats": row.stats or {},
            "errorsCount": row.errors_count,
            "lastError": row.last_error,
            "updatedAt": row.updated_at.isoformat(),
        }
        for row in recorder.import_statuses(account_id)
    ]
    return {
        "ok": True,
        "requestId": request_id,
        "connection": connection.to_dict(),
        "imports": imports,
    }
