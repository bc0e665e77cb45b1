"""Shared FastAPI dependencies."""

from __future__ import annotations

import secrets
from collections.abc import AsyncIterator

import httpx
from fastapi import Depends, Header, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from ..models.store import ReviewStore
from ..sync.pipeline import SyncPipeline
from ..utils.config import SyncConfig, build_sync_config, get_settings

cron_secret_header = APIKeyHeader(name="X-Cron-Secret", auto_error=False)


def get_request_id(request: Request) -> str:
    """Return the correlation id assigned by the request-id middleware."""

    return getattr(request.state, "request_id", None) or "-"


async def require_cron_secret(
    x_cron_secret: str | None = Security(cron_secret_header),
    x_cron_key: str | None = Header(default=None),
    authorization: str | None = Header(default=None),
) -> None:
    """Validate the shared cron secret from a header or a Bearer token."""

    expected = get_settings().cron_secret or ""
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Cron secret is not configured.",
        )

    provided = x_cron_secret or x_cron_key
    if provided is None and authorization and authorization.lower().startswith("bearer "):
        provided = authorization[7:]

    if not provided:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing cron secret.",
        )

    if not secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid cron secret.",
        )


def get_sync_config() -> SyncConfig:
    return build_sync_config()


def get_store(config: SyncConfig = Depends(get_sync_config)) -> ReviewStore:
    return ReviewStore(retry_policy=config.storage.retry, chunk_size=config.storage.chunk_size)


async def get_http_client(
    config: SyncConfig = Depends(get_sync_config),
) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=config.http_timeout_seconds) as client:
        yield client


def get_pipeline(
    config: SyncConfig = Depends(get_sync_config),
    store: ReviewStore = Depends(get_store),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> SyncPipeline:
    return SyncPipeline(config, store, client)
