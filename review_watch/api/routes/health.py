"""Health check endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from sqlalchemy import text

from ...models.base import get_engine
from ...utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "health"})

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Liveness plus a trivial database round trip."""

    database = "ok"
    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception as exc:  # pragma: no cover - depends on database availability
        logger.warning("Database health check failed", extra={"status": "degraded", "error": str(exc)})
        database = "error"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "service": "review_watch",
        "database": database,
    }
