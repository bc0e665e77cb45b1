"""Request and response envelopes for the HTTP trigger surface."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class SyncRequest(BaseModel):
    """Body of ``POST /api/v1/sync``."""

    model_config = ConfigDict(extra="forbid")

    account_id: str | None = Field(None, description="Restrict the run to one account")
    location_id: int | None = Field(None, description="Restrict the run to one location")
    force: bool = Field(False, description="Ignore the minimum re-sync interval")
    dry_run: bool = Field(False, description="Fetch and classify without writing")
    process_jobs: bool = Field(True, description="Drain the job queue before syncing")
    time_budget_seconds: float | None = Field(
        None, gt=0, le=300, description="Wall-clock budget override for this run"
    )


class EnqueueRequest(BaseModel):
    """Body of ``POST /api/v1/jobs``."""

    model_config = ConfigDict(extra="forbid")

    account_id: str = Field(..., min_length=1)
    location_id: int | None = None


class JobStats(BaseModel):
    processed: int = 0
    failed: int = 0
    skipped: int = 0


class SyncStats(BaseModel):
    accounts: int = 0
    locations: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    alerts: int = 0
    notified: int = 0
    errors: int = 0


class SyncResponse(BaseModel):
    """Successful trigger response."""

    ok: Literal[True] = True
    request_id: str = Field(..., serialization_alias="requestId")
    aborted: bool = False
    dry_run: bool = Field(False, serialization_alias="dryRun")
    jobs: JobStats = Field(default_factory=JobStats)
    stats: SyncStats = Field(default_factory=SyncStats)


class ErrorBody(BaseModel):
    code: Literal["UNAUTHORIZED", "FORBIDDEN", "NOT_FOUND", "BAD_REQUEST", "INTERNAL"]
    message: str
    details: dict[str, Any] | None = None


class ErrorEnvelope(BaseModel):
    """Structured error returned by every failing endpoint."""

    ok: Literal[False] = False
    error: ErrorBody
    request_id: str = Field(..., serialization_alias="requestId")
