"""Job queue processing with a one-running-sync-per-account guard."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from ..exceptions import StorageError
from ..models.records import Job
from ..models.store import ReviewStore
from ..monitoring.metrics import record_job
from ..utils.logging import setup_logger
from .errors import build_error_report

SYNC_JOB_TYPE = "google_gbp_sync"
RATE_LIMITED = "rate_limited"
ACTIVE_STATUSES = ("queued", "running")

logger = setup_logger(__name__, context={"component": "jobs"})


class SupportsDeadline(Protocol):
    def expired(self) -> bool: ...


@dataclass(slots=True)
class JobBatchResult:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    aborted: bool = False

    def as_dict(self) -> dict[str, int]:
        return {"processed": self.processed, "failed": self.failed, "skipped": self.skipped}


JobRunner = Callable[[Job], Awaitable[bool]]


def enqueue_sync_job(
    store: ReviewStore,
    account_id: str,
    *,
    location_id: int | None = None,
    now: datetime | None = None,
) -> tuple[Job, bool]:
    """Queue a sync job unless the account already has one queued or running.

    Returns ``(job, created)``. The insert is single-shot.
    """

    existing = store.first(
        Job,
        Job.account_id == account_id,
        Job.type == SYNC_JOB_TYPE,
        Job.status.in_(ACTIVE_STATUSES),
        order_by=Job.id,
    )
    if existing is not None:
        return existing, False

    now = now or datetime.now(timezone.utc)
    payload: dict[str, Any] = {}
    if location_id is not None:
        payload["location_id"] = location_id
    job = Job(
        account_id=account_id,
        type=SYNC_JOB_TYPE,
        payload=payload,
        status="queued",
        attempts=0,
        run_at=now,
        created_at=now,
        updated_at=now,
    )
    return store.insert(job, retry=False), True


class JobQueueProcessor:
    """Claims ready jobs and runs them, deferring accounts that are already busy."""

    def __init__(
        self,
        store: ReviewStore,
        run_job: JobRunner,
        *,
        rate_limit_delay: timedelta = timedelta(seconds=60),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._run_job = run_job
        self._delay = rate_limit_delay
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _patch(self, job: Job, **values: Any) -> None:
        values.setdefault("updated_at", self._clock())
        try:
            self._store.update(Job, values, Job.id == job.id)
        except StorageError as exc:
            logger.error(
                "Could not update job state",
                extra={"account_id": job.account_id, "job_id": job.id, "error": str(exc)},
            )

    def defer(self, job: Job) -> None:
        """Return a job to the queue with a pushed-back run time."""

        now = self._clock()
        self._patch(
            job,
            status="queued",
            attempts=(job.attempts or 0) + 1,
            last_error=RATE_LIMITED,
            run_at=now + self._delay,
            updated_at=now,
        )
        record_job("deferred")

    def release(self, job: Job) -> None:
        """Put an unstarted or interrupted job back as-is for the next run."""

        self._patch(job, status="queued", started_at=None)
        record_job("released")

    async def process_batch(
        self,
        max_jobs: int,
        deadline: SupportsDeadline | None = None,
    ) -> JobBatchResult:
        """Claim up to ``max_jobs`` jobs and run the eligible ones sequentially."""

        result = JobBatchResult()
        claimed = self._store.claim_jobs(max_jobs, self._clock())
        if not claimed:
            return result

        claimed_ids = [job.id for job in claimed]
        running = self._store.select(
            Job,
            Job.status == "running",
            Job.id.not_in(claimed_ids),
        )
        busy_accounts = {job.account_id for job in running}
        in_batch: set[str] = set()

        for job in claimed:
            if deadline is not None and deadline.expired():
                result.aborted = True
                self.release(job)
                continue

            if job.account_id in busy_accounts or job.account_id in in_batch:
                self.defer(job)
                result.skipped += 1
                continue
            in_batch.add(job.account_id)

            attempts = (job.attempts or 0) + 1
            if job.type != SYNC_JOB_TYPE:
                self._patch(
                    job,
                    status="failed",
                    attempts=attempts,
                    last_error=f"unsupported_job_type: {job.type}",
                )
                record_job("failed")
                result.failed += 1
                continue

            try:
                completed = await self._run_job(job)
            except Exception as exc:
                report = build_error_report(exc, account_id=job.account_id)
                logger.error(
                    "Sync job failed",
                    extra={"account_id": job.account_id, "status": "failed", "job_id": job.id},
                )
                self._patch(job, status="failed", attempts=attempts, last_error=report.summary())
                record_job("failed")
                result.failed += 1
                continue

            if not completed:
                result.aborted = True
                self.release(job)
                continue

            self._patch(job, status="done", attempts=attempts, last_error=None)
            record_job("done")
            result.processed += 1

        return result
