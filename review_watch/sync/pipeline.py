"""Per-location and per-account orchestration of the review sync."""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from ..exceptions import (
    FetchError,
    NotConnectedError,
    ReauthRequired,
    ReviewWatchError,
    StorageError,
    TransientAuthError,
)
from ..models.records import Connection, Job, Location
from ..models.store import ReviewStore
from ..monitoring.metrics import observe_sync_duration, record_api_statuses, record_reconciled
from ..utils.config import SyncConfig, build_sync_config
from ..utils.logging import log_sync_attempt, setup_logger
from .alerts import AlertEngine
from .errors import build_error_report
from .fetcher import PaginatedFetcher
from .jobs import JobBatchResult, JobQueueProcessor
from .notifications import NotificationChannel, NotificationDispatcher
from .reconcile import ReconciliationEngine
from .status import StatusRecorder
from .tokens import TokenManager

logger = setup_logger(__name__, context={"component": "pipeline"})


class Deadline:
    """Wall-clock budget checked between units of work."""

    def __init__(self, seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(self._expires_at - self._clock(), 0.0)

    def expired(self) -> bool:
        return self._clock() >= self._expires_at


@dataclass(slots=True)
class LocationOutcome:
    location_id: int
    status: str
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    changed: int = 0
    alerts: int = 0
    notified: int = 0
    error: str | None = None
    reauth_required: bool = False


@dataclass(slots=True)
class AccountOutcome:
    account_id: str
    locations: list[LocationOutcome] = field(default_factory=list)
    skipped_recent: int = 0
    aborted: bool = False

    @property
    def errors(self) -> int:
        return sum(1 for item in self.locations if item.error is not None)

    def total(self, name: str) -> int:
        return sum(getattr(item, name) for item in self.locations)


@dataclass(slots=True)
class SyncReport:
    request_id: str
    dry_run: bool = False
    aborted: bool = False
    jobs: JobBatchResult = field(default_factory=JobBatchResult)
    accounts: list[AccountOutcome] = field(default_factory=list)
    account_errors: dict[str, str] = field(default_factory=dict)

    def stats(self) -> dict[str, int]:
        locations = [item for account in self.accounts for item in account.locations]
        return {
            "accounts": len(self.accounts),
            "locations": len(locations),
            "inserted": sum(item.inserted for item in locations),
            "updated": sum(item.updated for item in locations),
            "skipped": sum(item.skipped for item in locations),
            "alerts": sum(item.alerts for item in locations),
            "notified": sum(item.notified for item in locations),
            "errors": sum(1 for item in locations if item.error is not None) + len(self.account_errors),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "requestId": self.request_id,
            "aborted": self.aborted,
            "dryRun": self.dry_run,
            "jobs": self.jobs.as_dict(),
            "stats": self.stats(),
        }


class SyncPipeline:
    """Wires the sync components together for one process invocation."""

    def __init__(
        self,
        config: SyncConfig,
        store: ReviewStore,
        client: httpx.AsyncClient,
        *,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.tokens = TokenManager(config, store, client, clock=self._clock, sleep=sleep)
        self.fetcher = PaginatedFetcher(client, config.fetch, sleep=sleep)
        self.reconciler = ReconciliationEngine(store, clock=self._clock)
        self.alerts = AlertEngine(store, config.alerts, clock=self._clock)
        self.dispatcher = NotificationDispatcher(
            store,
            NotificationChannel(
                client,
                api_url=config.notification_api_url,
                api_key=config.notification_api_key,
                sender=config.notification_sender,
            ),
            batch_limit=config.notifications.batch_limit,
            clock=self._clock,
        )
        self.recorder = StatusRecorder(
            store,
            reauth_signal_ttl=timedelta(hours=config.reauth_signal_ttl_hours),
            clock=self._clock,
        )
        self._job_deadline: Deadline | None = None
        self.jobs = JobQueueProcessor(
            store,
            self.run_job,
            rate_limit_delay=timedelta(seconds=config.job_rate_limit_delay_seconds),
            clock=self._clock,
        )

    def new_deadline(self, seconds: float | None = None) -> Deadline:
        return Deadline(seconds if seconds is not None else self.config.time_budget_seconds)

    def _reviews_url(self, location: Location) -> str:
        return f"{self.config.reviews_api_base_url}/{location.reviews_path}"

    def _recently_synced(self, location: Location, now: datetime) -> bool:
        if location.last_synced_at is None or self.config.min_resync_seconds <= 0:
            return False
        return now - location.last_synced_at < timedelta(seconds=self.config.min_resync_seconds)

    async def sync_location(
        self,
        account_id: str,
        location: Location,
        token: str,
        *,
        dry_run: bool = False,
        request_id: str | None = None,
    ) -> LocationOutcome:
        """Fetch, reconcile, alert and notify for one location.

        Failures are recorded on the location's run and status and returned,
        never raised, so sibling locations keep going.
        """

        started = time.perf_counter()
        outcome = LocationOutcome(location_id=location.id, status="running")
        run_id = None
        if not dry_run:
            run_id = self.recorder.start_run(account_id, location.id)
            self.recorder.record_import_status(account_id, location.id, "running")
        meta: dict[str, Any] = {"request_id": request_id, "dry_run": dry_run}

        try:
            fetched = await self.fetcher.fetch_all(self._reviews_url(location), token)
            record_api_statuses(fetched.http_statuses)
            meta.update(
                pages_fetched=fetched.pages_fetched,
                pages_exhausted=fetched.pages_exhausted,
                http_statuses={str(code): count for code, count in fetched.http_statuses.items()},
            )

            if fetched.not_found:
                outcome.status = "not_found"
                outcome.error = "location_not_found"
                if not dry_run:
                    self.recorder.finish_run(run_id, "error", error="location_not_found", meta=meta)
                    self.recorder.record_import_status(
                        account_id, location.id, "not_found", last_error="location_not_found", errors_count=1
                    )
                return outcome

            result = self.reconciler.reconcile(account_id, location, fetched.records, dry_run=dry_run)
            result.skipped += fetched.rejected
            outcome.inserted = result.inserted
            outcome.updated = result.updated
            outcome.skipped = result.skipped
            outcome.changed = len(result.changed)
            meta.update(result.as_stats(), prior_load_failed=result.prior_load_failed)
            record_reconciled(result.inserted, result.updated, result.skipped)

            if not dry_run:
                await self._alert_and_notify(account_id, location, result.changed, outcome, meta)

            outcome.status = "done"
            meta.update(alerts=outcome.alerts, notified=outcome.notified)
            if not dry_run:
                self.recorder.finish_run(run_id, "done", meta=meta)
                self.recorder.record_import_status(
                    account_id,
                    location.id,
                    "done",
                    cursor=fetched.last_page_token,
                    pages_exhausted=fetched.pages_exhausted,
                    stats=result.as_stats(),
                )
            return outcome
        except Exception as exc:
            if isinstance(exc, FetchError):
                meta["http_statuses"] = {str(code): count for code, count in exc.http_statuses.items()}
                record_api_statuses(exc.http_statuses)
                if exc.is_permission_denied:
                    outcome.reauth_required = True
                    exc = ReauthRequired("token_revoked", f"Review API denied access ({exc.status})")
            if not isinstance(exc, ReviewWatchError):
                logger.exception(
                    "Unexpected failure during location sync",
                    extra={"account_id": account_id, "location_id": location.id},
                )
            report = build_error_report(
                exc, account_id=account_id, location_id=location.id, request_id=request_id
            )
            outcome.status = "error"
            outcome.error = report.summary()
            meta["failure"] = report.to_dict()
            if not dry_run:
                self.recorder.finish_run(run_id, "error", error=outcome.error, meta=meta)
                self.recorder.record_import_status(
                    account_id, location.id, "error", last_error=outcome.error, errors_count=1
                )
                if outcome.reauth_required:
                    self.recorder.record_reauth_signal(account_id, "token_revoked", str(exc))
            return outcome
        finally:
            elapsed = time.perf_counter() - started
            observe_sync_duration(elapsed)
            log_sync_attempt(
                logger,
                account_id,
                str(location.id),
                int(elapsed * 1000),
                "success" if outcome.status == "done" else outcome.status,
                request_id=request_id,
                inserted=outcome.inserted,
                updated=outcome.updated,
                skipped=outcome.skipped,
                alerts=outcome.alerts,
            )

    async def _alert_and_notify(
        self,
        account_id: str,
        location: Location,
        changed: list[Any],
        outcome: LocationOutcome,
        meta: dict[str, Any],
    ) -> None:
        try:
            alert_outcome = self.alerts.evaluate(account_id, location, changed)
            outcome.alerts = len(alert_outcome.new_alerts)
            meta["backfill_ran"] = alert_outcome.backfill_ran
        except StorageError as exc:
            meta["alerts_error"] = str(exc)
            logger.error(
                "Alert evaluation failed",
                extra={"account_id": account_id, "location_id": location.id, "error": str(exc)},
            )

        if not self.config.notifications.enabled:
            return
        try:
            outcome.notified = await self.dispatcher.flush_pending(
                account_id, location.id, location_title=location.title
            )
        except StorageError as exc:
            meta["notifications_error"] = str(exc)
            logger.error(
                "Notification flush failed",
                extra={"account_id": account_id, "location_id": location.id, "error": str(exc)},
            )

    async def sync_account(
        self,
        account_id: str,
        *,
        location_id: int | None = None,
        deadline: Deadline | None = None,
        dry_run: bool = False,
        force: bool = False,
        request_id: str | None = None,
    ) -> AccountOutcome:
        """Sync every (or one) location of an account, sequentially.

        Raises:
            NotConnectedError: the account has no connection.
            ReauthRequired: credentials are permanently invalid; the signal is recorded.
            TransientAuthError: the token could not be refreshed this time.
        """

        deadline = deadline or self.new_deadline()
        outcome = AccountOutcome(account_id=account_id)

        connection = self.store.first(
            Connection, Connection.account_id == account_id, Connection.provider == "google"
        )
        if connection is None:
            raise NotConnectedError(account_id)

        criteria = [Location.account_id == account_id]
        if location_id is not None:
            criteria.append(Location.id == location_id)
        locations = self.store.select(Location, *criteria, order_by=Location.id)
        if not locations:
            return outcome

        try:
            token = await self.tokens.ensure_access_token(connection)
        except ReauthRequired as exc:
            self._record_account_failure(account_id, exc, request_id, dry_run)
            if not dry_run:
                self.recorder.record_reauth_signal(account_id, exc.reason, str(exc))
            raise
        except TransientAuthError as exc:
            self._record_account_failure(account_id, exc, request_id, dry_run)
            raise

        for location in locations:
            if deadline.expired():
                outcome.aborted = True
                break
            if not force and self._recently_synced(location, self._clock()):
                outcome.skipped_recent += 1
                continue
            location_outcome = await self.sync_location(
                account_id, location, token, dry_run=dry_run, request_id=request_id
            )
            outcome.locations.append(location_outcome)
            if location_outcome.reauth_required:
                break

        if outcome.locations and not dry_run:
            try:
                self.store.update(
                    Connection, {"last_synced_at": self._clock()}, Connection.id == connection.id
                )
            except StorageError as exc:
                logger.error(
                    "Could not advance connection last_synced_at",
                    extra={"account_id": account_id, "error": str(exc)},
                )
        return outcome

    def _record_account_failure(
        self,
        account_id: str,
        exc: Exception,
        request_id: str | None,
        dry_run: bool,
    ) -> None:
        report = build_error_report(exc, account_id=account_id, request_id=request_id)
        logger.warning(
            "Account sync halted",
            extra={"account_id": account_id, "status": report.classification, "request_id": request_id},
        )
        if dry_run:
            return
        run_id = self.recorder.start_run(account_id, None, run_type="token")
        self.recorder.finish_run(run_id, "error", error=report.summary(), meta={"failure": report.to_dict()})

    async def run_job(self, job: Job, deadline: Deadline | None = None) -> bool:
        """Queue runner: True when the account pass finished within budget."""

        payload = job.payload or {}
        location_id = payload.get("location_id")
        outcome = await self.sync_account(
            job.account_id,
            location_id=int(location_id) if location_id is not None else None,
            deadline=deadline or self._job_deadline,
            force=True,
            request_id=f"job-{job.id}",
        )
        if outcome.locations and outcome.errors == len(outcome.locations):
            raise ReviewWatchError(f"All {outcome.errors} location syncs failed")
        return not outcome.aborted

    async def process_jobs(self, max_jobs: int | None = None, deadline: Deadline | None = None) -> JobBatchResult:
        deadline = deadline or self.new_deadline()
        self._job_deadline = deadline
        try:
            return await self.jobs.process_batch(max_jobs or self.config.job_queue_max, deadline)
        finally:
            self._job_deadline = None

    def connected_accounts(self) -> list[str]:
        connections = self.store.select(
            Connection, Connection.provider == "google", order_by=Connection.account_id
        )
        return [connection.account_id for connection in connections]

    async def run(
        self,
        *,
        account_id: str | None = None,
        location_id: int | None = None,
        dry_run: bool = False,
        force: bool = False,
        process_jobs: bool = True,
        time_budget_seconds: float | None = None,
        request_id: str | None = None,
    ) -> SyncReport:
        """One bounded invocation: drain the queue, then sync the targeted accounts.

        Any other account-level failure is recorded in ``account_errors`` and
        the remaining accounts still run.

        Raises:
            NotConnectedError: an explicitly targeted account is not connected.
        """

        report = SyncReport(request_id=request_id or str(uuid.uuid4()), dry_run=dry_run)
        deadline = self.new_deadline(time_budget_seconds)

        if process_jobs and not dry_run:
            report.jobs = await self.process_jobs(deadline=deadline)
            report.aborted = report.jobs.aborted

        account_ids = [account_id] if account_id else self.connected_accounts()
        for target in account_ids:
            if deadline.expired():
                report.aborted = True
                break
            try:
                outcome = await self.sync_account(
                    target,
                    location_id=location_id,
                    deadline=deadline,
                    dry_run=dry_run,
                    force=force,
                    request_id=report.request_id,
                )
            except NotConnectedError:
                if account_id:
                    raise
                continue
            except ReviewWatchError as exc:
                error_report = build_error_report(exc, account_id=target, request_id=report.request_id)
                report.account_errors[target] = error_report.summary()
                logger.error(
                    "Account sync failed",
                    extra={
                        "account_id": target,
                        "request_id": report.request_id,
                        "status": error_report.classification,
                    },
                )
                continue
            report.accounts.append(outcome)
            if outcome.aborted:
                report.aborted = True
                break
        return report


def build_store(config: SyncConfig) -> ReviewStore:
    """Storage client configured with the storage retry policy."""

    return ReviewStore(retry_policy=config.storage.retry, chunk_size=config.storage.chunk_size)


async def run_once(config: SyncConfig | None = None, **options: Any) -> SyncReport:
    """Run one bounded invocation with a process-owned HTTP client."""

    config = config or build_sync_config()
    async with httpx.AsyncClient(timeout=config.http_timeout_seconds) as client:
        pipeline = SyncPipeline(config, build_store(config), client)
        return await pipeline.run(**options)


async def process_queue_once(
    config: SyncConfig | None = None,
    *,
    max_jobs: int | None = None,
) -> JobBatchResult:
    """Drain up to ``max_jobs`` queued jobs within the configured time budget."""

    config = config or build_sync_config()
    async with httpx.AsyncClient(timeout=config.http_timeout_seconds) as client:
        pipeline = SyncPipeline(config, build_store(config), client)
        return await pipeline.process_jobs(max_jobs)
