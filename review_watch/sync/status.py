"""Sync run audit records, import status snapshots and connection status."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from ..exceptions import StorageError
from ..models.records import Connection, ImportStatus, StateEntry, SyncRun
from ..models.store import ReviewStore
from ..monitoring.metrics import record_sync_run
from ..utils.logging import setup_logger

REAUTH_STATE_KEY = "reviews_last_error"

CONNECTION_REASONS = frozenset(
    {"ok", "token_revoked", "missing_refresh_token", "expired", "unknown", "no_connection"}
)

logger = setup_logger(__name__, context={"component": "status"})


@dataclass(slots=True)
class ConnectionStatus:
    status: str
    reason: str
    last_error: str | None
    last_checked_at: datetime

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["last_checked_at"] = self.last_checked_at.isoformat()
        return payload


def reason_from_message(message: str | None) -> str:
    """Best-effort reauth reason for signals stored without one."""

    normalized = (message or "").lower()
    if "missing" in normalized and "refresh" in normalized:
        return "missing_refresh_token"
    if "invalid_grant" in normalized or "revoked" in normalized or "expired" in normalized:
        return "token_revoked"
    return "unknown"


class StatusRecorder:
    """Writes run and status records.

    Storage failures here are logged and swallowed: status bookkeeping must
    never turn a successful location pass into a failed one.
    """

    def __init__(
        self,
        store: ReviewStore,
        *,
        reauth_signal_ttl: timedelta = timedelta(hours=6),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._reauth_ttl = reauth_signal_ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def start_run(self, account_id: str, location_id: int | None, *, run_type: str = "reviews") -> str | None:
        """Create a ``running`` SyncRun and return its id (None if it could not be stored)."""

        run = SyncRun(
            account_id=account_id,
            location_id=location_id,
            run_type=run_type,
            status="running",
            started_at=self._clock(),
        )
        try:
            return self._store.insert(run, retry=True).id
        except StorageError as exc:
            logger.error(
                "Could not create sync run",
                extra={"account_id": account_id, "location_id": location_id, "error": str(exc)},
            )
            return None

    def finish_run(
        self,
        run_id: str | None,
        status: str,
        *,
        error: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> bool:
        """Finalize a run once; later calls for the same run are no-ops."""

        record_sync_run(status)
        if run_id is None:
            return False
        try:
            updated = self._store.update(
                SyncRun,
                {"status": status, "finished_at": self._clock(), "error": error, "meta": meta or {}},
                SyncRun.id == run_id,
                SyncRun.status == "running",
            )
        except StorageError as exc:
            logger.error("Could not finalize sync run", extra={"run_id": run_id, "error": str(exc)})
            return False
        return updated == 1

    def record_import_status(
        self,
        account_id: str,
        location_id: int,
        status: str,
        *,
        aborted: bool = False,
        cursor: str | None = None,
        pages_exhausted: bool = False,
        stats: dict[str, Any] | None = None,
        errors_count: int = 0,
        last_error: str | None = None,
    ) -> None:
        row = {
            "account_id": account_id,
            "location_id": location_id,
            "status": status,
            "aborted": aborted,
            "cursor": cursor,
            "pages_exhausted": pages_exhausted,
            "stats": stats or {},
            "errors_count": errors_count,
            "last_error": last_error,
            "updated_at": self._clock(),
        }
        try:
            self._store.upsert(ImportStatus, [row], ("account_id", "location_id"))
        except StorageError as exc:
            logger.error(
                "Could not record import status",
                extra={"account_id": account_id, "location_id": location_id, "error": str(exc)},
            )

    def record_reauth_signal(self, account_id: str, reason: str, message: str | None = None) -> None:
        """Persist the durable ``reauth_required`` signal shown to the user."""

        row = {
            "account_id": account_id,
            "key": REAUTH_STATE_KEY,
            "value": {"code": "reauth_required", "reason": reason, "message": message or reason},
            "updated_at": self._clock(),
        }
        try:
            self._store.upsert(StateEntry, [row], ("account_id", "key"))
        except StorageError as exc:
            logger.error(
                "Could not record reauth signal",
                extra={"account_id": account_id, "error": str(exc)},
            )

    def connection_status(self, account_id: str) -> ConnectionStatus:
        """Derive the UI-facing connection state for ``account_id``."""

        now = self._clock()
        connection = self._store.first(
            Connection, Connection.account_id == account_id, Connection.provider == "google"
        )
        if connection is None:
            return ConnectionStatus("disconnected", "no_connection", None, now)

        signal = self._store.first(
            StateEntry, StateEntry.account_id == account_id, StateEntry.key == REAUTH_STATE_KEY
        )
        value = signal.value if signal is not None and isinstance(signal.value, dict) else {}
        message = value.get("message") if isinstance(value.get("message"), str) else None
        reason = value.get("reason")
        if reason not in CONNECTION_REASONS:
            reason = reason_from_message(message)

        if not (connection.refresh_token or "").strip():
            return ConnectionStatus(
                "reauth_required", "missing_refresh_token", message or "missing_refresh_token", now
            )

        signal_current = (
            signal is not None
            and value.get("code") == "reauth_required"
            and now - signal.updated_at <= self._reauth_ttl
            and connection.updated_at <= signal.updated_at
        )
        if signal_current:
            return ConnectionStatus("reauth_required", reason, message, now)

        if connection.expires_at is None:
            return ConnectionStatus("connected", "unknown", None, now)
        if connection.expires_at <= now:
            return ConnectionStatus("connected", "expired", None, now)
        return ConnectionStatus("connected", "ok", None, now)

    def import_statuses(self, account_id: str) -> list[ImportStatus]:
        return self._store.select(
            ImportStatus, ImportStatus.account_id == account_id, order_by=ImportStatus.location_id
        )
