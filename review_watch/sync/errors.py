"""Structured error reports stored on sync runs and failed jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..exceptions import (
    ConfigurationError,
    FetchError,
    NotConnectedError,
    NotificationFailure,
    ReauthRequired,
    ReviewWatchError,
    StorageError,
    TransientAuthError,
    UpsertFailure,
)


@dataclass(slots=True)
class ErrorReport:
    """Serializable description of a failed location pass or job."""

    account_id: str
    location_id: int | None
    request_id: str | None
    error_type: str
    message: str
    classification: str
    retryable: bool
    timestamp: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return a serializable dictionary representation of the error report."""

        payload: dict[str, Any] = {
            "account_id": self.account_id,
            "location_id": self.location_id,
            "request_id": self.request_id,
            "error_type": self.error_type,
            "message": self.message,
            "classification": self.classification,
            "retryable": self.retryable,
            "timestamp": self.timestamp,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    def summary(self) -> str:
        """Short ``classification: message`` line used for ``last_error`` columns."""

        return f"{self.classification}: {self.message}"[:500]


def build_error_report(
    exc: BaseException,
    *,
    account_id: str,
    location_id: int | None = None,
    request_id: str | None = None,
    extra_details: dict[str, Any] | None = None,
) -> ErrorReport:
    """Construct an :class:`ErrorReport` describing the supplied exception."""

    classification, retryable = classify_exception(exc)

    details: dict[str, Any] = {}
    if isinstance(exc, FetchError):
        details["status"] = exc.status
        details["pages"] = exc.pages
        if exc.body:
            details["body"] = exc.body[:500]
    elif isinstance(exc, ReauthRequired):
        details["reason"] = exc.reason
    elif isinstance(exc, StorageError):
        details["operation"] = exc.operation
    if extra_details:
        details.update(extra_details)

    message = str(exc) if str(exc) else exc.__class__.__name__

    return ErrorReport(
        account_id=account_id,
        location_id=location_id,
        request_id=request_id,
        error_type=exc.__class__.__name__,
        message=message,
        classification=classification,
        retryable=retryable,
        timestamp=datetime.now(timezone.utc).isoformat(),
        details=details,
    )


def classify_exception(exc: BaseException) -> tuple[str, bool]:
    """Return a tuple of (classification, retryable) for a given exception."""

    if isinstance(exc, ReauthRequired):
        return "reauth_required", False
    if isinstance(exc, TransientAuthError):
        return "transient_auth", True
    if isinstance(exc, FetchError):
        return "fetch", exc.status in (0, 429) or exc.status >= 500
    if isinstance(exc, NotConnectedError):
        return "not_connected", False
    if isinstance(exc, UpsertFailure):
        return "upsert", True
    if isinstance(exc, StorageError):
        return "storage", True
    if isinstance(exc, NotificationFailure):
        return "notification", True
    if isinstance(exc, ConfigurationError):
        return "configuration", False
    if isinstance(exc, ReviewWatchError):
        return "application", False
    return "unexpected", False
