"""Custom exceptions for review_watch."""

from __future__ import annotations


class ReviewWatchError(Exception):
    """Base exception for all review_watch errors."""

    pass


class ConfigurationError(ReviewWatchError):
    """Raised when configuration is invalid or missing."""

    pass


class NotConnectedError(ReviewWatchError):
    """Raised when an account has no stored provider connection."""

    def __init__(self, account_id: str) -> None:
        super().__init__(f"Account '{account_id}' has no review provider connection")
        self.account_id = account_id


class AuthenticationError(ReviewWatchError):
    """Raised when provider credentials cannot be used."""

    pass


class ReauthRequired(AuthenticationError):
    """Permanent credential failure: the user must reconnect the account.

    Never retried. ``reason`` is one of ``missing_refresh_token``,
    ``token_revoked`` or ``unknown``.
    """

    def __init__(self, reason: str = "unknown", message: str | None = None) -> None:
        super().__init__(message or f"reauth_required ({reason})")
        self.reason = reason


class TransientAuthError(AuthenticationError):
    """Token refresh failed for a reason that may succeed on a later run."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class FetchError(ReviewWatchError):
    """Raised when the external review API returns a non-recoverable response."""

    def __init__(
        self,
        status: int,
        body: str,
        *,
        pages: int = 0,
        http_statuses: dict[int, int] | None = None,
    ) -> None:
        super().__init__(f"Review API error {status}")
        self.status = status
        self.body = body
        self.pages = pages
        self.http_statuses = dict(http_statuses or {})

    @property
    def is_permission_denied(self) -> bool:
        """Return True for 401/403 responses."""

        return self.status in (401, 403)


class StorageError(ReviewWatchError):
    """Raised when a storage call fails after its retry budget is spent."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation


class ReconciliationLoadFailure(ReviewWatchError):
    """Raised when prior review state cannot be loaded for classification."""

    pass


class UpsertFailure(ReviewWatchError):
    """Raised when fetched reviews cannot be written; aborts the location pass."""

    pass


class NotificationFailure(ReviewWatchError):
    """Raised when the notification channel rejects or fails a send."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
