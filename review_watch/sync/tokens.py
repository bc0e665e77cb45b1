"""OAuth access token lifecycle for stored provider connections."""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from ..exceptions import ReauthRequired, StorageError, TransientAuthError
from ..models.records import Connection
from ..models.store import ReviewStore
from ..utils.config import SyncConfig
from ..utils.logging import setup_logger
from ..utils.retry import execute_with_retry

REFRESH_MARGIN = timedelta(seconds=60)

_REVOKED_PATTERN = re.compile(r"expired|revoked", re.IGNORECASE)

logger = setup_logger(__name__, context={"component": "tokens"})


def _error_text(response: httpx.Response) -> tuple[str | None, str]:
    try:
        payload = response.json()
    except ValueError:
        return None, response.text[:500]
    if not isinstance(payload, dict):
        return None, response.text[:500]
    error = payload.get("error")
    if isinstance(error, dict):
        code = error.get("status") if isinstance(error.get("status"), str) else None
        return code, str(error.get("message") or "")
    description = payload.get("error_description") or payload.get("message") or ""
    return (error if isinstance(error, str) else None), str(description)


def is_revoked_grant(error_code: str | None, message: str) -> bool:
    """True when the provider says the refresh grant is no longer usable."""

    if error_code == "invalid_grant":
        return True
    return bool(_REVOKED_PATTERN.search(message or ""))


class TokenManager:
    """Keeps a connection's access token valid, refreshing it when needed."""

    def __init__(
        self,
        config: SyncConfig,
        store: ReviewStore,
        client: httpx.AsyncClient,
        *,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._client = client
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep

    def needs_refresh(self, connection: Connection) -> bool:
        if not connection.access_token:
            return True
        if connection.expires_at is None:
            return True
        return connection.expires_at - self._clock() <= REFRESH_MARGIN

    async def ensure_access_token(self, connection: Connection) -> str:
        """Return a usable access token, refreshing and persisting it first if needed.

        Raises:
            ReauthRequired: refresh token missing or revoked by the provider.
            TransientAuthError: any other refresh or persistence failure.
        """

        refresh_token = (connection.refresh_token or "").strip()
        if not refresh_token:
            raise ReauthRequired("missing_refresh_token", "Connection has no refresh token")

        if not self.needs_refresh(connection):
            return connection.access_token or ""

        log = logger.bind(account_id=connection.account_id)
        payload = await self._request_refresh(refresh_token, log)

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise TransientAuthError("Token endpoint returned no access_token")

        now = self._clock()
        expires_in = payload.get("expires_in")
        try:
            expires_at = now + timedelta(seconds=int(expires_in)) if expires_in is not None else None
        except (TypeError, ValueError):
            expires_at = None

        values: dict[str, Any] = {
            "access_token": access_token,
            "expires_at": expires_at,
            "updated_at": now,
        }
        if payload.get("scope"):
            values["scope"] = str(payload["scope"])
        if payload.get("token_type"):
            values["token_type"] = str(payload["token_type"])

        try:
            self._store.update(Connection, values, Connection.id == connection.id)
        except StorageError as exc:
            raise TransientAuthError(f"Refreshed token could not be persisted: {exc}") from exc

        for key, value in values.items():
            setattr(connection, key, value)
        log.info("Access token refreshed", extra={"status": "refreshed"})
        return access_token

    async def _request_refresh(self, refresh_token: str, log: Any) -> dict[str, Any]:
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._config.oauth_client_id or "",
            "client_secret": self._config.oauth_client_secret or "",
        }

        async def _send() -> httpx.Response:
            return await self._client.post(self._config.oauth_token_url, data=form)

        try:
            response = await execute_with_retry(
                _send,
                policy=self._config.fetch.retry,
                log=log,
                sleep=self._sleep,
            )
        except httpx.HTTPError as exc:
            raise TransientAuthError(f"Token refresh request failed: {exc}") from exc

        if response.is_success:
            try:
                payload = response.json()
            except ValueError as exc:
                raise TransientAuthError("Token endpoint returned invalid JSON") from exc
            if not isinstance(payload, dict):
                raise TransientAuthError("Token endpoint returned unexpected payload")
            return payload

        error_code, message = _error_text(response)
        if is_revoked_grant(error_code, message):
            log.warning(
                "Refresh grant rejected; reauthorization required",
                extra={"status": "reauth_required"},
            )
            raise ReauthRequired("token_revoked", message or "invalid_grant")
        raise TransientAuthError(
            f"Token refresh failed with status {response.status_code}: {message}",
            status=response.status_code,
        )
