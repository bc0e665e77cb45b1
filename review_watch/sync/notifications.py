"""Delivery of pending alerts to the account's notification recipient."""

from __future__ import annotations

import html
from collections.abc import Callable
from datetime import datetime, timezone

import httpx

from ..exceptions import NotificationFailure, StorageError
from ..models.records import AccountProfile, Alert
from ..models.store import ReviewStore
from ..monitoring.metrics import record_notification
from ..utils.logging import setup_logger
from .alerts import RULE_LABELS

logger = setup_logger(__name__, context={"component": "notifications"})


class NotificationChannel:
    """HTTP email provider accepting ``{from, to, subject, html}``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_url: str,
        api_key: str | None,
        sender: str,
    ) -> None:
        self._client = client
        self._api_url = api_url
        self._api_key = api_key
        self._sender = sender

    async def send(self, to: str, subject: str, body_html: str) -> None:
        """Send one message; raises :class:`NotificationFailure` unless 2xx."""

        if not self._api_key:
            raise NotificationFailure("Notification channel is not configured")
        try:
            response = await self._client.post(
                self._api_url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"from": self._sender, "to": [to], "subject": subject, "html": body_html},
            )
        except httpx.HTTPError as exc:
            raise NotificationFailure(f"Notification request failed: {exc}") from exc
        if not response.is_success:
            raise NotificationFailure(
                f"Notification provider returned {response.status_code}",
                status=response.status_code,
            )


def render_alert(alert: Alert, location_title: str | None = None) -> tuple[str, str]:
    """Return ``(subject, html)`` built only from the alert's stored payload."""

    payload = alert.payload or {}
    label = RULE_LABELS.get(alert.rule_code, alert.rule_code)
    place = location_title or payload.get("location_name") or "your location"
    subject = f"[{alert.severity.upper()}] {label} - {place}"

    lines: list[str] = [f"<h2>{html.escape(label)}</h2>", f"<p>Location: {html.escape(str(place))}</p>"]
    rating = payload.get("rating")
    if rating is not None:
        lines.append(f"<p>Rating: {html.escape(str(rating))}/5</p>")
    author = payload.get("author")
    if author:
        lines.append(f"<p>Author: {html.escape(str(author))}</p>")
    if payload.get("hours_since") is not None:
        lines.append(f"<p>Posted {html.escape(str(payload['hours_since']))} hours ago</p>")
    if payload.get("delta") is not None:
        lines.append(
            "<p>7-day average {avg7} vs 30-day average {avg30} (drop {delta})</p>".format(
                avg7=html.escape(str(payload.get("avg_7d"))),
                avg30=html.escape(str(payload.get("avg_30d"))),
                delta=html.escape(str(payload["delta"])),
            )
        )
    if payload.get("negative_48h") is not None:
        lines.append(
            f"<p>{html.escape(str(payload['negative_48h']))} negative reviews in the last 48 hours</p>"
        )
    snippet = payload.get("snippet")
    if snippet:
        lines.append(f"<blockquote>{html.escape(str(snippet))}</blockquote>")
    return subject, "\n".join(lines)


class NotificationDispatcher:
    """Sends unresolved, not-yet-notified alerts and stamps ``last_notified_at``.

    Delivery is at-least-once: a crash between a confirmed send and the
    timestamp write re-sends that alert on the next flush.
    """

    def __init__(
        self,
        store: ReviewStore,
        channel: NotificationChannel,
        *,
        batch_limit: int = 25,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._channel = channel
        self._batch_limit = batch_limit
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def resolve_recipient(self, account_id: str) -> str | None:
        profile = self._store.first(AccountProfile, AccountProfile.account_id == account_id)
        if profile is None or not profile.email:
            return None
        return profile.email.strip() or None

    async def flush_pending(
        self,
        account_id: str,
        location_id: int,
        *,
        location_title: str | None = None,
    ) -> int:
        """Send pending alerts for one location; returns the number sent."""

        log = logger.bind(account_id=account_id, location_id=location_id)
        recipient = self.resolve_recipient(account_id)
        if recipient is None:
            log.info("No notification recipient; alerts left pending", extra={"status": "skipped"})
            return 0

        pending = self._store.select(
            Alert,
            Alert.account_id == account_id,
            Alert.location_id == location_id,
            Alert.resolved_at.is_(None),
            Alert.last_notified_at.is_(None),
            order_by=[Alert.triggered_at.asc(), Alert.id.asc()],
            limit=self._batch_limit,
        )

        sent = 0
        for alert in pending:
            subject, body = render_alert(alert, location_title)
            try:
                await self._channel.send(recipient, subject, body)
            except NotificationFailure as exc:
                record_notification("failed")
                log.warning(
                    "Alert notification failed",
                    extra={"status": "failed", "alert_id": alert.id, "error": str(exc)},
                )
                continue

            record_notification("sent")
            sent += 1
            try:
                self._store.update(
                    Alert,
                    {"last_notified_at": self._clock()},
                    Alert.id == alert.id,
                )
            except StorageError as exc:
                log.error(
                    "Sent alert could not be marked notified",
                    extra={"status": "error", "alert_id": alert.id, "error": str(exc)},
                )
        return sent
