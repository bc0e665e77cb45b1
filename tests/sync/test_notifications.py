"""Tests for alert rendering and delivery."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from review_watch.exceptions import NotificationFailure
from review_watch.models.records import AccountProfile, Alert
from review_watch.sync.notifications import NotificationChannel, NotificationDispatcher, render_alert

EMAIL_URL = "https://mail.example.test/emails"


def _alert(review_id: str, *, location_id: int = 1, minutes_ago: int = 10, **fields) -> Alert:
    return Alert(
        account_id="acct-1",
        location_id=location_id,
        review_name=f"accounts/1/locations/10/reviews/{review_id}",
        review_id=review_id,
        rule_code=fields.pop("rule_code", "NEGATIVE_NO_REPLY"),
        severity=fields.pop("severity", "medium"),
        payload=fields.pop(
            "payload",
            {"rating": 1, "author": "Ana <script>", "snippet": "Cold & late", "hours_since": 30.0},
        ),
        triggered_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
        **fields,
    )


def _dispatcher(store, handler, *, api_key: str | None = "email-key", batch_limit: int = 25):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    channel = NotificationChannel(client, api_url=EMAIL_URL, api_key=api_key, sender="alerts@example.test")
    return NotificationDispatcher(store, channel, batch_limit=batch_limit), client


def test_render_alert_escapes_payload():
    subject, body = render_alert(_alert("r1"), "Harbor Cafe")

    assert subject == "[MEDIUM] Unanswered negative review - Harbor Cafe"
    assert "Ana &lt;script&gt;" in body
    assert "Cold &amp; late" in body
    assert "Rating: 1/5" in body


def test_render_rating_drop_details():
    alert = _alert(
        "r2",
        rule_code="RATING_DROP",
        severity="high",
        payload={"delta": 0.7, "avg_7d": 3.5, "avg_30d": 4.2, "location_name": "accounts/1/locations/10"},
    )

    subject, body = render_alert(alert)

    assert subject == "[HIGH] Rating drop - accounts/1/locations/10"
    assert "drop 0.7" in body


@pytest.mark.asyncio
async def test_flush_sends_pending_alerts_oldest_first(store):
    store.insert(AccountProfile(account_id="acct-1", email=" owner@example.com "))
    store.insert(_alert("newer", minutes_ago=1))
    store.insert(_alert("older", minutes_ago=30))
    store.insert(_alert("done", minutes_ago=40, last_notified_at=datetime.now(timezone.utc)))
    store.insert(_alert("resolved", minutes_ago=50, resolved_at=datetime.now(timezone.utc)))
    store.insert(_alert("elsewhere", location_id=2))
    sent: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer email-key"
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "msg"})

    dispatcher, client = _dispatcher(store, handler)
    async with client:
        count = await dispatcher.flush_pending("acct-1", 1, location_title="Harbor Cafe")

    assert count == 2
    assert [message["to"] for message in sent] == [["owner@example.com"], ["owner@example.com"]]
    assert sent[0]["from"] == "alerts@example.test"
    notified = {a.review_id for a in store.select(Alert, Alert.last_notified_at.is_not(None))}
    assert notified == {"newer", "older", "done"}


@pytest.mark.asyncio
async def test_flush_respects_batch_limit(store):
    store.insert(AccountProfile(account_id="acct-1", email="owner@example.com"))
    for index in range(3):
        store.insert(_alert(f"r{index}", minutes_ago=index))

    dispatcher, client = _dispatcher(store, lambda request: httpx.Response(202), batch_limit=2)
    async with client:
        assert await dispatcher.flush_pending("acct-1", 1) == 2
        assert await dispatcher.flush_pending("acct-1", 1) == 1


@pytest.mark.asyncio
async def test_failed_send_leaves_alert_pending(store):
    store.insert(AccountProfile(account_id="acct-1", email="owner@example.com"))
    store.insert(_alert("r1"))

    dispatcher, client = _dispatcher(store, lambda request: httpx.Response(500, text="boom"))
    async with client:
        assert await dispatcher.flush_pending("acct-1", 1) == 0

    assert store.first(Alert).last_notified_at is None


@pytest.mark.asyncio
async def test_missing_recipient_skips_delivery(store):
    store.insert(_alert("r1"))

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("nothing should be sent")

    dispatcher, client = _dispatcher(store, handler)
    async with client:
        assert await dispatcher.flush_pending("acct-1", 1) == 0


@pytest.mark.asyncio
async def test_unconfigured_channel_raises():
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))) as client:
        channel = NotificationChannel(client, api_url=EMAIL_URL, api_key=None, sender="a@b.test")

        with pytest.raises(NotificationFailure):
            await channel.send("owner@example.com", "subject", "<p>body</p>")


@pytest.mark.asyncio
async def test_channel_reports_provider_status():
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(422))) as client:
        channel = NotificationChannel(client, api_url=EMAIL_URL, api_key="k", sender="a@b.test")

        with pytest.raises(NotificationFailure) as excinfo:
            await channel.send("owner@example.com", "subject", "<p>body</p>")

    assert excinfo.value.status == 422
