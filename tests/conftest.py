"""Pytest configuration - no path manipulation, rely on proper package installation."""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from review_watch.models.base import reset_engine, session_scope
from review_watch.models.records import AccountProfile, Connection, Location
from review_watch.models.store import ReviewStore
from review_watch.utils.config import (
    FetchSettings,
    build_sync_config,
    clear_settings_cache,
)
from review_watch.utils.retry import RetryPolicy

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0.001, max_delay=0.01, jitter=0)


@pytest.fixture(autouse=True)
def _isolated_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory
) -> Iterator[None]:
    """Point every test at a fresh SQLite file and a known cron secret."""

    db_path = tmp_path_factory.mktemp("sqlite-db") / "reviews.sqlite"
    monkeypatch.setenv("REVIEW_WATCH_DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("REVIEW_WATCH_CRON_SECRET", "test-secret")
    monkeypatch.setenv("REVIEW_WATCH_CONFIG_DIR", str(CONFIG_DIR))
    monkeypatch.setenv("REVIEW_WATCH_ENVIRONMENT", "test")
    monkeypatch.delenv("REVIEW_WATCH_CONFIG_PROFILE", raising=False)

    clear_settings_cache()
    reset_engine()
    yield
    reset_engine()
    clear_settings_cache()


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture
def no_sleep() -> Callable[[float], Any]:
    return _no_sleep


@pytest.fixture
def store() -> ReviewStore:
    return ReviewStore(
        retry_policy=RetryPolicy(max_attempts=2, base_delay=0.001, jitter=0),
        sleep=lambda _: None,
    )


@pytest.fixture
def sync_config():
    """Runtime configuration with near-zero retry delays."""

    config = build_sync_config()
    return dataclasses.replace(
        config,
        fetch=FetchSettings(page_size=50, max_pages=5, retry=FAST_RETRY),
        notification_api_key="email-key",
    )


@pytest.fixture
def seed_account() -> Callable[..., tuple[Connection, Location]]:
    """Create a connected account with one location and a notification recipient."""

    def _seed(
        account_id: str = "acct-1",
        *,
        access_token: str | None = "access-1",
        refresh_token: str | None = "refresh-1",
        expires_in: timedelta | None = timedelta(hours=1),
        email: str | None = "owner@example.com",
        location_resource: str = "locations/10",
        last_synced_at: datetime | None = None,
    ) -> tuple[Connection, Location]:
        now = datetime.now(timezone.utc)
        with session_scope() as session:
            connection = Connection(
                account_id=account_id,
                provider="google",
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=now + expires_in if expires_in is not None else None,
                updated_at=now - timedelta(minutes=5),
            )
            location = Location(
                account_id=account_id,
                provider="google",
                account_resource_name="accounts/1",
                location_resource_name=location_resource,
                title="Harbor Cafe",
                last_synced_at=last_synced_at,
            )
            session.add_all([connection, location])
            if email is not None:
                session.add(AccountProfile(account_id=account_id, email=email))
            session.flush()
        return connection, location

    return _seed


def iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@pytest.fixture
def review_payload() -> Callable[..., dict[str, Any]]:
    """Build a review record in the external API's resource shape."""

    def _build(
        review_id: str,
        *,
        stars: str = "FIVE",
        age: timedelta = timedelta(hours=1),
        comment: str | None = "Lovely",
        reply: str | None = None,
        location: str = "accounts/1/locations/10",
        updated_age: timedelta | None = None,
    ) -> dict[str, Any]:
        now = datetime.now(timezone.utc)
        record: dict[str, Any] = {
            "name": f"{location}/reviews/{review_id}",
            "reviewId": review_id,
            "reviewer": {"displayName": f"Guest {review_id}"},
            "starRating": stars,
            "createTime": iso(now - age),
            "updateTime": iso(now - (updated_age if updated_age is not None else age)),
        }
        if comment is not None:
            record["comment"] = comment
        if reply is not None:
            record["reviewReply"] = {"comment": reply, "updateTime": iso(now - age / 2)}
        return record

    return _build
