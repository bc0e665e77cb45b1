"""Tests for review normalization and reconciliation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from review_watch.exceptions import StorageError, UpsertFailure
from review_watch.models.records import Location, Review
from review_watch.schemas.reviews import ExternalReview, normalize_review
from review_watch.sync.reconcile import ReconciliationEngine, classify, dedupe

LOCATION = "accounts/1/locations/10"


def _normalized(review_id: str, *, rating: str = "FIVE", updated: datetime | None = None, **extra):
    payload = {"name": f"{LOCATION}/reviews/{review_id}", "starRating": rating, **extra}
    if updated is not None:
        payload["updateTime"] = updated.isoformat()
    return normalize_review(ExternalReview.model_validate(payload), LOCATION)


class TestNormalize:
    def test_resource_record(self):
        record = ExternalReview.model_validate(
            {
                "name": f"{LOCATION}/reviews/abc",
                "reviewer": {"displayName": "Ana"},
                "starRating": "TWO",
                "comment": "  Cold food  ",
                "createTime": "2026-10-01T10:00:00Z",
                "reviewReply": {"comment": "Sorry!", "updateTime": "2026-10-02T10:00:00Z"},
            }
        )

        normalized = normalize_review(record, LOCATION)

        assert normalized.review_name == f"{LOCATION}/reviews/abc"
        assert normalized.review_id == "abc"
        assert normalized.rating == 2
        assert normalized.comment == "Cold food"
        assert normalized.author_name == "Ana"
        assert normalized.reply_text == "Sorry!"
        assert normalized.replied_at == datetime(2026, 10, 2, 10, tzinfo=timezone.utc)

    def test_legacy_record_is_namespaced_under_location(self):
        record = ExternalReview.model_validate({"reviewId": "old-7", "starRating": 4})

        normalized = normalize_review(record, LOCATION)

        assert normalized.review_name == f"{LOCATION}/reviews/old-7"
        assert normalized.review_id == "old-7"

    def test_unidentified_record_is_dropped(self):
        record = ExternalReview.model_validate({"starRating": "ONE", "comment": "who am I"})

        assert normalize_review(record, LOCATION) is None

    def test_original_language_comment_preferred(self):
        record = ExternalReview.model_validate(
            {
                "name": f"{LOCATION}/reviews/t",
                "comment": "Translated",
                "originalText": {"text": "Original"},
            }
        )

        assert normalize_review(record, LOCATION).comment == "Original"

    def test_unknown_rating_is_none(self):
        assert _normalized("x", rating="STAR_RATING_UNSPECIFIED").rating is None

    def test_raw_payload_is_preserved(self):
        record = ExternalReview.model_validate({"name": f"{LOCATION}/reviews/r", "custom": {"a": 1}})

        assert normalize_review(record, LOCATION).raw["custom"] == {"a": 1}


class TestDedupe:
    def test_newer_snapshot_wins(self):
        base = datetime(2026, 10, 1, tzinfo=timezone.utc)
        older = _normalized("1", rating="ONE", updated=base)
        newer = _normalized("1", rating="THREE", updated=base + timedelta(hours=1))

        survivors, dropped = dedupe([newer, older])

        assert dropped == 1
        assert [s.rating for s in survivors] == [3]

    def test_equal_freshness_keeps_later_record(self):
        base = datetime(2026, 10, 1, tzinfo=timezone.utc)
        first = _normalized("1", rating="ONE", updated=base)
        second = _normalized("1", rating="TWO", updated=base)

        survivors, _ = dedupe([first, second])

        assert survivors[0].rating == 2


def test_classify_only_marks_real_changes():
    unchanged = _normalized("1", rating="FIVE")
    edited = _normalized("2", rating="ONE")
    fresh = _normalized("3")

    class Prior:
        def __init__(self, record, **overrides):
            for name in ("rating", "comment", "update_time", "reply_text", "replied_at"):
                setattr(self, name, overrides.get(name, getattr(record, name)))

    prior = {
        unchanged.review_name: Prior(unchanged),
        edited.review_name: Prior(edited, rating=5),
    }

    outcome = classify([unchanged, edited, fresh], prior)

    assert [r.review_id for r in outcome.inserts] == ["3"]
    assert [r.review_id for r in outcome.updates] == ["1", "2"]
    assert [r.review_id for r in outcome.changed] == ["2", "3"]


def _location(store) -> Location:
    return store.insert(
        Location(
            account_id="acct-1",
            account_resource_name="accounts/1",
            location_resource_name="locations/10",
            title="Harbor Cafe",
        )
    )


def _external(*records: dict) -> list[ExternalReview]:
    return [ExternalReview.model_validate(record) for record in records]


def test_reconcile_inserts_then_updates_idempotently(store):
    location = _location(store)
    engine = ReconciliationEngine(store)
    batch = _external(
        {"name": f"{LOCATION}/reviews/1", "starRating": "FIVE", "createTime": "2026-10-01T10:00:00Z"},
        {"name": f"{LOCATION}/reviews/2", "starRating": "TWO", "createTime": "2026-10-01T11:00:00Z"},
        {"reviewId": "3", "starRating": "FOUR"},
        {"comment": "no identity"},
    )

    first = engine.reconcile("acct-1", location, batch)

    assert (first.inserted, first.updated, first.skipped) == (3, 0, 1)
    assert len(first.changed) == 3
    assert location.last_synced_at is not None

    second = engine.reconcile("acct-1", location, batch)

    assert (second.inserted, second.updated, second.skipped) == (0, 3, 1)
    assert second.changed == []
    assert len(store.select(Review)) == 3

    stored = store.first(Review, Review.review_name == f"{LOCATION}/reviews/3")
    assert stored.location_id == location.id
    assert stored.raw == {"reviewId": "3", "starRating": "FOUR"}


def test_reconcile_detects_reply_change(store):
    location = _location(store)
    engine = ReconciliationEngine(store)
    record = {"name": f"{LOCATION}/reviews/1", "starRating": "ONE"}
    engine.reconcile("acct-1", location, _external(record))

    replied = {**record, "reviewReply": {"comment": "We're on it", "updateTime": "2026-10-03T08:00:00Z"}}
    result = engine.reconcile("acct-1", location, _external(replied))

    assert [r.review_id for r in result.changed] == ["1"]
    stored = store.first(Review, Review.review_name == f"{LOCATION}/reviews/1")
    assert stored.reply_text == "We're on it"
    assert stored.owner_reply == "We're on it"
    assert stored.has_reply is True


def test_dry_run_writes_nothing(store):
    location = _location(store)
    engine = ReconciliationEngine(store)

    result = engine.reconcile(
        "acct-1", location, _external({"name": f"{LOCATION}/reviews/1", "starRating": "ONE"}), dry_run=True
    )

    assert result.inserted == 1
    assert store.select(Review) == []
    assert location.last_synced_at is None


def test_prior_load_failure_counts_batch_as_skipped(store, monkeypatch):
    location = _location(store)
    engine = ReconciliationEngine(store)

    def _fail(*args, **kwargs):
        raise StorageError("select reviews", "connection reset")

    monkeypatch.setattr(store, "select_in_chunks", _fail)
    result = engine.reconcile(
        "acct-1",
        location,
        _external(
            {"name": f"{LOCATION}/reviews/1", "starRating": "ONE"},
            {"name": f"{LOCATION}/reviews/2", "starRating": "TWO"},
        ),
    )

    assert result.prior_load_failed is True
    assert (result.inserted, result.updated, result.skipped) == (0, 0, 2)
    assert result.changed == []
    assert result.written == 2


def test_upsert_failure_aborts_the_pass(store, monkeypatch):
    location = _location(store)
    engine = ReconciliationEngine(store)

    def _fail(*args, **kwargs):
        raise StorageError("upsert reviews", "disk full")

    monkeypatch.setattr(store, "upsert", _fail)

    with pytest.raises(UpsertFailure):
        engine.reconcile("acct-1", location, _external({"name": f"{LOCATION}/reviews/1"}))

    assert location.last_synced_at is None
