"""Tests for rolling metrics and alert rules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from review_watch.models.records import Alert, Location, Review
from review_watch.schemas.reviews import ExternalReview, normalize_review
from review_watch.sync.alerts import (
    LONG_NEGATIVE_REVIEW,
    NEGATIVE_NO_REPLY,
    NEGATIVE_SPIKE,
    RATING_DROP,
    AlertCandidate,
    AlertEngine,
    LocationMetrics,
    compute_metrics,
    evaluate_rules,
)
from review_watch.utils.config import AlertThresholds

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
QUIET = LocationMetrics(avg_7d=None, avg_30d=None, negative_48h=0, samples_7d=0, samples_30d=0)


def _candidate(rating: int | None, *, age: timedelta = timedelta(hours=1), comment: str = "", replied: bool = False):
    return AlertCandidate(
        review_name="accounts/1/locations/10/reviews/r1",
        review_id="r1",
        rating=rating,
        comment=comment,
        author_name="Guest",
        create_time=NOW - age,
        has_reply=replied,
        location_name="accounts/1/locations/10",
    )


def _codes(drafts) -> dict[str, str]:
    return {draft.rule_code: draft.severity for draft in drafts}


class TestComputeMetrics:
    def test_windows(self):
        samples = [
            (NOW - timedelta(hours=2), 1),
            (NOW - timedelta(hours=30), 2),
            (NOW - timedelta(days=3), 3),
            (NOW - timedelta(days=10), 5),
            (NOW - timedelta(days=40), 1),
            (None, 4),
            (NOW - timedelta(days=1), None),
        ]

        metrics = compute_metrics(samples, NOW)

        assert metrics.samples_7d == 3
        assert metrics.samples_30d == 4
        assert metrics.avg_7d == pytest.approx(2.0)
        assert metrics.avg_30d == pytest.approx(2.75)
        assert metrics.negative_48h == 2

    def test_empty_windows_have_no_average(self):
        metrics = compute_metrics([], NOW)

        assert metrics.avg_7d is None
        assert metrics.avg_30d is None
        assert metrics.negative_48h == 0


class TestNegativeNoReply:
    def test_old_unanswered_negative_review(self):
        drafts = evaluate_rules(_candidate(2, age=timedelta(hours=25)), QUIET, AlertThresholds(), NOW)

        assert _codes(drafts) == {NEGATIVE_NO_REPLY: "medium"}
        assert drafts[0].payload["hours_since"] == 25.0
        assert drafts[0].payload["review_name"].endswith("/reviews/r1")

    def test_strict_tolerance_raises_severity(self):
        drafts = evaluate_rules(
            _candidate(1, age=timedelta(hours=30)), QUIET, AlertThresholds(tolerance="strict"), NOW
        )

        assert _codes(drafts) == {NEGATIVE_NO_REPLY: "high"}

    def test_recent_review_is_not_flagged(self):
        assert evaluate_rules(_candidate(1, age=timedelta(hours=23)), QUIET, AlertThresholds(), NOW) == []

    def test_answered_review_is_not_flagged(self):
        candidate = _candidate(1, age=timedelta(hours=48), replied=True)

        assert evaluate_rules(candidate, QUIET, AlertThresholds(), NOW) == []

    def test_unrated_review_never_alerts(self):
        assert evaluate_rules(_candidate(None, age=timedelta(days=2)), QUIET, AlertThresholds(), NOW) == []


class TestRatingDrop:
    def _metrics(self, avg_7d: float, avg_30d: float, samples_7d: int = 6) -> LocationMetrics:
        return LocationMetrics(avg_7d=avg_7d, avg_30d=avg_30d, negative_48h=0, samples_7d=samples_7d, samples_30d=20)

    def test_large_drop_is_high(self):
        drafts = evaluate_rules(_candidate(3), self._metrics(3.5, 4.2), AlertThresholds(), NOW)

        assert _codes(drafts) == {RATING_DROP: "high"}
        assert drafts[0].payload["delta"] == pytest.approx(0.7)

    def test_moderate_drop_is_medium(self):
        drafts = evaluate_rules(_candidate(3), self._metrics(3.9, 4.2), AlertThresholds(), NOW)

        assert _codes(drafts) == {RATING_DROP: "medium"}

    def test_three_tenths_drop_is_medium(self):
        drafts = evaluate_rules(_candidate(3), self._metrics(4.0, 4.3), AlertThresholds(), NOW)

        assert _codes(drafts) == {RATING_DROP: "medium"}
        assert drafts[0].payload["delta"] == pytest.approx(0.3)

    def test_six_tenths_drop_is_high(self):
        drafts = evaluate_rules(_candidate(3), self._metrics(3.7, 4.3), AlertThresholds(), NOW)

        assert _codes(drafts) == {RATING_DROP: "high"}
        assert drafts[0].payload["delta"] == pytest.approx(0.6)

    def test_drop_at_threshold_does_not_fire(self):
        drafts = evaluate_rules(_candidate(3), self._metrics(4.0, 4.2), AlertThresholds(), NOW)

        assert drafts == []

    def test_too_few_recent_samples(self):
        drafts = evaluate_rules(_candidate(3), self._metrics(3.0, 4.5, samples_7d=4), AlertThresholds(), NOW)

        assert drafts == []

    def test_review_above_average_is_not_anchor(self):
        drafts = evaluate_rules(_candidate(5), self._metrics(3.0, 4.5), AlertThresholds(), NOW)

        assert drafts == []


class TestNegativeSpike:
    def _metrics(self, negative_48h: int) -> LocationMetrics:
        return LocationMetrics(avg_7d=None, avg_30d=None, negative_48h=negative_48h, samples_7d=0, samples_30d=0)

    def test_spike_at_threshold_is_medium(self):
        drafts = evaluate_rules(_candidate(1), self._metrics(4), AlertThresholds(), NOW)

        assert _codes(drafts) == {NEGATIVE_SPIKE: "medium"}
        assert drafts[0].payload["negative_48h"] == 4

    def test_large_spike_is_high(self):
        drafts = evaluate_rules(_candidate(2), self._metrics(6), AlertThresholds(), NOW)

        assert _codes(drafts) == {NEGATIVE_SPIKE: "high"}

    def test_below_threshold(self):
        assert evaluate_rules(_candidate(1), self._metrics(3), AlertThresholds(), NOW) == []

    def test_positive_review_does_not_anchor_spike(self):
        assert evaluate_rules(_candidate(4), self._metrics(9), AlertThresholds(), NOW) == []


class TestLongNegativeReview:
    def test_long_three_star_review_is_medium(self):
        drafts = evaluate_rules(_candidate(3, comment="x" * 300), QUIET, AlertThresholds(), NOW)

        assert _codes(drafts) == {LONG_NEGATIVE_REVIEW: "medium"}
        assert drafts[0].payload["comment_length"] == 300
        assert len(drafts[0].payload["snippet"]) == 200

    def test_long_two_star_review_is_high(self):
        drafts = evaluate_rules(_candidate(2, comment="y" * 250), QUIET, AlertThresholds(), NOW)

        assert _codes(drafts) == {LONG_NEGATIVE_REVIEW: "high"}

    def test_short_review(self):
        assert evaluate_rules(_candidate(2, comment="z" * 249), QUIET, AlertThresholds(), NOW) == []


def test_one_review_can_trigger_several_rules():
    metrics = LocationMetrics(avg_7d=None, avg_30d=None, negative_48h=5, samples_7d=0, samples_30d=0)

    drafts = evaluate_rules(
        _candidate(1, age=timedelta(hours=26), comment="w" * 400), metrics, AlertThresholds(), NOW
    )

    assert set(_codes(drafts)) == {NEGATIVE_NO_REPLY, NEGATIVE_SPIKE, LONG_NEGATIVE_REVIEW}


def _location(store) -> Location:
    return store.insert(
        Location(
            account_id="acct-1",
            account_resource_name="accounts/1",
            location_resource_name="locations/10",
            title="Harbor Cafe",
        )
    )


def _store_review(store, location: Location, review_id: str, rating: int, age: timedelta, **extra) -> None:
    row = {
        "account_id": "acct-1",
        "location_id": location.id,
        "location_name": location.full_resource_name,
        "review_name": f"{location.full_resource_name}/reviews/{review_id}",
        "review_id": review_id,
        "rating": rating,
        "comment": extra.pop("comment", "meh"),
        "create_time": NOW - age,
        **extra,
    }
    store.upsert(Review, [row], ("account_id", "review_name"))


def test_engine_stores_alerts_once(store):
    location = _location(store)
    _store_review(store, location, "bad", 1, timedelta(hours=30))
    record = normalize_review(
        ExternalReview.model_validate(
            {
                "name": f"{location.full_resource_name}/reviews/bad",
                "starRating": "ONE",
                "comment": "meh",
                "createTime": (NOW - timedelta(hours=30)).isoformat(),
            }
        ),
        location.full_resource_name,
    )
    engine = AlertEngine(store, AlertThresholds(), clock=lambda: NOW)

    first = engine.evaluate("acct-1", location, [record])
    second = engine.evaluate("acct-1", location, [record])

    assert [draft.rule_code for draft in first.new_alerts] == [NEGATIVE_NO_REPLY]
    assert first.backfill_ran is False
    assert second.new_alerts == []
    alerts = store.select(Alert)
    assert len(alerts) == 1
    assert alerts[0].review_id == "bad"
    assert alerts[0].location_id == location.id
    assert alerts[0].last_notified_at is None


def test_backfill_runs_when_nothing_new_fired(store):
    location = _location(store)
    _store_review(store, location, "old-bad", 2, timedelta(days=3))
    _store_review(store, location, "answered", 1, timedelta(days=3), reply_text="Sorry", owner_reply="Sorry")
    _store_review(store, location, "good", 5, timedelta(days=2))
    engine = AlertEngine(store, AlertThresholds(), clock=lambda: NOW)

    outcome = engine.evaluate("acct-1", location, [])

    assert outcome.backfill_ran is True
    assert outcome.backfill_evaluated == 1
    assert [(d.rule_code, d.review_id) for d in outcome.new_alerts] == [(NEGATIVE_NO_REPLY, "old-bad")]

    again = engine.evaluate("acct-1", location, [])
    assert again.new_alerts == []
    assert len(store.select(Alert)) == 1


def test_backfill_can_be_disabled(store):
    location = _location(store)
    _store_review(store, location, "old-bad", 2, timedelta(days=3))
    engine = AlertEngine(store, AlertThresholds(backfill_limit=0), clock=lambda: NOW)

    outcome = engine.evaluate("acct-1", location, [])

    assert outcome.new_alerts == []
    assert store.select(Alert) == []
