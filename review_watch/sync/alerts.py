"""Rolling location metrics and the alert rules evaluated after each sync."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from ..models.records import Alert, Location, Review
from ..models.store import ReviewStore
from ..monitoring.metrics import record_alert
from ..schemas.reviews import NormalizedReview
from ..utils.config import AlertThresholds
from ..utils.logging import setup_logger

NEGATIVE_NO_REPLY = "NEGATIVE_NO_REPLY"
RATING_DROP = "RATING_DROP"
NEGATIVE_SPIKE = "NEGATIVE_SPIKE"
LONG_NEGATIVE_REVIEW = "LONG_NEGATIVE_REVIEW"

RULE_LABELS: dict[str, str] = {
    NEGATIVE_NO_REPLY: "Unanswered negative review",
    RATING_DROP: "Rating drop",
    NEGATIVE_SPIKE: "Spike of negative reviews",
    LONG_NEGATIVE_REVIEW: "Long critical review",
}

SNIPPET_CHARS = 200

logger = setup_logger(__name__, context={"component": "alerts"})


@dataclass(frozen=True, slots=True)
class LocationMetrics:
    """Derived rating statistics; averages are None when a window is empty."""

    avg_7d: float | None
    avg_30d: float | None
    negative_48h: int
    samples_7d: int
    samples_30d: int


@dataclass(slots=True)
class AlertCandidate:
    """The subset of a review the rules look at."""

    review_name: str
    review_id: str | None
    rating: int | None
    comment: str | None
    author_name: str | None
    create_time: datetime | None
    has_reply: bool
    location_name: str | None = None

    @classmethod
    def from_normalized(cls, record: NormalizedReview) -> AlertCandidate:
        return cls(
            review_name=record.review_name,
            review_id=record.review_id,
            rating=record.rating,
            comment=record.comment,
            author_name=record.author_name,
            create_time=record.create_time,
            has_reply=bool(record.reply_text or record.replied_at),
            location_name=record.location_name,
        )

    @classmethod
    def from_row(cls, row: Review) -> AlertCandidate:
        return cls(
            review_name=row.review_name,
            review_id=row.review_id,
            rating=row.rating,
            comment=row.comment,
            author_name=row.author_name,
            create_time=row.create_time,
            has_reply=row.has_reply,
            location_name=row.location_name,
        )


@dataclass(slots=True)
class AlertDraft:
    rule_code: str
    severity: str
    review_name: str
    review_id: str | None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class AlertOutcome:
    new_alerts: list[AlertDraft] = field(default_factory=list)
    evaluated: int = 0
    backfill_ran: bool = False
    backfill_evaluated: int = 0


def compute_metrics(samples: Iterable[tuple[datetime | None, int | None]], now: datetime) -> LocationMetrics:
    """Compute 7/30-day means and the 48h negative count from (created, rating) pairs."""

    since_30d = now - timedelta(days=30)
    since_7d = now - timedelta(days=7)
    since_48h = now - timedelta(hours=48)

    ratings_30d: list[int] = []
    ratings_7d: list[int] = []
    negative_48h = 0
    for created, rating in samples:
        if created is None or rating is None or created < since_30d:
            continue
        ratings_30d.append(rating)
        if created >= since_7d:
            ratings_7d.append(rating)
        if created >= since_48h and rating <= 2:
            negative_48h += 1

    return LocationMetrics(
        avg_7d=sum(ratings_7d) / len(ratings_7d) if ratings_7d else None,
        avg_30d=sum(ratings_30d) / len(ratings_30d) if ratings_30d else None,
        negative_48h=negative_48h,
        samples_7d=len(ratings_7d),
        samples_30d=len(ratings_30d),
    )


def _hours_since(created: datetime | None, now: datetime) -> float | None:
    if created is None:
        return None
    return (now - created).total_seconds() / 3600.0


def _evidence(candidate: AlertCandidate, now: datetime) -> dict[str, Any]:
    hours = _hours_since(candidate.create_time, now)
    comment = candidate.comment or ""
    return {
        "review_id": candidate.review_id,
        "review_name": candidate.review_name,
        "location_name": candidate.location_name,
        "author": candidate.author_name,
        "rating": candidate.rating,
        "snippet": comment[:SNIPPET_CHARS],
        "create_time": candidate.create_time.isoformat() if candidate.create_time else None,
        "hours_since": round(hours, 1) if hours is not None else None,
    }


def evaluate_rules(
    candidate: AlertCandidate,
    metrics: LocationMetrics,
    thresholds: AlertThresholds,
    now: datetime,
) -> list[AlertDraft]:
    """Run every rule against one review; a review may trigger several."""

    drafts: list[AlertDraft] = []
    rating = candidate.rating
    if rating is None:
        return drafts

    def _draft(rule_code: str, severity: str, **extra: Any) -> AlertDraft:
        payload = _evidence(candidate, now)
        payload.update(extra)
        return AlertDraft(
            rule_code=rule_code,
            severity=severity,
            review_name=candidate.review_name,
            review_id=candidate.review_id,
            payload=payload,
        )

    hours = _hours_since(candidate.create_time, now)
    if rating <= 2 and not candidate.has_reply and hours is not None and hours >= thresholds.no_reply_hours:
        severity = "high" if thresholds.tolerance == "strict" else "medium"
        drafts.append(_draft(NEGATIVE_NO_REPLY, severity, threshold_hours=thresholds.no_reply_hours))

    if (
        metrics.avg_7d is not None
        and metrics.avg_30d is not None
        and metrics.samples_7d >= thresholds.rating_drop_min_samples
        and rating < metrics.avg_30d
    ):
        delta = round(metrics.avg_30d - metrics.avg_7d, 4)
        if delta > thresholds.rating_drop_delta:
            severity = "high" if delta >= thresholds.rating_drop_high_delta else "medium"
            drafts.append(
                _draft(
                    RATING_DROP,
                    severity,
                    delta=round(delta, 2),
                    avg_7d=round(metrics.avg_7d, 2),
                    avg_30d=round(metrics.avg_30d, 2),
                    samples_7d=metrics.samples_7d,
                )
            )

    if rating <= 2 and metrics.negative_48h >= thresholds.spike_threshold:
        severity = "high" if metrics.negative_48h >= thresholds.spike_threshold + 2 else "medium"
        drafts.append(
            _draft(
                NEGATIVE_SPIKE,
                severity,
                negative_48h=metrics.negative_48h,
                threshold=thresholds.spike_threshold,
            )
        )

    comment_length = len(candidate.comment or "")
    if rating <= 3 and comment_length >= thresholds.long_review_chars:
        severity = "high" if rating <= 2 else "medium"
        drafts.append(_draft(LONG_NEGATIVE_REVIEW, severity, comment_length=comment_length))

    return drafts


class AlertEngine:
    """Evaluates rules for changed reviews and stores deduplicated alerts."""

    def __init__(
        self,
        store: ReviewStore,
        thresholds: AlertThresholds,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._thresholds = thresholds
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def compute_location_metrics(self, location_id: int, now: datetime | None = None) -> LocationMetrics:
        now = now or self._clock()
        rows = self._store.select(
            Review,
            Review.location_id == location_id,
            Review.create_time >= now - timedelta(days=30),
            Review.rating.is_not(None),
        )
        return compute_metrics(((row.create_time, row.rating) for row in rows), now)

    def store_alert(self, account_id: str, location_id: int, draft: AlertDraft, now: datetime) -> bool:
        """Insert the alert unless one already exists for (rule, review)."""

        inserted = self._store.insert_if_absent(
            Alert,
            {
                "account_id": account_id,
                "location_id": location_id,
                "review_name": draft.review_name,
                "review_id": draft.review_id,
                "rule_code": draft.rule_code,
                "severity": draft.severity,
                "payload": draft.payload,
                "triggered_at": now,
            },
            ("rule_code", "review_name"),
        )
        if inserted:
            record_alert(draft.rule_code, draft.severity)
        return inserted

    def _apply(
        self,
        account_id: str,
        location_id: int,
        candidates: Sequence[AlertCandidate],
        metrics: LocationMetrics,
        now: datetime,
    ) -> list[AlertDraft]:
        created: list[AlertDraft] = []
        for candidate in candidates:
            for draft in evaluate_rules(candidate, metrics, self._thresholds, now):
                if self.store_alert(account_id, location_id, draft, now):
                    created.append(draft)
        return created

    def backfill_candidates(self, location_id: int) -> list[AlertCandidate]:
        """Most recent unanswered reviews rated 2 or lower."""

        if self._thresholds.backfill_limit <= 0:
            return []
        rows = self._store.select(
            Review,
            Review.location_id == location_id,
            Review.rating.is_not(None),
            Review.rating <= 2,
            Review.replied_at.is_(None),
            Review.owner_reply_time.is_(None),
            order_by=[Review.create_time.desc(), Review.id.desc()],
            limit=self._thresholds.backfill_limit,
        )
        return [AlertCandidate.from_row(row) for row in rows if not row.has_reply]

    def evaluate(
        self,
        account_id: str,
        location: Location,
        changed: Sequence[NormalizedReview],
    ) -> AlertOutcome:
        """Evaluate changed reviews, then backfill when nothing new fired."""

        now = self._clock()
        metrics = self.compute_location_metrics(location.id, now)
        outcome = AlertOutcome()

        candidates = [AlertCandidate.from_normalized(record) for record in changed]
        outcome.evaluated = len(candidates)
        outcome.new_alerts = self._apply(account_id, location.id, candidates, metrics, now)

        if not outcome.new_alerts:
            backfill = self.backfill_candidates(location.id)
            outcome.backfill_ran = True
            outcome.backfill_evaluated = len(backfill)
            outcome.new_alerts = self._apply(account_id, location.id, backfill, metrics, now)

        if outcome.new_alerts:
            logger.info(
                "Alerts triggered",
                extra={
                    "account_id": account_id,
                    "location_id": location.id,
                    "status": "alerts",
                },
            )
        return outcome
