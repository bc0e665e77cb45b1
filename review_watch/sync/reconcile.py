"""Reconciliation of fetched reviews against stored state."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..exceptions import ReconciliationLoadFailure, StorageError, UpsertFailure
from ..models.records import Location, Review
from ..models.store import ReviewStore
from ..schemas.reviews import ExternalReview, NormalizedReview, normalize_review
from ..utils.logging import setup_logger

CHANGE_FIELDS: tuple[str, ...] = ("rating", "comment", "update_time", "reply_text", "replied_at")

REVIEW_CONFLICT_KEYS: tuple[str, ...] = ("account_id", "review_name")

logger = setup_logger(__name__, context={"component": "reconcile"})

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(slots=True)
class ReconcileResult:
    """Counts and change set for one location pass."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    changed: list[NormalizedReview] = field(default_factory=list)
    prior_load_failed: bool = False
    written: int = 0

    def as_stats(self) -> dict[str, int]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "changed": len(self.changed),
        }


@dataclass(slots=True)
class Classification:
    inserts: list[NormalizedReview] = field(default_factory=list)
    updates: list[NormalizedReview] = field(default_factory=list)
    changed: list[NormalizedReview] = field(default_factory=list)


def dedupe(records: Iterable[NormalizedReview]) -> tuple[list[NormalizedReview], int]:
    """Keep one snapshot per identity; a later same-or-newer snapshot wins.

    Returns the survivors in first-seen order and the number dropped.
    """

    survivors: dict[str, NormalizedReview] = {}
    dropped = 0
    for record in records:
        current = survivors.get(record.review_name)
        if current is None:
            survivors[record.review_name] = record
            continue
        dropped += 1
        if (record.freshness or _EPOCH) >= (current.freshness or _EPOCH):
            survivors[record.review_name] = record
    return list(survivors.values()), dropped


def has_changed(record: NormalizedReview, prior: Any) -> bool:
    """True if any alert-relevant field differs from the stored snapshot."""

    return any(getattr(record, name) != getattr(prior, name, None) for name in CHANGE_FIELDS)


def classify(records: Sequence[NormalizedReview], prior_index: Mapping[str, Any]) -> Classification:
    """Split deduplicated records into inserts and updates and pick the changed ones."""

    outcome = Classification()
    for record in records:
        prior = prior_index.get(record.review_name)
        if prior is None:
            outcome.inserts.append(record)
            outcome.changed.append(record)
            continue
        outcome.updates.append(record)
        if has_changed(record, prior):
            outcome.changed.append(record)
    return outcome


class ReconciliationEngine:
    """Maps fetched records onto review rows and writes them idempotently."""

    def __init__(
        self,
        store: ReviewStore,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def load_prior(self, account_id: str, review_names: Sequence[str]) -> dict[str, Review]:
        """Load stored snapshots in chunks; any chunk failure fails the whole load."""

        try:
            rows = self._store.select_in_chunks(
                Review,
                Review.review_name,
                review_names,
                Review.account_id == account_id,
            )
        except StorageError as exc:
            raise ReconciliationLoadFailure(str(exc)) from exc
        return {row.review_name: row for row in rows}

    def reconcile(
        self,
        account_id: str,
        location: Location,
        records: Sequence[ExternalReview],
        prior_index: Mapping[str, Any] | None = None,
        *,
        dry_run: bool = False,
    ) -> ReconcileResult:
        """Normalize, dedupe, classify and upsert one location's fetched reviews.

        Raises:
            UpsertFailure: the review upsert failed; nothing was credited.
        """

        result = ReconcileResult()
        log = logger.bind(account_id=account_id, location_id=location.id)

        normalized: list[NormalizedReview] = []
        for record in records:
            item = normalize_review(record, location.full_resource_name)
            if item is None:
                result.skipped += 1
                continue
            normalized.append(item)

        survivors, dropped = dedupe(normalized)
        result.skipped += dropped

        if prior_index is None:
            try:
                prior_index = self.load_prior(account_id, [r.review_name for r in survivors])
            except ReconciliationLoadFailure as exc:
                log.warning(
                    "Prior review state unavailable; counting batch as skipped",
                    extra={"status": "load_failed", "error": str(exc)},
                )
                result.prior_load_failed = True

        if result.prior_load_failed:
            result.skipped += len(survivors)
        else:
            outcome = classify(survivors, prior_index or {})
            result.inserted = len(outcome.inserts)
            result.updated = len(outcome.updates)
            result.changed = outcome.changed

        if dry_run:
            return result

        synced_at = self._clock()
        rows = [record.to_row(account_id, location.id, synced_at) for record in survivors]
        try:
            result.written = self._store.upsert(Review, rows, REVIEW_CONFLICT_KEYS)
        except StorageError as exc:
            raise UpsertFailure(f"Review upsert failed for location {location.id}: {exc}") from exc

        self._store.update(Location, {"last_synced_at": synced_at}, Location.id == location.id)
        location.last_synced_at = synced_at
        return result
