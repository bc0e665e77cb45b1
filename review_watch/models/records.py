"""SQLAlchemy model definitions for review sync persistence."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UTCDateTime, utcnow


class Connection(Base):
    """OAuth credentials for one (account, provider) pair."""

    __tablename__ = "connections"
    __table_args__ = (UniqueConstraint("account_id", "provider", name="uq_connections_account_provider"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(64), nullable=False, default="google")
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Connection account={self.account_id} provider={self.provider}>"


class Location(Base):
    """External business location imported for an account."""

    __tablename__ = "locations"
    __table_args__ = (
        UniqueConstraint("account_id", "location_resource_name", name="uq_locations_account_resource"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(64), nullable=False, default="google")
    account_resource_name: Mapped[str] = mapped_column(String(255), nullable=False)
    location_resource_name: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    @property
    def full_resource_name(self) -> str:
        """``accounts/{a}/locations/{l}`` form used by the reviews API."""

        if self.location_resource_name.startswith("accounts/"):
            return self.location_resource_name
        return f"{self.account_resource_name}/{self.location_resource_name}"

    @property
    def reviews_path(self) -> str:
        """Relative API path listing this location's reviews."""

        return f"{self.full_resource_name}/reviews"

    def __repr__(self) -> str:
        return f"<Location id={self.id} resource={self.location_resource_name}>"


class Review(Base):
    """Latest stored snapshot of one external review."""

    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("account_id", "review_name", name="uq_reviews_account_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    location_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    location_name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    review_name: Mapped[str] = mapped_column(String(512), nullable=False)
    review_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    author_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    create_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
    update_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    reply_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    replied_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    owner_reply: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_reply_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    raw: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)

    @property
    def has_reply(self) -> bool:
        """True when any reply field (current or legacy) is populated."""

        return bool(
            (self.reply_text and self.reply_text.strip())
            or self.replied_at
            or (self.owner_reply and self.owner_reply.strip())
            or self.owner_reply_time
        )

    def __repr__(self) -> str:
        return f"<Review name={self.review_name} rating={self.rating}>"


class SyncRun(Base):
    """Audit record of one sync attempt for an (account, location)."""

    __tablename__ = "sync_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    location_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    run_type: Mapped[str] = mapped_column(String(64), nullable=False, default="reviews")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="running", index=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<SyncRun id={self.id} status={self.status}>"


class ImportStatus(Base):
    """Latest-only import progress snapshot per (account, location)."""

    __tablename__ = "import_status"
    __table_args__ = (UniqueConstraint("account_id", "location_id", name="uq_import_status_account_location"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(255), nullable=False)
    location_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="idle")
    aborted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    pages_exhausted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stats: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    errors_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class StateEntry(Base):
    """Small keyed state values per account (e.g. the durable reauth signal)."""

    __tablename__ = "state_entries"
    __table_args__ = (UniqueConstraint("account_id", "key", name="uq_state_entries_account_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(255), nullable=False)
    key: Mapped[str] = mapped_column(String(128), nullable=False)
    value: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class Job(Base):
    """Queued unit of sync work."""

    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="queued", index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    run_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False, index=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Job id={self.id} account={self.account_id} status={self.status}>"


class Alert(Base):
    """Triggered alert, unique per (rule code, review)."""

    __tablename__ = "alerts"
    __table_args__ = (UniqueConstraint("rule_code", "review_name", name="uq_alerts_rule_review"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    location_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    review_name: Mapped[str] = mapped_column(String(512), nullable=False)
    review_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rule_code: Mapped[str] = mapped_column(String(64), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    payload: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    triggered_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_notified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Alert rule={self.rule_code} review={self.review_name} severity={self.severity}>"


class AccountProfile(Base):
    """Recipient lookup for alert notifications."""

    __tablename__ = "account_profiles"

    account_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
