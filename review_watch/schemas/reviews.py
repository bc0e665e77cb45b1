"""Boundary models for review payloads returned by the external API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

STAR_RATINGS: dict[str, int] = {"ONE": 1, "TWO": 2, "THREE": 3, "FOUR": 4, "FIVE": 5}

ReviewShape = Literal["resource", "legacy", "unidentified"]


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp into an aware UTC datetime, or None."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def star_rating_to_int(value: Any) -> int | None:
    """Map the ``ONE``..``FIVE`` enum (or a 1-5 integer) to an int; else None."""

    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 1 <= value <= 5 else None
    if isinstance(value, str):
        return STAR_RATINGS.get(value.strip().upper())
    return None


def _clean_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


class Reviewer(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    display_name: str | None = Field(default=None, alias="displayName")


class ReviewReply(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    comment: str | None = None
    update_time: datetime | None = Field(default=None, alias="updateTime")

    @field_validator("update_time", mode="before")
    @classmethod
    def _parse_time(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)


class OriginalText(BaseModel):
    model_config = ConfigDict(extra="allow")

    text: str | None = None


class ExternalReview(BaseModel):
    """One review record as returned by the reviews API.

    Unknown fields are kept; the full input is preserved on ``raw`` for audit.
    ``shape`` tags which identity the record carries.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str | None = None
    review_id: str | None = Field(default=None, alias="reviewId")
    reviewer: Reviewer | None = None
    star_rating: str | int | None = Field(default=None, alias="starRating")
    comment: str | None = None
    comment_original: str | None = None
    original_text: OriginalText | None = Field(default=None, alias="originalText")
    create_time: datetime | None = Field(default=None, alias="createTime")
    update_time: datetime | None = Field(default=None, alias="updateTime")
    review_reply: ReviewReply | None = Field(default=None, alias="reviewReply")
    shape: ReviewShape = "unidentified"
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @field_validator("create_time", "update_time", mode="before")
    @classmethod
    def _parse_times(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @field_validator("name", "review_id", mode="before")
    @classmethod
    def _blank_identity(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("reviewer", "review_reply", "original_text", mode="before")
    @classmethod
    def _drop_non_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @model_validator(mode="before")
    @classmethod
    def _capture_raw(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            data["raw"] = dict(data)
            data.pop("shape", None)
        return data

    @model_validator(mode="after")
    def _tag_shape(self) -> ExternalReview:
        if self.name:
            self.shape = "resource"
        elif self.review_id:
            self.shape = "legacy"
        else:
            self.shape = "unidentified"
        return self

    @property
    def rating(self) -> int | None:
        return star_rating_to_int(self.star_rating)

    @property
    def comment_text(self) -> str | None:
        """Original-language comment, falling back to the translated one."""

        if self.comment_original:
            return self.comment_original
        if self.original_text is not None and self.original_text.text:
            return self.original_text.text
        return self.comment


@dataclass(slots=True)
class NormalizedReview:
    """Canonical review snapshot keyed on ``review_name``."""

    review_name: str
    review_id: str | None
    location_name: str
    rating: int | None
    comment: str | None
    author_name: str | None
    create_time: datetime | None
    update_time: datetime | None
    reply_text: str | None
    replied_at: datetime | None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def freshness(self) -> datetime | None:
        return self.update_time or self.create_time

    def to_row(self, account_id: str, location_id: int, synced_at: datetime) -> dict[str, Any]:
        """Return the column mapping written by the review upsert."""

        return {
            "account_id": account_id,
            "location_id": location_id,
            "location_name": self.location_name,
            "review_name": self.review_name,
            "review_id": self.review_id,
            "author_name": self.author_name,
            "rating": self.rating,
            "comment": self.comment,
            "create_time": self.create_time,
            "update_time": self.update_time,
            "reply_text": self.reply_text,
            "replied_at": self.replied_at,
            "owner_reply": self.reply_text,
            "owner_reply_time": self.replied_at,
            "last_synced_at": synced_at,
            "raw": self.raw,
        }


def normalize_review(record: ExternalReview, location_name: str) -> NormalizedReview | None:
    """Map an external record onto its canonical identity.

    The resource name is used when present; a legacy id is namespaced under
    the location. Records with neither return None.
    """

    if record.shape == "resource":
        review_name = record.name or ""
    elif record.shape == "legacy":
        review_name = f"{location_name}/reviews/{record.review_id}"
    else:
        return None

    review_id = record.review_id
    if review_id is None and "/reviews/" in review_name:
        review_id = review_name.rsplit("/", 1)[-1] or None

    reply = record.review_reply
    return NormalizedReview(
        review_name=review_name,
        review_id=review_id,
        location_name=location_name,
        rating=record.rating,
        comment=_clean_text(record.comment_text),
        author_name=record.reviewer.display_name if record.reviewer else None,
        create_time=record.create_time,
        update_time=record.update_time,
        reply_text=_clean_text(reply.comment) if reply else None,
        replied_at=reply.update_time if reply else None,
        raw=record.raw,
    )
