"""Paged reader for the external reviews API."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError

from ..exceptions import FetchError
from ..schemas.reviews import ExternalReview
from ..utils.config import FetchSettings
from ..utils.logging import setup_logger
from ..utils.retry import execute_with_retry

logger = setup_logger(__name__, context={"component": "fetcher"})


@dataclass(slots=True)
class FetchResult:
    """Everything a full paged read produced."""

    records: list[ExternalReview] = field(default_factory=list)
    not_found: bool = False
    pages_fetched: int = 0
    pages_exhausted: bool = False
    http_statuses: dict[int, int] = field(default_factory=dict)
    rejected: int = 0
    last_page_token: str | None = None
    average_rating: float | None = None
    total_review_count: int | None = None


class PaginatedFetcher:
    """Walks ``nextPageToken`` pages with bounded retries and loop protection."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: FetchSettings,
        *,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._client = client
        self._settings = settings
        self._sleep = sleep

    async def fetch_all(self, url: str, token: str) -> FetchResult:
        """Read every page of ``url``.

        A 404 ends the read with ``not_found``. A repeated page token or the
        page cap ends it with ``pages_exhausted``. Any other non-2xx status
        left after retries raises :class:`FetchError`.
        """

        result = FetchResult()
        seen_tokens: set[str] = set()
        page_token: str | None = None
        headers = {"Authorization": f"Bearer {token}"}

        def _bump(response: httpx.Response) -> None:
            status = response.status_code
            result.http_statuses[status] = result.http_statuses.get(status, 0) + 1

        while True:
            if result.pages_fetched >= self._settings.max_pages:
                result.pages_exhausted = True
                logger.warning(
                    "Page cap reached", extra={"status": "pages_exhausted", "url": url}
                )
                break

            params: dict[str, Any] = {"pageSize": self._settings.page_size}
            if page_token:
                params["pageToken"] = page_token

            async def _send(params: dict[str, Any] = params) -> httpx.Response:
                return await self._client.get(url, params=params, headers=headers)

            try:
                response = await execute_with_retry(
                    _send,
                    policy=self._settings.retry,
                    on_response=_bump,
                    log=logger,
                    sleep=self._sleep,
                )
            except httpx.HTTPError as exc:
                raise FetchError(
                    0,
                    str(exc),
                    pages=result.pages_fetched,
                    http_statuses=result.http_statuses,
                ) from exc

            if response.status_code == 404:
                result.not_found = True
                break
            if not response.is_success:
                raise FetchError(
                    response.status_code,
                    _error_message(response),
                    pages=result.pages_fetched,
                    http_statuses=result.http_statuses,
                )

            payload = _json_body(response)
            result.pages_fetched += 1
            self._collect(payload, result)

            next_token = payload.get("nextPageToken")
            if not isinstance(next_token, str) or not next_token:
                break
            if next_token in seen_tokens:
                result.pages_exhausted = True
                logger.warning(
                    "Repeated page token; stopping pagination",
                    extra={"status": "pages_exhausted", "url": url},
                )
                break
            seen_tokens.add(next_token)
            page_token = next_token
            result.last_page_token = next_token

        return result

    def _collect(self, payload: dict[str, Any], result: FetchResult) -> None:
        raw_records = payload.get("reviews")
        if raw_records is None:
            raw_records = payload.get("records", [])
        if not isinstance(raw_records, list):
            raw_records = []

        for item in raw_records:
            if not isinstance(item, dict):
                result.rejected += 1
                continue
            try:
                result.records.append(ExternalReview.model_validate(item))
            except ValidationError as exc:
                result.rejected += 1
                logger.debug("Rejected malformed review record: %s", exc.errors()[:1])

        if result.average_rating is None and isinstance(payload.get("averageRating"), (int, float)):
            result.average_rating = float(payload["averageRating"])
        if result.total_review_count is None and isinstance(payload.get("totalReviewCount"), int):
            result.total_review_count = payload["totalReviewCount"]


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _error_message(response: httpx.Response) -> str:
    payload = _json_body(response)
    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])[:500]
    return response.text[:500]
