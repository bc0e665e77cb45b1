"""Retry policy shared by the review fetcher, token refresh and storage calls."""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, TypeVar, cast

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryableStatusError(Exception):
    """Internal exception used to signal retryable HTTP status codes."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"Retryable HTTP status {response.status_code}")
        self.response = response


_RETRYABLE_TRANSPORT_ERRORS = (
    httpx.TimeoutException,
    httpx.TransportError,
)


class RetryPolicy(BaseModel):
    """Bounded exponential backoff with jitter."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=0.35, gt=0)
    max_delay: float | None = Field(default=10.0, gt=0)
    jitter: float = Field(default=0.14, ge=0)
    retry_statuses: frozenset[int] = Field(
        default_factory=lambda: frozenset({429, 500, 502, 503, 504, 520})
    )
    respect_retry_after: bool = True

    @field_validator("retry_statuses", mode="before")
    @classmethod
    def _coerce_status_codes(cls, value: Any) -> frozenset[int]:
        if value is None:
            return frozenset()
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError("retry_statuses must be a sequence of integers")
        return frozenset(int(item) for item in value)

    def is_retryable_status(self, status_code: int) -> bool:
        """Return True for 429, any 5xx, or an explicitly listed status."""

        return status_code in self.retry_statuses or status_code == 429 or status_code >= 500

    def delay_for(self, attempt_number: int) -> float:
        """Return the sleep before the attempt following ``attempt_number``."""

        attempt_number = max(attempt_number, 1)
        delay = self.base_delay * (2 ** (attempt_number - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)
        return max(delay, 0.0)

    def describe(self) -> dict[str, Any]:
        """Return a serialisable summary useful for logging/metrics."""

        return {
            "max_attempts": self.max_attempts,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
            "jitter": self.jitter,
            "retry_statuses": sorted(self.retry_statuses),
        }


def _parse_retry_after(value: str | None) -> float | None:
    if value is None:
        return None
    trimmed = value.strip()
    if trimmed == "":
        return None
    if trimmed.isdigit():
        return max(float(trimmed), 0.0)
    try:
        parsed = parsedate_to_datetime(trimmed)
    except (TypeError, ValueError):
        logger.warning("Failed to parse Retry-After header: %s", trimmed)
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    delay = (parsed - datetime.now(timezone.utc)).total_seconds()
    return max(delay, 0.0)


def _wait_strategy(policy: RetryPolicy) -> Callable[[RetryCallState], float]:
    def _wait(retry_state: RetryCallState) -> float:
        delay = policy.delay_for(retry_state.attempt_number)

        outcome = retry_state.outcome
        if policy.respect_retry_after and outcome is not None and outcome.failed:
            exception = outcome.exception()
            if isinstance(exception, RetryableStatusError):
                header_delay = _parse_retry_after(exception.response.headers.get("retry-after"))
                if header_delay is not None and policy.max_delay is not None:
                    delay = max(delay, min(header_delay, policy.max_delay))
        return delay

    return _wait


def _sleep_logger(log: logging.Logger | logging.LoggerAdapter | None) -> logging.Logger:
    logger_to_use = log or logger
    if isinstance(logger_to_use, logging.LoggerAdapter):
        return cast(logging.Logger, logger_to_use.logger)
    return logger_to_use


def _http_retry_error_callback(retry_state: RetryCallState) -> httpx.Response:
    outcome = retry_state.outcome
    if outcome is None:
        raise RuntimeError("Retry attempt completed without outcome")
    if outcome.failed:
        exception = outcome.exception()
        if isinstance(exception, RetryableStatusError):
            return exception.response
        if exception is None:
            raise RuntimeError("Retry attempt raised an unknown exception")
        raise exception
    result = outcome.result()
    if isinstance(result, httpx.Response):
        return result
    raise RuntimeError("Retry attempt produced an unexpected result type")


async def execute_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    *,
    policy: RetryPolicy,
    on_response: Callable[[httpx.Response], None] | None = None,
    log: logging.Logger | logging.LoggerAdapter | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> httpx.Response:
    """Send an HTTP request, retrying transport errors and retryable statuses.

    ``on_response`` sees every response, including the ones that get retried.
    After the last attempt the final response is returned as-is, so callers
    decide how to surface a still-failing status.
    """

    def _is_retryable(exc: BaseException) -> bool:
        return isinstance(exc, (RetryableStatusError, *_RETRYABLE_TRANSPORT_ERRORS))

    retrying_kwargs: dict[str, Any] = {
        "stop": stop_after_attempt(policy.max_attempts),
        "wait": _wait_strategy(policy),
        "retry": retry_if_exception(_is_retryable),
        "before_sleep": before_sleep_log(_sleep_logger(log), logging.WARNING),
        "reraise": False,
        "retry_error_callback": _http_retry_error_callback,
    }
    if sleep is not None:
        retrying_kwargs["sleep"] = sleep

    response: httpx.Response | None = None
    async for attempt in AsyncRetrying(**retrying_kwargs):
        with attempt:
            response = await send()
            if on_response is not None:
                on_response(response)
            if policy.is_retryable_status(response.status_code):
                raise RetryableStatusError(response)

    if response is None:  # pragma: no cover
        raise RuntimeError("Retry loop exited without producing a response")
    return response


def call_with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    retryable: Callable[[BaseException], bool],
    log: logging.Logger | logging.LoggerAdapter | None = None,
    sleep: Callable[[float], None] | None = None,
) -> T:
    """Run a synchronous operation under the retry policy.

    Non-retryable exceptions propagate immediately; the last retryable
    exception is re-raised once attempts are exhausted.
    """

    retrying_kwargs: dict[str, Any] = {
        "stop": stop_after_attempt(policy.max_attempts),
        "wait": _wait_strategy(policy),
        "retry": retry_if_exception(retryable),
        "before_sleep": before_sleep_log(_sleep_logger(log), logging.WARNING),
        "reraise": True,
    }
    if sleep is not None:
        retrying_kwargs["sleep"] = sleep

    for attempt in Retrying(**retrying_kwargs):
        with attempt:
            return operation()
    raise RuntimeError("Retry loop exited without producing a result")  # pragma: no cover
