"""Structured logging for the sync pipeline.

Every line carries the same pipe-delimited context columns so that a single
location pass can be followed across components with ``grep account_id=``.
Fields passed through ``extra`` that are not one of the fixed columns are
appended to the message as sorted ``key=value`` pairs.
"""

from __future__ import annotations

import logging
import sys
from threading import Lock
from typing import Any, Final

from .config import get_settings

CONTEXT_FIELDS: Final[tuple[str, ...]] = (
    "component",
    "account_id",
    "location_id",
    "request_id",
    "status",
    "duration_ms",
)

LOG_FORMAT: Final[str] = (
    "%(asctime)s | %(levelname)s | %(name)s | "
    + " | ".join(f"{field}=%({field})s" for field in CONTEXT_FIELDS)
    + " | %(message)s"
)

_RESERVED_ATTRS: Final[frozenset[str]] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

_configured = False
_configure_lock: Final = Lock()


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        for field in CONTEXT_FIELDS:
            if getattr(record, field, None) is None:
                setattr(record, field, "-")
        rendered = super().format(record)
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and key not in CONTEXT_FIELDS and not key.startswith("_")
        }
        if not extras:
            return rendered
        return rendered + " | " + " ".join(f"{key}={extras[key]}" for key in sorted(extras))


def configure_logging(level: str | None = None, *, force: bool = False) -> None:
    """Install the structured formatter on the root logger.

    Runs once per process unless ``force`` is set. Existing handlers (for
    example those installed by Celery or uvicorn) keep their streams and only
    receive the formatter.
    """

    global _configured
    with _configure_lock:
        if _configured and not force:
            return

        resolved = level or get_settings().log_level
        numeric_level = getattr(logging, resolved.upper(), logging.INFO)
        root = logging.getLogger()
        root.setLevel(numeric_level)

        formatter = StructuredFormatter(LOG_FORMAT)
        if not root.handlers:
            handler = logging.StreamHandler(sys.stdout)
            root.addHandler(handler)
        for handler in root.handlers:
            handler.setFormatter(formatter)
        _configured = True


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Adapter whose bound context is overridden by per-call ``extra``."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:  # type: ignore[override]
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs

    def bind(self, **context: Any) -> StructuredLoggerAdapter:
        """Return a new adapter with ``context`` added to the bound fields."""

        bound = dict(self.extra or {})
        bound.update((key, value) for key, value in context.items() if value is not None)
        return StructuredLoggerAdapter(self.logger, bound)


def setup_logger(
    name: str,
    *,
    level: str | None = None,
    context: dict[str, Any] | None = None,
) -> StructuredLoggerAdapter:
    """Return a structured logger for ``name``.

    Args:
        name: Logger name, normally the calling module's ``__name__``.
        level: Optional per-logger level override.
        context: Fields bound to every record, e.g. ``{"component": "fetcher"}``.
    """

    configure_logging()
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO) if level else logging.NOTSET)
    return StructuredLoggerAdapter(logger, dict(context or {}))


def log_sync_attempt(
    logger: logging.Logger | logging.LoggerAdapter,
    account_id: str,
    location_id: str,
    duration_ms: int,
    status: str,
    **counters: Any,
) -> None:
    """Emit the one-line summary of a location pass.

    ``success`` logs at info level, every other status at error level.
    ``request_id`` is lifted into its context column; remaining keyword
    arguments (inserted, skipped, alerts, ...) are appended as extras.
    """

    status = status or "unknown"
    extra: dict[str, Any] = {
        "account_id": account_id,
        "location_id": location_id,
        "duration_ms": duration_ms,
        "status": status,
    }
    extra.update(counters)
    level = logging.INFO if status.lower() == "success" else logging.ERROR
    logger.log(level, "Location sync %s", status, extra=extra)
