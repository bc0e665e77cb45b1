"""Settings for review_watch.

Two layers feed the pipeline:

* ``GlobalSettings``: deployment values from ``REVIEW_WATCH_*`` environment
  variables or ``.env`` (URLs, secrets, budgets).
* ``ServiceConfiguration``: tunables from ``config/settings.base.yaml``
  overlaid with ``config/settings.<profile>.yaml``.

``build_sync_config`` folds both into the frozen ``SyncConfig`` that every
component receives explicitly.
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

ENV_PREFIX = "REVIEW_WATCH_"
BASE_TEMPLATE = "settings.base.yaml"
ALWAYS_REQUIRED_ENV = (f"{ENV_PREFIX}DATABASE_URL", f"{ENV_PREFIX}CRON_SECRET")


def load_yaml_config(config_path: str | Path) -> dict[str, Any]:
    """Read one YAML template; an empty file yields ``{}``.

    Raises:
        ConfigurationError: the file is missing, unparsable, or not a mapping.
    """

    path = Path(config_path)
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigurationError(f"Configuration template {path} must contain a mapping")
    return document


class DatabasePoolSettings(BaseModel):
    """Connection pooling configuration for the SQLAlchemy engine."""

    model_config = ConfigDict(extra="forbid")

    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    timeout: float = Field(default=30.0, gt=0)
    recycle_seconds: int = Field(default=1800, ge=0)
    pre_ping: bool = True


class AlertThresholds(BaseModel):
    """Tunables for the alert rules and the backfill sweep."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    no_reply_hours: float = Field(default=24.0, gt=0)
    rating_drop_delta: float = Field(default=0.2, ge=0)
    rating_drop_high_delta: float = Field(default=0.5, ge=0)
    rating_drop_min_samples: int = Field(default=5, ge=1)
    spike_threshold: int = Field(default=4, ge=1)
    long_review_chars: int = Field(default=250, ge=1)
    tolerance: Literal["standard", "strict"] = "standard"
    backfill_limit: int = Field(default=20, ge=0)

    @field_validator("tolerance", mode="before")
    @classmethod
    def _normalize_tolerance(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class FetchSettings(BaseModel):
    """Paging and retry behaviour for the external review API."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    page_size: int = Field(default=50, ge=1, le=50)
    max_pages: int = Field(default=20, ge=1)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)


class StorageSettings(BaseModel):
    """Retry and chunking behaviour for storage calls."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    chunk_size: int = Field(default=100, ge=1)
    retry: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(max_attempts=4, base_delay=0.3, jitter=0.1)
    )


class NotificationSettings(BaseModel):
    """Batch limits for the notification dispatcher."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    batch_limit: int = Field(default=25, ge=1)
    enabled: bool = True


class ServiceConfiguration(BaseModel):
    """Validated runtime configuration merged from base and environment overrides."""

    version: int = Field(default=1, ge=1)
    environment: str = "development"
    required_env: list[str] = Field(default_factory=list)
    min_resync_seconds: int = Field(default=120, ge=0)
    reauth_signal_ttl_hours: float = Field(default=6.0, gt=0)
    alerts: AlertThresholds = Field(default_factory=AlertThresholds)
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        return value.lower()


class GlobalSettings(BaseSettings):
    """Global application settings sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    config_profile: str | None = None
    log_level: str = "INFO"
    redis_url: str | None = None
    database_url: str | None = None
    database: DatabasePoolSettings = DatabasePoolSettings()
    config_dir: Path = Path("config")
    cron_secret: str | None = None
    oauth_client_id: str | None = None
    oauth_client_secret: str | None = None
    oauth_token_url: str = "https://oauth2.googleapis.com/token"
    reviews_api_base_url: str = "https://mybusiness.googleapis.com/v4"
    notification_api_url: str = "https://api.resend.com/emails"
    notification_api_key: str | None = None
    notification_sender: str = "alerts@review-watch.local"
    job_queue_max: int = Field(default=50, ge=1)
    job_rate_limit_delay_seconds: int = Field(default=60, ge=1)
    time_budget_seconds: float = Field(default=24.0, gt=0)
    http_timeout_seconds: float = Field(default=15.0, gt=0)
    schedule_interval_seconds: int = Field(default=300, ge=1)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        """Ensure log level values are uppercase for logging config."""

        return value.upper()

    @field_validator("config_dir", mode="before")
    @classmethod
    def _expand_paths(cls, value: Any) -> Any:
        """Allow string paths and expand user markers."""

        if isinstance(value, Path):
            return value
        if isinstance(value, str):
            return Path(value).expanduser()
        return value

    @field_validator("config_profile", mode="before")
    @classmethod
    def _normalize_config_profile(cls, value: Any) -> Any:
        if value is None:
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValueError("config_profile must be a non-empty string if provided")
        return value.strip().lower()

    @field_validator("cron_secret", "notification_api_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


@dataclass(frozen=True, slots=True)
class SyncConfig:
    """Immutable per-process configuration handed to every pipeline component."""

    oauth_token_url: str
    oauth_client_id: str | None
    oauth_client_secret: str | None
    reviews_api_base_url: str
    notification_api_url: str
    notification_api_key: str | None
    notification_sender: str
    http_timeout_seconds: float
    time_budget_seconds: float
    job_queue_max: int
    job_rate_limit_delay_seconds: int
    min_resync_seconds: int
    reauth_signal_ttl_hours: float
    alerts: AlertThresholds
    fetch: FetchSettings
    storage: StorageSettings
    notifications: NotificationSettings


def _overlay(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively overlay ``override`` on ``base``; inputs are left untouched."""

    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = _overlay(current, value)
        merged[key] = value
    return merged


def _read_template(path: Path) -> dict[str, Any]:
    if not path.is_file():
        logger.debug("Configuration template %s not present", path)
        return {}
    return load_yaml_config(path)


@lru_cache(maxsize=8)
def _service_configuration_for(config_dir: str, profile: str) -> ServiceConfiguration:
    directory = Path(config_dir)
    document = _overlay(
        _read_template(directory / BASE_TEMPLATE),
        _read_template(directory / f"settings.{profile}.yaml"),
    )
    document.setdefault("environment", profile)
    try:
        return ServiceConfiguration.model_validate(document)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid configuration for profile '{profile}': {exc}") from exc


def get_service_configuration(
    settings: "GlobalSettings | None" = None,
    *,
    reload: bool = False,
) -> ServiceConfiguration:
    """Return the validated template configuration for the active profile.

    The profile is ``config_profile`` when set, otherwise ``environment``.
    """

    settings = settings or get_settings()
    if reload:
        _service_configuration_for.cache_clear()
    profile = (settings.config_profile or settings.environment).lower()
    return _service_configuration_for(str(settings.config_dir), profile)

def build_sync_config(
    settings: GlobalSettings | None = None,
    service_config: ServiceConfiguration | None = None,
) -> SyncConfig:
    """Assemble the explicit configuration struct used by the sync pipeline."""

    settings = settings or get_settings()
    service_config = service_config or get_service_configuration(settings)
    return SyncConfig(
        oauth_token_url=settings.oauth_token_url,
        oauth_client_id=settings.oauth_client_id,
        oauth_client_secret=settings.oauth_client_secret,
        reviews_api_base_url=settings.reviews_api_base_url.rstrip("/"),
        notification_api_url=settings.notification_api_url,
        notification_api_key=settings.notification_api_key,
        notification_sender=settings.notification_sender,
        http_timeout_seconds=settings.http_timeout_seconds,
        time_budget_seconds=settings.time_budget_seconds,
        job_queue_max=settings.job_queue_max,
        job_rate_limit_delay_seconds=settings.job_rate_limit_delay_seconds,
        min_resync_seconds=service_config.min_resync_seconds,
        reauth_signal_ttl_hours=service_config.reauth_signal_ttl_hours,
        alerts=service_config.alerts,
        fetch=service_config.fetch,
        storage=service_config.storage,
        notifications=service_config.notifications,
    )


def ensure_runtime_configuration(settings: GlobalSettings | None = None) -> GlobalSettings:
    """Fail fast when templates are invalid or required variables are unset."""

    settings = settings or get_settings()
    service_config = get_service_configuration(settings, reload=True)

    required = set(ALWAYS_REQUIRED_ENV) | set(service_config.required_env)
    missing = sorted(name for name in required if not os.environ.get(name))
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )
    return settings


@lru_cache(maxsize=1)
def _settings() -> GlobalSettings:
    return GlobalSettings()


def get_settings(*, reload: bool = False) -> GlobalSettings:
    if reload:
        _settings.cache_clear()
    return _settings()


def clear_settings_cache() -> None:
    """Forget cached settings and templates so the next call re-reads them."""

    _settings.cache_clear()
    _service_configuration_for.cache_clear()
