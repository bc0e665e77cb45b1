"""Tests for settings and YAML configuration templates."""

from __future__ import annotations

from pathlib import Path

import pytest

from review_watch.exceptions import ConfigurationError
from review_watch.utils.config import (
    build_sync_config,
    clear_settings_cache,
    ensure_runtime_configuration,
    get_service_configuration,
    get_settings,
)


def test_base_template_values_are_loaded():
    service = get_service_configuration(reload=True)

    assert service.environment == "test"
    assert service.min_resync_seconds == 120
    assert service.alerts.no_reply_hours == 24
    assert service.alerts.rating_drop_delta == pytest.approx(0.2)
    assert service.fetch.page_size == 50
    assert service.storage.retry.max_attempts == 4


def test_profile_override_is_deep_merged(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    (tmp_path / "settings.base.yaml").write_text(
        "alerts:\n  spike_threshold: 4\n  long_review_chars: 250\n", encoding="utf-8"
    )
    (tmp_path / "settings.staging.yaml").write_text(
        "alerts:\n  spike_threshold: 7\n  tolerance: STRICT\n", encoding="utf-8"
    )
    monkeypatch.setenv("REVIEW_WATCH_CONFIG_DIR", str(tmp_path))
    monkeypatch.setenv("REVIEW_WATCH_ENVIRONMENT", "staging")
    clear_settings_cache()

    service = get_service_configuration()

    assert service.alerts.spike_threshold == 7
    assert service.alerts.long_review_chars == 250
    assert service.alerts.tolerance == "strict"


def test_missing_templates_fall_back_to_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("REVIEW_WATCH_CONFIG_DIR", str(tmp_path))
    clear_settings_cache()

    service = get_service_configuration()

    assert service.alerts.backfill_limit == 20
    assert service.reauth_signal_ttl_hours == 6


def test_invalid_template_raises_configuration_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    (tmp_path / "settings.base.yaml").write_text("alerts:\n  spike_threshold: 0\n", encoding="utf-8")
    monkeypatch.setenv("REVIEW_WATCH_CONFIG_DIR", str(tmp_path))
    clear_settings_cache()

    with pytest.raises(ConfigurationError):
        get_service_configuration()


def test_runtime_configuration_requires_secrets(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("REVIEW_WATCH_CRON_SECRET", raising=False)
    clear_settings_cache()

    with pytest.raises(ConfigurationError) as excinfo:
        ensure_runtime_configuration(get_settings())

    assert "REVIEW_WATCH_CRON_SECRET" in str(excinfo.value)


def test_environment_overrides_reach_sync_config(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("REVIEW_WATCH_TIME_BUDGET_SECONDS", "12.5")
    monkeypatch.setenv("REVIEW_WATCH_REVIEWS_API_BASE_URL", "https://reviews.example.test/v4/")
    clear_settings_cache()

    config = build_sync_config()

    assert config.time_budget_seconds == pytest.approx(12.5)
    assert config.reviews_api_base_url == "https://reviews.example.test/v4"
