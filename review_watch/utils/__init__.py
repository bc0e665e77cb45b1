"""Utilities package initialization."""
from .config import (
    GlobalSettings,
    ServiceConfiguration,
    SyncConfig,
    build_sync_config,
    ensure_runtime_configuration,
    get_service_configuration,
    get_settings,
    load_yaml_config,
)
from .logging import log_sync_attempt, setup_logger
from .retry import RetryPolicy, call_with_retry, execute_with_retry

__all__ = [
    "GlobalSettings",
    "ServiceConfiguration",
    "SyncConfig",
    "build_sync_config",
    "ensure_runtime_configuration",
    "get_settings",
    "get_service_configuration",
    "load_yaml_config",
    "log_sync_attempt",
    "setup_logger",
    "RetryPolicy",
    "call_with_retry",
    "execute_with_retry",
]
