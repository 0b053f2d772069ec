"""Configuration management: YAML settings plus environment secrets."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, validate_config_file
from .models import (
    AppConfig,
    DeliveryConfig,
    HistoryConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    RetryConfig,
    SchedulerConfig,
    SourceClientConfig,
)

__all__ = [
    "load_config",
    "validate_config_file",
    "load_environment_config",
    "AppConfig",
    "SchedulerConfig",
    "RetryConfig",
    "SourceClientConfig",
    "DeliveryConfig",
    "HistoryConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    "LogLevel",
    "LogFormat",
    "ConfigurationError",
]
