"""Configuration schema models using Pydantic."""

from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from .duration import DurationParseError, parse_duration, validate_duration_range


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


def _checked_duration(value: str, min_seconds: int, max_seconds: int, label: str) -> str:
    try:
        validate_duration_range(parse_duration(value), min_seconds, max_seconds, label)
    except DurationParseError as e:
        raise ValueError(str(e)) from e
    return value


class SchedulerConfig(BaseModel):
    """Recurring-trigger backend and worker pool settings."""

    max_workers: int = Field(
        5, ge=1, le=50, description="Firings executed concurrently; excess firings queue FIFO"
    )
    misfire_grace_time: str = Field(
        "1h", description="How late a missed firing may still run after a restart"
    )
    default_timezone: str = Field(
        "America/Los_Angeles", description="Timezone used when an owner has none"
    )
    default_send_time: str = Field("15:00", description="Default HH:MM delivery time")
    default_send_days: str = Field("Mon,Tue,Wed,Thu,Fri", description="Default delivery weekdays")

    @field_validator("misfire_grace_time")
    @classmethod
    def validate_misfire(cls, v: str) -> str:
        return _checked_duration(v, 60, 86400, "misfire_grace_time")

    @field_validator("default_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def misfire_grace_seconds(self) -> int:
        return parse_duration(self.misfire_grace_time)


class RetryConfig(BaseModel):
    """Backoff policy for retryable firing failures."""

    max_attempts: int = Field(3, ge=1, le=10, description="Total attempts per firing")
    initial_delay: str = Field("1m", description="Delay before the second attempt")
    backoff_multiplier: float = Field(2.0, ge=1.0, le=10.0)
    rate_limit_multiplier: float = Field(
        3.0, ge=1.0, le=20.0, description="Extra factor applied when the source throttles us"
    )
    max_delay: str = Field("30m", description="Upper bound for any single retry delay")

    @field_validator("initial_delay")
    @classmethod
    def validate_initial_delay(cls, v: str) -> str:
        return _checked_duration(v, 1, 3600, "initial_delay")

    @field_validator("max_delay")
    @classmethod
    def validate_max_delay(cls, v: str) -> str:
        return _checked_duration(v, 1, 86400, "max_delay")

    @model_validator(mode="after")
    def validate_delay_order(self):
        if parse_duration(self.initial_delay) > parse_duration(self.max_delay):
            raise ValueError("retry.initial_delay cannot exceed retry.max_delay")
        return self

    @property
    def initial_delay_seconds(self) -> int:
        return parse_duration(self.initial_delay)

    @property
    def max_delay_seconds(self) -> int:
        return parse_duration(self.max_delay)


class SourceClientConfig(BaseModel):
    """Settings for calls to the assignment source API."""

    http_request_timeout: int = Field(10, ge=1, le=120, description="Seconds per request")
    user_agent: str = Field("duedigest/1.0", min_length=1)
    per_page: int = Field(100, ge=1, le=100, description="Page size for course listing")

    @field_validator("user_agent")
    @classmethod
    def strip_user_agent(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("user_agent cannot be empty")
        return stripped


class DeliveryConfig(BaseModel):
    """SMS delivery settings."""

    max_segments: int = Field(
        5, ge=1, le=20, description="Messages longer than this are logged as oversize"
    )
    status_callback_url: str | None = Field(
        None, description="Provider webhook for sent/delivered status updates"
    )


class HistoryConfig(BaseModel):
    """Retention and housekeeping for occurrence history and queue stats."""

    completed_retention: str = Field("7d")
    failed_retention: str = Field("30d")
    cleanup_interval: str = Field("24h")
    stats_log_interval: str = Field("5m")

    @field_validator("completed_retention", "failed_retention")
    @classmethod
    def validate_retention(cls, v: str) -> str:
        return _checked_duration(v, 3600, 365 * 86400, "retention")

    @field_validator("cleanup_interval", "stats_log_interval")
    @classmethod
    def validate_interval(cls, v: str) -> str:
        return _checked_duration(v, 60, 7 * 86400, "interval")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO)
    format: LogFormat = Field(LogFormat.KEY_VALUE)

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object."""

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    source: SourceClientConfig = Field(default_factory=SourceClientConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
