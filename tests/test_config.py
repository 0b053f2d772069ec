"""Integration tests for configuration module."""

from pathlib import Path

import pytest
from cryptography.fernet import Fernet

from duedigest.config import (
    AppConfig,
    ConfigurationError,
    load_config,
    validate_config_file,
)
from duedigest.config.duration import DurationParseError, parse_duration, validate_duration_range
from duedigest.config.environment import DEFAULT_DATABASE_URL, load_environment_config
from verify_config import verify_config_structure

EXAMPLE_CONFIG = Path(__file__).parent.parent / "config.example.yaml"


def write_config(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Mock required environment variables for testing."""
    monkeypatch.setenv("TWILIO_ACCOUNT_SID", "AC123")
    monkeypatch.setenv("TWILIO_AUTH_TOKEN", "secret")
    monkeypatch.setenv("TWILIO_PHONE_NUMBER", "+15550000000")
    monkeypatch.setenv("ENCRYPTION_KEY", Fernet.generate_key().decode("ascii"))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("JOBSTORE_URL", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)


class TestConfigurationLoading:
    """Test configuration loading from YAML files."""

    def test_load_example_config(self, mock_env_vars):
        app_config, env_config = load_config(EXAMPLE_CONFIG)

        assert app_config.scheduler.max_workers == 5
        assert app_config.scheduler.misfire_grace_seconds == 3600
        assert app_config.retry.initial_delay_seconds == 60
        assert app_config.retry.max_delay_seconds == 1800
        assert app_config.logging.format == "key-value"
        assert env_config.twilio_phone_number == "+15550000000"

    def test_sections_default_when_omitted(self, tmp_path, mock_env_vars):
        app_config, _ = load_config(write_config(tmp_path, "logging:\n  level: DEBUG\n"))

        assert app_config.logging.level == "DEBUG"
        assert app_config.retry.max_attempts == 3
        assert app_config.scheduler.default_send_days == "Mon,Tue,Wed,Thu,Fri"

    def test_iso8601_durations(self, tmp_path, mock_env_vars):
        app_config, _ = load_config(write_config(tmp_path, "retry:\n  initial_delay: PT2M\n  max_delay: PT1H\n"))
        assert app_config.retry.initial_delay_seconds == 120

    def test_config_file_not_found(self, tmp_path, mock_env_vars):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml_syntax(self, tmp_path, mock_env_vars):
        with pytest.raises(ConfigurationError, match="Failed to parse YAML"):
            load_config(write_config(tmp_path, "retry: [unclosed\n"))

    def test_empty_file(self, tmp_path, mock_env_vars):
        with pytest.raises(ConfigurationError, match="empty"):
            load_config(write_config(tmp_path, ""))


class TestConfigurationValidation:
    """Schema checks are aggregated into one ConfigurationError."""

    def test_errors_collected(self, tmp_path, mock_env_vars):
        text = "scheduler:\n  max_workers: 0\n  default_timezone: Mars/Base\nretry:\n  initial_delay: soon\n"

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(write_config(tmp_path, text))

        paths = " ".join(exc_info.value.errors)
        assert "scheduler -> max_workers" in paths
        assert "scheduler -> default_timezone" in paths
        assert "retry -> initial_delay" in paths

    def test_initial_delay_cannot_exceed_max(self):
        with pytest.raises(ValueError):
            AppConfig.model_validate({"retry": {"initial_delay": "1h", "max_delay": "10m"}})

    def test_misfire_grace_too_short(self):
        with pytest.raises(ValueError):
            AppConfig.model_validate({"scheduler": {"misfire_grace_time": "10s"}})

    def test_soft_warnings(self, tmp_path, mock_env_vars):
        text = "scheduler:\n  max_workers: 20\nretry:\n  max_attempts: 1\n  initial_delay: 10s\n"
        with pytest.warns(UserWarning) as record:
            load_config(write_config(tmp_path, text))

        messages = [str(w.message) for w in record]
        assert any("max_workers=20" in m for m in messages)
        assert any("disables retries" in m for m in messages)
        assert any("initial_delay" in m for m in messages)


class TestDurationParsing:
    """Test duration string parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [("90s", 90), ("1m", 60), ("24h", 86400), ("7d", 604800), ("1h30m", 5400), ("PT1M", 60), ("P1DT2H", 93600)],
    )
    def test_parse(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "soon", "10x", "PT", "0m"])
    def test_parse_invalid(self, value):
        with pytest.raises(DurationParseError):
            parse_duration(value)

    def test_validate_duration_range(self):
        validate_duration_range(60, 60, 120)
        with pytest.raises(DurationParseError, match="too short"):
            validate_duration_range(30, 60, 120)
        with pytest.raises(DurationParseError, match="too long"):
            validate_duration_range(300, 60, 120)


class TestEnvironmentVariables:
    """Test environment variable loading."""

    def test_defaults(self, mock_env_vars):
        env_config = load_environment_config()

        assert env_config.database_url == DEFAULT_DATABASE_URL
        assert env_config.jobstore_url == DEFAULT_DATABASE_URL
        assert env_config.log_level is None

    def test_separate_jobstore(self, mock_env_vars, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///app.db")
        monkeypatch.setenv("JOBSTORE_URL", "sqlite:///jobs.db")

        env_config = load_environment_config()

        assert env_config.database_url == "sqlite:///app.db"
        assert env_config.jobstore_url == "sqlite:///jobs.db"

    def test_missing_required_env_vars(self, monkeypatch):
        for name in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER", "ENCRYPTION_KEY"):
            monkeypatch.delenv(name, raising=False)

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()

        assert len(exc_info.value.errors) == 4

    @pytest.mark.parametrize(
        "name,value,fragment",
        [
            ("TWILIO_PHONE_NUMBER", "5550000000", "E.164"),
            ("ENCRYPTION_KEY", "short", "Fernet"),
            ("LOG_LEVEL", "LOUD", "LOG_LEVEL"),
        ],
    )
    def test_invalid_values(self, mock_env_vars, monkeypatch, name, value, fragment):
        monkeypatch.setenv(name, value)
        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()
        assert fragment in exc_info.value.errors[0]


class TestConfigurationHelpers:
    """Standalone validation utilities."""

    def test_validate_config_file_utility(self, tmp_path):
        assert validate_config_file(EXAMPLE_CONFIG) is True
        assert validate_config_file(write_config(tmp_path, "retry:\n  max_attempts: 99\n")) is False

    def test_verify_config_script(self, tmp_path, capsys):
        assert verify_config_structure(EXAMPLE_CONFIG) is True
        assert "valid" in capsys.readouterr().out
        assert verify_config_structure(tmp_path / "missing.yaml") is False
