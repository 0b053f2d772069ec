"""Environment variable loading and validation.

Secrets never live in the YAML file: provider credentials, the credential
encryption key and database locations come from the process environment
(optionally populated from a ``.env`` file by python-dotenv in ``main``).
"""

import os
import re
from typing import Optional

from cryptography.fernet import Fernet

from .exceptions import ConfigurationError

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")
DEFAULT_DATABASE_URL = "sqlite:///./data/duedigest.db"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class EnvironmentConfig:
    """Environment variable configuration holder."""

    def __init__(
        self,
        twilio_account_sid: str,
        twilio_auth_token: str,
        twilio_phone_number: str,
        encryption_key: str,
        database_url: Optional[str] = None,
        jobstore_url: Optional[str] = None,
        log_level: Optional[str] = None,
    ):
        self.twilio_account_sid = twilio_account_sid
        self.twilio_auth_token = twilio_auth_token
        self.twilio_phone_number = twilio_phone_number
        self.encryption_key = encryption_key
        self.database_url = database_url or DEFAULT_DATABASE_URL
        # Triggers share the application database unless pointed elsewhere.
        self.jobstore_url = jobstore_url or self.database_url
        self.log_level = log_level


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    Required:
    - TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN: provider credentials
    - TWILIO_PHONE_NUMBER: origin address in E.164 form
    - ENCRYPTION_KEY: Fernet key protecting stored source credentials

    Optional:
    - DATABASE_URL: application database (default sqlite:///./data/duedigest.db)
    - JOBSTORE_URL: durable trigger store (default: DATABASE_URL)
    - LOG_LEVEL: overrides the configured log level

    Raises:
        ConfigurationError: If required variables are missing or invalid
    """
    errors = []

    account_sid = os.getenv("TWILIO_ACCOUNT_SID")
    auth_token = os.getenv("TWILIO_AUTH_TOKEN")
    phone_number = os.getenv("TWILIO_PHONE_NUMBER")
    encryption_key = os.getenv("ENCRYPTION_KEY")
    log_level = os.getenv("LOG_LEVEL")

    for name, value in (
        ("TWILIO_ACCOUNT_SID", account_sid),
        ("TWILIO_AUTH_TOKEN", auth_token),
        ("TWILIO_PHONE_NUMBER", phone_number),
        ("ENCRYPTION_KEY", encryption_key),
    ):
        if not value:
            errors.append(f"Missing required environment variable: {name}")

    if phone_number and not E164_PATTERN.match(phone_number):
        errors.append(
            f"Invalid TWILIO_PHONE_NUMBER: '{phone_number}'. Must be E.164 (e.g. +15551234567)."
        )

    if encryption_key:
        try:
            Fernet(encryption_key.encode("utf-8"))
        except (ValueError, TypeError):
            errors.append("Invalid ENCRYPTION_KEY: must be a 32-byte url-safe base64 Fernet key.")

    if log_level and log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in your credentials",
                "Generate a key with: python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'",
                "Phone numbers must include the country code, e.g. +15551234567",
            ],
        )

    return EnvironmentConfig(
        twilio_account_sid=account_sid,
        twilio_auth_token=auth_token,
        twilio_phone_number=phone_number,
        encryption_key=encryption_key,
        database_url=os.getenv("DATABASE_URL"),
        jobstore_url=os.getenv("JOBSTORE_URL"),
        log_level=log_level,
    )
