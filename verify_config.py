#!/usr/bin/env python3
"""Check a duedigest config file without needing credentials in the environment."""

import sys
from pathlib import Path

from duedigest.config.duration import parse_duration
from duedigest.config.exceptions import ConfigurationError
from duedigest.config.loader import parse_config_file


def verify_config_structure(config_file: Path = Path("config.example.yaml")) -> bool:
    """Validate ``config_file`` and print a short summary of what it sets."""
    if not config_file.exists():
        print(f"✗ {config_file} not found")
        return False

    try:
        config = parse_config_file(config_file)
    except ConfigurationError as e:
        print(f"✗ {config_file} validation failed:\n{e}")
        return False

    print(f"✓ {config_file} is valid")
    print(f"  - {config.scheduler.max_workers} workers, misfire grace {config.scheduler.misfire_grace_time}")
    print(
        f"  - Default schedule: {config.scheduler.default_send_days} at "
        f"{config.scheduler.default_send_time} ({config.scheduler.default_timezone})"
    )
    print(
        f"  - Retries: {config.retry.max_attempts} attempts, "
        f"{parse_duration(config.retry.initial_delay)}s initial delay"
    )
    print(f"  - Logging: {config.logging.level} / {config.logging.format}")
    return True


if __name__ == "__main__":
    path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("config.example.yaml")
    sys.exit(0 if verify_config_structure(path) else 1)
