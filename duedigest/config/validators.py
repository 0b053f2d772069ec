"""Soft configuration checks that warn instead of failing start-up."""

import warnings
from typing import Any, Dict, List

from .duration import DurationParseError, parse_duration


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """Return warnings for settings that are legal but probably unintended."""
    messages = []

    scheduler = config_dict.get("scheduler") or {}
    if isinstance(scheduler, dict):
        workers = scheduler.get("max_workers", 5)
        if isinstance(workers, int) and workers > 10:
            messages.append(
                f"scheduler.max_workers={workers} may exceed the assignment source's rate limits"
            )

    retry = config_dict.get("retry") or {}
    if isinstance(retry, dict):
        attempts = retry.get("max_attempts", 3)
        if attempts == 1:
            messages.append("retry.max_attempts=1 disables retries; transient failures become terminal")
        delay = retry.get("initial_delay")
        if isinstance(delay, str):
            try:
                if parse_duration(delay) < 30:
                    messages.append(
                        f"Short retry.initial_delay ({delay}) may retry into an ongoing throttle"
                    )
            except DurationParseError:
                pass  # reported by model validation

    delivery = config_dict.get("delivery") or {}
    if isinstance(delivery, dict):
        segments = delivery.get("max_segments", 5)
        if isinstance(segments, int) and segments > 10:
            messages.append(f"delivery.max_segments={segments} allows very long (costly) messages")

    return messages


def emit_warnings(messages: List[str]) -> None:
    """Emit each message through the warnings module."""
    for message in messages:
        warnings.warn(message, UserWarning, stacklevel=2)
