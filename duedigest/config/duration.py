"""Duration strings used in configuration (retry delays, retention windows)."""

import re

_ISO_PATTERN = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?$")
_HUMAN_PATTERN = re.compile(r"(\d+)\s*([smhd])")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


class DurationParseError(ValueError):
    """Raised when a duration string cannot be parsed or is out of range."""


def parse_duration(value: str) -> int:
    """Parse ``"90s"``, ``"1m"``, ``"1h30m"``, ``"7d"`` or ISO-8601 ``"PT1M"`` to seconds.

    Raises:
        DurationParseError: If the string is empty, malformed, or zero

    Examples:
        >>> parse_duration("1m")
        60
        >>> parse_duration("PT1H30M")
        5400
    """
    text = (value or "").strip()
    if not text:
        raise DurationParseError("Duration string cannot be empty")

    if text.upper().startswith("P"):
        seconds = _parse_iso8601(text.upper())
    else:
        seconds = _parse_human(text.lower())

    if seconds == 0:
        raise DurationParseError(f"Duration cannot be zero: '{value}'")
    return seconds


def _parse_iso8601(text: str) -> int:
    match = _ISO_PATTERN.match(text)
    if not match or text in ("P", "PT"):
        raise DurationParseError(
            f"Invalid ISO-8601 duration: '{text}'. Expected e.g. 'PT1M', 'PT1H30M', 'P7D'"
        )
    days, hours, minutes, seconds = match.groups()
    return (
        int(days or 0) * 86400
        + int(hours or 0) * 3600
        + int(minutes or 0) * 60
        + int(float(seconds or 0))
    )


def _parse_human(text: str) -> int:
    parts = _HUMAN_PATTERN.findall(text)
    compact = re.sub(r"\s+", "", text)
    if not parts or "".join(f"{n}{u}" for n, u in parts) != compact:
        raise DurationParseError(
            f"Invalid duration: '{text}'. Use digits with s, m, h or d (e.g. '90s', '1m', '7d')"
        )
    return sum(int(number) * _UNIT_SECONDS[unit] for number, unit in parts)


def validate_duration_range(seconds: int, min_seconds: int, max_seconds: int, label: str = "Duration") -> None:
    """Raise DurationParseError unless ``min_seconds <= seconds <= max_seconds``."""
    if seconds < min_seconds:
        raise DurationParseError(
            f"{label} too short: {humanize_seconds(seconds)}. Minimum is {humanize_seconds(min_seconds)}."
        )
    if seconds > max_seconds:
        raise DurationParseError(
            f"{label} too long: {humanize_seconds(seconds)}. Maximum is {humanize_seconds(max_seconds)}."
        )


def humanize_seconds(seconds: int) -> str:
    """Render a whole-unit approximation, e.g. ``3600`` -> ``"1 hour"``."""
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"
