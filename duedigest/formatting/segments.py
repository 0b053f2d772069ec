"""SMS segment arithmetic and message checks.

A body fits one segment at 160 characters (70 if any character lies outside
7-bit ASCII). Longer bodies are split into parts of 153 (67) characters.
"""

import math
import re
from dataclasses import dataclass, field

SINGLE_SEGMENT_ASCII = 160
SINGLE_SEGMENT_UNICODE = 70
MULTIPART_ASCII = 153
MULTIPART_UNICODE = 67

_NON_ASCII = re.compile(r"[^\x00-\x7F]")


@dataclass
class MessageValidation:
    """Result of :func:`validate_message`."""

    valid: bool
    segments: int
    errors: list[str] = field(default_factory=list)


def has_non_ascii(body: str) -> bool:
    return bool(_NON_ASCII.search(body))


def count_segments(body: str) -> int:
    """Number of SMS segments needed for ``body``.

    Examples:
        >>> count_segments("a" * 160)
        1
        >>> count_segments("a" * 320)
        3
    """
    unicode = has_non_ascii(body)
    single = SINGLE_SEGMENT_UNICODE if unicode else SINGLE_SEGMENT_ASCII
    if len(body) <= single:
        return 1
    multipart = MULTIPART_UNICODE if unicode else MULTIPART_ASCII
    return math.ceil(len(body) / multipart)


def validate_message(body: str, max_segments: int = 5) -> MessageValidation:
    """Flag empty bodies and bodies longer than ``max_segments``."""
    errors = []
    segments = count_segments(body)

    if not body.strip():
        errors.append("Message cannot be empty")
    if segments > max_segments:
        errors.append(f"Message exceeds maximum of {max_segments} SMS segments (currently {segments})")

    return MessageValidation(valid=not errors, segments=segments, errors=errors)


def format_preview(body: str, max_length: int = 160) -> str:
    """Shorten ``body`` for display, ending in ``...`` when cut."""
    if len(body) <= max_length:
        return body
    return body[: max_length - 3] + "..."
