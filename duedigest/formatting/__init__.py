"""Message formatting and SMS segment helpers."""

from .formatter import EMPTY_LINE, FormattingError, LabelLookup, format_message
from .segments import (
    MessageValidation,
    count_segments,
    format_preview,
    has_non_ascii,
    validate_message,
)

__all__ = [
    "EMPTY_LINE",
    "FormattingError",
    "LabelLookup",
    "format_message",
    "MessageValidation",
    "count_segments",
    "format_preview",
    "has_non_ascii",
    "validate_message",
]
