"""Source clients: fetch dated items for a subject from the upstream API."""

from .base import BaseSourceClient, parse_retry_after
from .canvas import CanvasSourceClient
from .exceptions import (
    AuthError,
    NetworkError,
    RateLimitError,
    SourceConfigurationError,
    SourceError,
    SourceResponseError,
)
from .normalization import sort_due_items

__all__ = [
    "BaseSourceClient",
    "CanvasSourceClient",
    "parse_retry_after",
    "sort_due_items",
    "SourceError",
    "AuthError",
    "NetworkError",
    "RateLimitError",
    "SourceResponseError",
    "SourceConfigurationError",
]
