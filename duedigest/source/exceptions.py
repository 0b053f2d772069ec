"""Exceptions raised by source clients.

The executor decides retry behaviour from the exception type alone:
AuthError and SourceResponseError are terminal, NetworkError and
RateLimitError are retryable.
"""

from typing import Optional


class SourceError(Exception):
    """Base exception for all source client errors."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class AuthError(SourceError):
    """The source rejected the credential (HTTP 401), or it is already known invalid."""

    pass


class NetworkError(SourceError):
    """Timeout, connection failure or 5xx response. Transient."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message, url=url)
        self.status_code = status_code


class RateLimitError(SourceError):
    """HTTP 429. ``retry_after`` is the server's hint in seconds, when given."""

    def __init__(self, message: str, url: Optional[str] = None, retry_after: Optional[float] = None) -> None:
        super().__init__(message, url=url)
        self.retry_after = retry_after


class SourceResponseError(SourceError):
    """Any other 4xx, or a body that could not be parsed. Not retried."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message, url=url)
        self.status_code = status_code


class SourceConfigurationError(SourceError):
    """Invalid client configuration (timeout out of range, empty user agent)."""

    pass
