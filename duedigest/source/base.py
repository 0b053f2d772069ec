"""Base source client with shared HTTP handling.

Subclasses implement :meth:`BaseSourceClient.fetch`. Every HTTP failure is
classified here, once, into the source exception hierarchy so the executor
can decide between retrying and giving up without looking at status codes.
"""

from abc import ABC, abstractmethod
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import requests

from duedigest.credentials import CredentialError, CredentialProvider
from duedigest.domain.models import DueItem, Subject
from duedigest.logging import get_logger
from duedigest.utils.timestamps import ensure_utc, utc_now

from .exceptions import (
    AuthError,
    NetworkError,
    RateLimitError,
    SourceConfigurationError,
    SourceResponseError,
)

logger = get_logger(__name__, component="source")


class BaseSourceClient(ABC):
    """Base class for all source clients.

    Attributes:
        credentials: Provider handing out one subject's token per call
        timeout: HTTP request timeout in seconds
        user_agent: User-Agent header for HTTP requests
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        timeout: int = 10,
        user_agent: str = "duedigest/1.0",
    ) -> None:
        if not 1 <= timeout <= 300:
            raise SourceConfigurationError(f"Timeout must be between 1 and 300 seconds, got: {timeout}")
        if not user_agent or not user_agent.strip():
            raise SourceConfigurationError("user_agent cannot be empty")

        self.credentials = credentials
        self.timeout = timeout
        self.user_agent = user_agent.strip()

        self._session = requests.Session()
        self._session.headers.update({"User-Agent": self.user_agent, "Accept": "application/json"})

    @abstractmethod
    def fetch(self, subject: Subject) -> list[DueItem]:
        """Fetch the subject's dated items, sorted by (due_at, title).

        Raises:
            AuthError: Credential rejected or already known invalid
            NetworkError: Transient transport or server failure
            RateLimitError: Source throttled the request
            SourceResponseError: Unexpected status or unparsable body
        """

    def _token_for(self, subject: Subject) -> str:
        """Fetch the subject's token for one call, refusing known-invalid credentials."""
        try:
            if not self.credentials.is_valid(subject.id):
                raise AuthError(f"Credential for subject {subject.id} is marked invalid")
            return self.credentials.get_token(subject.id)
        except CredentialError as e:
            raise AuthError(str(e)) from e

    def _make_request(
        self,
        url: str,
        token: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """GET ``url`` with a bearer token and return the parsed JSON body.

        Raises:
            AuthError: On HTTP 401
            RateLimitError: On HTTP 429
            NetworkError: On timeout, connection error or 5xx
            SourceResponseError: On other 4xx or invalid JSON
        """
        headers = {"Authorization": f"Bearer {token}"}

        logger.debug(
            f"HTTP GET request to {url}",
            extra={"event": "source.fetch.request", "url": url, "timeout": self.timeout},
        )

        try:
            response = self._session.get(url, headers=headers, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.warning(
                f"Request to {url} timed out after {self.timeout} seconds",
                extra={"event": "source.fetch.retryable_error", "error_type": "Timeout", "url": url},
            )
            raise NetworkError(f"Request to {url} timed out after {self.timeout} seconds", url=url) from e
        except requests.exceptions.RequestException as e:
            logger.warning(
                f"Request to {url} failed: {e}",
                extra={"event": "source.fetch.retryable_error", "error_type": type(e).__name__, "url": url},
            )
            raise NetworkError(f"Request to {url} failed: {e}", url=url) from e

        status = response.status_code
        if status >= 400:
            self._raise_for_status(response, url)

        try:
            data = response.json()
        except ValueError as e:
            logger.error(
                f"Failed to parse JSON response from {url}",
                extra={"event": "source.fetch.error", "error_type": "JSONDecodeError", "url": url},
            )
            raise SourceResponseError(f"Failed to parse JSON response from {url}: {e}", url=url) from e

        logger.debug(
            "HTTP request succeeded",
            extra={"event": "source.fetch.succeeded", "status_code": status, "url": url},
        )
        return data

    def _raise_for_status(self, response: requests.Response, url: str) -> None:
        status = response.status_code

        if status == 401:
            logger.error(
                "Source rejected credential",
                extra={"event": "source.fetch.auth_error", "status_code": status, "url": url},
            )
            raise AuthError(f"HTTP 401: credential rejected by {url}", url=url)

        if status == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            logger.warning(
                f"HTTP 429 rate limited by {url}",
                extra={
                    "event": "source.fetch.retryable_error",
                    "status_code": status,
                    "url": url,
                    "retry_after_seconds": retry_after,
                },
            )
            raise RateLimitError(f"HTTP 429: rate limited by {url}", url=url, retry_after=retry_after)

        if status >= 500:
            logger.warning(
                f"HTTP {status} error from {url}",
                extra={"event": "source.fetch.retryable_error", "status_code": status, "url": url},
            )
            raise NetworkError(f"HTTP {status}: {response.reason}", url=url, status_code=status)

        logger.error(
            f"HTTP {status} error from {url}",
            extra={"event": "source.fetch.error", "status_code": status, "url": url},
        )
        raise SourceResponseError(f"HTTP {status}: {response.reason}", url=url, status_code=status)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a ``Retry-After`` header (delta-seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(0.0, (ensure_utc(when) - utc_now()).total_seconds())
