"""Exponential backoff for retryable firing failures."""

from dataclasses import dataclass
from typing import Optional

from duedigest.config.models import RetryConfig


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts a firing gets and how long to wait between them.

    The delay before attempt ``n + 1`` is
    ``initial_delay * multiplier ** (n - 1)``, multiplied again by
    ``rate_limit_multiplier`` when the source throttled us, raised to the
    server's Retry-After hint if that is longer, and capped at ``max_delay``.
    """

    max_attempts: int = 3
    initial_delay: float = 60.0
    multiplier: float = 2.0
    rate_limit_multiplier: float = 3.0
    max_delay: float = 1800.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            initial_delay=float(config.initial_delay_seconds),
            multiplier=config.backoff_multiplier,
            rate_limit_multiplier=config.rate_limit_multiplier,
            max_delay=float(config.max_delay_seconds),
        )

    def should_retry(self, attempt: int) -> bool:
        """True if another attempt may follow attempt number ``attempt``."""
        return attempt < self.max_attempts

    def delay_for(self, attempt: int, rate_limited: bool = False, retry_after: Optional[float] = None) -> float:
        """Seconds to wait after failed attempt ``attempt`` (1-based).

        Examples:
            >>> RetryPolicy().delay_for(1)
            60.0
            >>> RetryPolicy().delay_for(2)
            120.0
            >>> RetryPolicy().delay_for(1, rate_limited=True)
            180.0
        """
        delay = self.initial_delay * self.multiplier ** max(0, attempt - 1)
        if rate_limited:
            delay *= self.rate_limit_multiplier
        if retry_after is not None and retry_after > delay:
            delay = retry_after
        return min(delay, self.max_delay)
