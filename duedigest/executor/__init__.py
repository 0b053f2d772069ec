"""Firing executor: fetch, format and dispatch one digest."""

from .models import FiringResult, FiringState, RecipientOutcome
from .retry import RetryPolicy
from .service import FiringExecutor, resolve_recipients

__all__ = [
    "FiringExecutor",
    "FiringResult",
    "FiringState",
    "RecipientOutcome",
    "RetryPolicy",
    "resolve_recipients",
]
