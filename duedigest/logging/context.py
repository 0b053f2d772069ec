"""Scoped logging context.

Fields pushed here (``firing_id``, ``owner_id``, ``subject_id``, ``attempt``)
are copied onto every log record emitted inside the scope. Storage is a
ContextVar, so each scheduler worker thread sees only its own firing.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional

LogContextVar: ContextVar[Dict[str, Any]] = ContextVar("duedigest_log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the fields active in the current scope."""
    return dict(LogContextVar.get())


def push_log_context(**fields) -> Token:
    """Merge ``fields`` into the active context and return a reset token."""
    return LogContextVar.set({**LogContextVar.get(), **fields})


def pop_log_context(token: Token) -> None:
    """Restore the context captured by ``push_log_context``."""
    LogContextVar.reset(token)


def clear_log_context() -> None:
    """Drop every context field. Used by tests."""
    LogContextVar.set({})


class log_context:
    """Context manager form of push/pop.

    Example:
        >>> with log_context(firing_id="f1", owner_id="o1"):
        ...     logger.info("Dispatching")  # carries firing_id and owner_id
    """

    def __init__(self, **fields):
        self.fields = fields
        self.token: Optional[Token] = None

    def __enter__(self):
        self.token = push_log_context(**self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token is not None:
            pop_log_context(self.token)
            self.token = None
        return False
