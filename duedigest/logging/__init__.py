"""Structured logging helpers shared by every duedigest component."""

import logging
from typing import Optional

from .context import clear_log_context, get_log_context, log_context, pop_log_context, push_log_context


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that stamps a component name onto every record.

    Fields passed through ``extra`` at the call site win over the adapter's
    own fields, so a caller can still override ``component`` for one line.
    """

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str, component: Optional[str] = None):
    """Return a logger, wrapped so that ``component`` lands on each record.

    Example:
        >>> logger = get_logger(__name__, component="executor")
        >>> logger.info("Firing started", extra={"event": "firing.started"})
    """
    logger = logging.getLogger(name)
    if component:
        return ComponentLoggerAdapter(logger, {"component": component})
    return logger


__all__ = [
    "ComponentLoggerAdapter",
    "clear_log_context",
    "get_log_context",
    "get_logger",
    "log_context",
    "pop_log_context",
    "push_log_context",
]
