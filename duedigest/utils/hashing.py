"""Deterministic identifiers for firings.

A scheduled firing is identified by its trigger key plus the owner-local
calendar date it fired on. If the backend ever delivers the same day's
firing twice, both deliveries share one firing id, and the occurrence store's
(firing_id, recipient) uniqueness keeps the second from re-sending.
"""

import hashlib
import uuid
from datetime import date


def compute_firing_id(trigger_key: str, fire_date: date) -> str:
    """Return the firing id for ``trigger_key`` firing on ``fire_date``.

    Example:
        >>> compute_firing_id("digest-o1-s1", date(2026, 2, 18)) == compute_firing_id("digest-o1-s1", date(2026, 2, 18))
        True
    """
    return hash_string(f"{trigger_key}:{fire_date.isoformat()}")[:32]


def compute_manual_firing_id() -> str:
    """Return a fresh id for an administrative firing; never collides with scheduled ones."""
    return f"manual-{uuid.uuid4().hex}"


def hash_string(value: str) -> str:
    """SHA256 hex digest of ``value``."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
