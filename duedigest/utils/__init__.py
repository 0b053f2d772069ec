"""Utility functions for identifiers and time handling."""

from .hashing import compute_firing_id, compute_manual_firing_id, hash_string
from .timestamps import (
    ensure_utc,
    format_db_timestamp,
    local_date,
    parse_db_timestamp,
    parse_iso_datetime,
    utc_now,
)

__all__ = [
    "compute_firing_id",
    "compute_manual_firing_id",
    "hash_string",
    "utc_now",
    "ensure_utc",
    "local_date",
    "parse_iso_datetime",
    "format_db_timestamp",
    "parse_db_timestamp",
]
