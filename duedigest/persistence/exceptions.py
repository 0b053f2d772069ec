"""Persistence layer exceptions.

All inherit from PersistenceError so callers can catch the whole family.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when the database cannot be initialized or reached."""

    pass


class RecordNotFoundError(PersistenceError):
    """Raised when an operation requires a record that does not exist.

    Optional lookups return None instead.
    """

    pass


class DataIntegrityError(PersistenceError):
    """Raised on constraint violations (unique, foreign key, check)."""

    pass
