"""Persistence layer: engine/session management, repositories, exceptions.

Example:
    >>> from duedigest.persistence import init_database, get_session, OccurrenceRepository
    >>> init_database("sqlite:///./data/duedigest.db")
    >>> with get_session() as session:
    ...     OccurrenceRepository(session).latest_for_pair("owner-1", "subject-1")
"""

from .database import close_database, get_engine, get_session, init_database
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
    RecordNotFoundError,
)
from .repositories import (
    CredentialRepository,
    LabelRepository,
    OccurrenceRepository,
    OwnerRepository,
    SubjectRepository,
)

__all__ = [
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    "OwnerRepository",
    "SubjectRepository",
    "LabelRepository",
    "CredentialRepository",
    "OccurrenceRepository",
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
]
