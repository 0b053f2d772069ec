"""Shared fixtures."""

import pytest

from duedigest.logging.context import clear_log_context
from duedigest.persistence import close_database, init_database
from duedigest.scheduler.jobs import unbind_runner


@pytest.fixture
def database():
    """Fresh in-memory database for one test."""
    init_database("sqlite:///:memory:")
    yield
    close_database()


@pytest.fixture(autouse=True)
def clean_state():
    clear_log_context()
    yield
    clear_log_context()
    unbind_runner()
