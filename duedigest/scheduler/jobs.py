"""Job functions referenced by the persistent job store.

APScheduler stores jobs by import path, so these must be module-level
functions. Each forwards to the FiringRunner bound at start-up; a job that
fires with no runner bound raises, and the scheduler logs the error.
"""

from typing import Optional

from duedigest.logging import get_logger

logger = get_logger(__name__, component="scheduler")

_runner = None


def bind_runner(runner) -> None:
    global _runner
    _runner = runner


def unbind_runner() -> None:
    global _runner
    _runner = None


def get_runner():
    if _runner is None:
        raise RuntimeError("No FiringRunner bound; call SchedulerService.start() first")
    return _runner


def run_scheduled_firing(owner_id: str, subject_id: str) -> None:
    """Recurring trigger entry point."""
    get_runner().run_scheduled(owner_id, subject_id)


def run_retry_firing(owner_id: str, subject_id: str, firing_id: str, attempt: int) -> None:
    """Delayed re-attempt of a firing that failed retryably."""
    get_runner().run(owner_id, subject_id, firing_id, attempt)


def run_manual_firing(owner_id: str, subject_id: str, firing_id: Optional[str] = None) -> None:
    """Administrative firing queued through the same worker pool."""
    get_runner().run_manual(owner_id, subject_id, firing_id)
