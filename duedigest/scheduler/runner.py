"""FiringRunner: run one attempt through the executor and schedule the next."""

import threading
from typing import Callable, ContextManager, Optional

from sqlalchemy.orm import Session

from duedigest.executor import FiringExecutor, FiringResult, FiringState, RetryPolicy
from duedigest.logging import get_logger
from duedigest.persistence import OwnerRepository, get_session
from duedigest.utils.hashing import compute_firing_id, compute_manual_firing_id
from duedigest.utils.timestamps import local_date, utc_now

from .registry import build_trigger, last_fire_time, trigger_key

logger = get_logger(__name__, component="scheduler")

RetryScheduler = Callable[[str, str, str, int, float], None]


class FiringRunner:
    """Glue between trigger callbacks and the executor.

    Scheduled, retried and manual firings all pass through :meth:`run`, so
    every path uses the same pipeline.
    """

    def __init__(
        self,
        executor: FiringExecutor,
        retry_policy: Optional[RetryPolicy] = None,
        schedule_retry: Optional[RetryScheduler] = None,
        session_factory: Callable[[], ContextManager[Session]] = get_session,
    ):
        self.executor = executor
        self.retry_policy = retry_policy or executor.retry_policy
        self.schedule_retry = schedule_retry
        self._session_factory = session_factory
        self._lock = threading.Lock()
        self.active = 0
        self.completed = 0
        self.failed = 0
        self.retried = 0

    def scheduled_firing_id(self, owner_id: str, subject_id: str) -> str:
        """Firing id of the scheduled occurrence this run belongs to.

        The date is the owner-local date of the latest fire time at or before
        now, so a firing that runs late (misfire grace, a busy pool) past
        midnight keeps the id of the day it was scheduled for.
        """
        now = utc_now()
        with self._session_factory() as session:
            owner = OwnerRepository(session).get(owner_id)
        if owner is None:
            return compute_firing_id(trigger_key(owner_id, subject_id), local_date("UTC", now))

        fire_time = last_fire_time(build_trigger(owner.recurrence), now)
        return compute_firing_id(trigger_key(owner_id, subject_id), local_date(owner.timezone, fire_time or now))

    def run_scheduled(self, owner_id: str, subject_id: str) -> FiringResult:
        return self.run(owner_id, subject_id, self.scheduled_firing_id(owner_id, subject_id), attempt=1)

    def run_manual(self, owner_id: str, subject_id: str, firing_id: Optional[str] = None) -> FiringResult:
        return self.run(owner_id, subject_id, firing_id or compute_manual_firing_id(), attempt=1)

    def run(self, owner_id: str, subject_id: str, firing_id: str, attempt: int = 1) -> FiringResult:
        """Execute one attempt; on a retryable failure queue the next one."""
        with self._lock:
            self.active += 1
        try:
            result = self.executor.execute(owner_id, subject_id, firing_id, attempt)
        finally:
            with self._lock:
                self.active -= 1

        if result.state is FiringState.FAILED_RETRYABLE:
            self._queue_retry(result)
        with self._lock:
            if result.state is FiringState.COMPLETED:
                self.completed += 1
            elif result.state is FiringState.FAILED_TERMINAL:
                self.failed += 1
            else:
                self.retried += 1
        return result

    def _queue_retry(self, result: FiringResult) -> None:
        delay = self.retry_policy.delay_for(result.attempt, result.rate_limited, result.retry_after)
        next_attempt = result.attempt + 1
        logger.info(
            f"Retrying firing in {delay:.0f}s (attempt {next_attempt}/{self.retry_policy.max_attempts})",
            extra={
                "event": "firing.retry_scheduled",
                "firing_id": result.firing_id,
                "owner_id": result.owner_id,
                "subject_id": result.subject_id,
                "next_attempt": next_attempt,
                "delay_seconds": delay,
                "rate_limited": result.rate_limited,
            },
        )
        if self.schedule_retry is None:
            logger.warning(
                "No retry scheduler configured; retry dropped",
                extra={"event": "firing.retry_dropped", "firing_id": result.firing_id},
            )
            return
        self.schedule_retry(result.owner_id, result.subject_id, result.firing_id, next_attempt, delay)
