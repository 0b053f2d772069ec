"""Scheduler service: durable triggers and a bounded worker pool.

Recurring triggers, pending retries and queued manual firings all live in a
persistent APScheduler job store, so a restart loses none of them; firings
whose time passed while the process was down run on start-up within the
misfire grace time. Firings execute on a fixed-size thread pool and queue
FIFO beyond it. ``max_instances=1`` keeps a single job from overlapping
itself.
"""

import threading
from dataclasses import asdict, dataclass
from datetime import timedelta, timezone
from typing import Callable, ContextManager, Optional

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MAX_INSTANCES,
    EVENT_JOB_MISSED,
    EVENT_JOB_SUBMITTED,
)
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from duedigest.config.duration import parse_duration
from duedigest.config.models import HistoryConfig, SchedulerConfig
from duedigest.domain.models import DeliveryStatus
from duedigest.executor import FiringResult
from duedigest.logging import get_logger
from duedigest.persistence import OccurrenceRepository, get_session
from duedigest.utils.hashing import compute_manual_firing_id
from duedigest.utils.timestamps import utc_now

from .jobs import bind_runner, run_manual_firing, run_retry_firing, unbind_runner
from .registry import TRIGGER_PREFIX, ScheduleRegistry
from .runner import FiringRunner

logger = get_logger(__name__, component="scheduler")

RETRY_PREFIX = "retry-"
MANUAL_PREFIX = "manual-"
HOUSEKEEPING_STORE = "housekeeping"
FIRING_PREFIXES = (TRIGGER_PREFIX, RETRY_PREFIX, MANUAL_PREFIX)


@dataclass
class QueueStats:
    """Snapshot of work in the scheduler.

    Attributes:
        waiting: Firings submitted to the pool but not yet running
        active: Firings running right now
        completed: Firings that finished completed since start-up
        failed: Firings that finished failed_terminal since start-up
        delayed: Retries and manual firings waiting for their run time
        scheduled: Recurring triggers installed
    """

    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    scheduled: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class SchedulerService:
    """Wraps APScheduler's BackgroundScheduler for digest firings."""

    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        jobstore_url: Optional[str] = None,
        jobstore=None,
        history: Optional[HistoryConfig] = None,
        session_factory: Callable[[], ContextManager[Session]] = get_session,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            config: Worker pool and misfire settings
            jobstore_url: SQLAlchemy URL of the durable job store
            jobstore: Job store instance; takes precedence over ``jobstore_url``
            history: Retention windows and housekeeping intervals
            session_factory: Session scope used by housekeeping
            shutdown_event: Set when the scheduler shuts down
        """
        self.config = config or SchedulerConfig()
        self.history = history or HistoryConfig()
        self._session_factory = session_factory
        self.shutdown_event = shutdown_event
        self.runner: Optional[FiringRunner] = None

        if jobstore is None:
            if jobstore_url:
                jobstore = SQLAlchemyJobStore(url=jobstore_url)
            else:
                logger.warning(
                    "No job store URL configured; triggers will not survive a restart",
                    extra={"event": "scheduler.jobstore.memory"},
                )
                jobstore = MemoryJobStore()

        self.scheduler = BackgroundScheduler(
            jobstores={"default": jobstore, HOUSEKEEPING_STORE: MemoryJobStore()},
            executors={"default": ThreadPoolExecutor(max_workers=self.config.max_workers)},
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": self.config.misfire_grace_seconds,
            },
            timezone=timezone.utc,
        )
        self.scheduler.add_listener(
            self._on_job_event,
            EVENT_JOB_SUBMITTED | EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED | EVENT_JOB_MAX_INSTANCES,
        )
        self.registry = ScheduleRegistry(self.scheduler)

        self._stats_lock = threading.Lock()
        self._submitted = 0
        self._finished = 0

    def start(self, runner: FiringRunner, paused: bool = False) -> None:
        """Bind ``runner`` to the job functions and start the scheduler.

        With ``paused=True`` the job store is opened (so triggers and retries
        can be read and written) but nothing is executed.
        """
        self.runner = runner
        if runner.schedule_retry is None:
            runner.schedule_retry = self.schedule_retry
        bind_runner(runner)

        self.scheduler.start(paused=paused)

        if not paused:
            self.scheduler.add_job(
                self.cleanup_history,
                trigger=IntervalTrigger(seconds=parse_duration(self.history.cleanup_interval)),
                id="housekeeping-cleanup",
                jobstore=HOUSEKEEPING_STORE,
                replace_existing=True,
            )
            self.scheduler.add_job(
                self.log_queue_stats,
                trigger=IntervalTrigger(seconds=parse_duration(self.history.stats_log_interval)),
                id="housekeeping-stats",
                jobstore=HOUSEKEEPING_STORE,
                replace_existing=True,
            )

        logger.info(
            "Scheduler started",
            extra={
                "event": "scheduler.started",
                "paused": paused,
                "max_workers": self.config.max_workers,
                "misfire_grace_seconds": self.config.misfire_grace_seconds,
                "installed_triggers": len(self.registry.installed_keys()),
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        """Stop the scheduler; with ``wait`` let running firings finish first."""
        logger.info("Shutting down scheduler", extra={"event": "scheduler.stopping", "wait_for_jobs": wait})

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
        unbind_runner()

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def is_running(self) -> bool:
        return self.scheduler.running

    def schedule_retry(
        self, owner_id: str, subject_id: str, firing_id: str, attempt: int, delay_seconds: float
    ) -> None:
        """Persist a one-shot job re-running ``firing_id`` after ``delay_seconds``."""
        run_date = utc_now() + timedelta(seconds=delay_seconds)
        self.scheduler.add_job(
            run_retry_firing,
            trigger=DateTrigger(run_date=run_date, timezone=timezone.utc),
            args=[owner_id, subject_id, firing_id, attempt],
            id=f"{RETRY_PREFIX}{firing_id}",
            name=f"Retry {firing_id} (attempt {attempt})",
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.debug(
            "Retry persisted",
            extra={
                "event": "scheduler.retry.persisted",
                "firing_id": firing_id,
                "attempt": attempt,
                "run_date": run_date.isoformat(),
            },
        )

    def trigger_now(self, owner_id: str, subject_id: str) -> str:
        """Queue an immediate administrative firing on the worker pool.

        Returns:
            The firing id, usable to look up its occurrence records
        """
        firing_id = compute_manual_firing_id()
        self.scheduler.add_job(
            run_manual_firing,
            args=[owner_id, subject_id, firing_id],
            id=firing_id,
            name=f"Manual {owner_id}/{subject_id}",
            misfire_grace_time=None,
        )
        logger.info(
            "Manual firing queued",
            extra={"event": "scheduler.trigger_now", "firing_id": firing_id, "owner_id": owner_id, "subject_id": subject_id},
        )
        return firing_id

    def run_now(self, owner_id: str, subject_id: str) -> FiringResult:
        """Run an administrative firing synchronously in the calling thread."""
        if self.runner is None:
            raise RuntimeError("Scheduler has not been started")
        logger.info(
            "Running firing synchronously",
            extra={"event": "scheduler.run_now", "owner_id": owner_id, "subject_id": subject_id},
        )
        return self.runner.run_manual(owner_id, subject_id)

    def queue_stats(self) -> QueueStats:
        with self._stats_lock:
            in_flight = self._submitted - self._finished

        stats = QueueStats()
        if self.runner is not None:
            stats.active = self.runner.active
            stats.completed = self.runner.completed
            stats.failed = self.runner.failed
        stats.waiting = max(0, in_flight - stats.active)

        for job in self.scheduler.get_jobs(jobstore="default"):
            if job.id.startswith(TRIGGER_PREFIX):
                stats.scheduled += 1
            elif job.id.startswith((RETRY_PREFIX, MANUAL_PREFIX)):
                stats.delayed += 1
        return stats

    def log_queue_stats(self) -> QueueStats:
        stats = self.queue_stats()
        logger.info("Queue stats", extra={"event": "queue.stats", **stats.as_dict()})
        return stats

    def cleanup_history(self) -> int:
        """Delete occurrence records past their retention window."""
        now = utc_now()
        completed_cutoff = now - timedelta(seconds=parse_duration(self.history.completed_retention))
        failed_cutoff = now - timedelta(seconds=parse_duration(self.history.failed_retention))

        with self._session_factory() as session:
            repo = OccurrenceRepository(session)
            deleted = repo.cleanup_older_than(completed_cutoff, [DeliveryStatus.SENT, DeliveryStatus.DELIVERED])
            deleted += repo.cleanup_older_than(failed_cutoff, [DeliveryStatus.FAILED])

        logger.info("History cleanup finished", extra={"event": "history.cleanup", "deleted": deleted})
        return deleted

    def _on_job_event(self, event) -> None:
        job_id = getattr(event, "job_id", "") or ""
        if not job_id.startswith(FIRING_PREFIXES):
            return

        if event.code == EVENT_JOB_SUBMITTED:
            with self._stats_lock:
                self._submitted += 1
        elif event.code in (EVENT_JOB_EXECUTED, EVENT_JOB_ERROR):
            with self._stats_lock:
                self._finished += 1
            if event.code == EVENT_JOB_ERROR:
                logger.error(
                    f"Firing job {job_id} raised: {event.exception}",
                    extra={"event": "firing.job_error", "job_id": job_id, "error_type": type(event.exception).__name__},
                )
        elif event.code == EVENT_JOB_MISSED:
            logger.warning(
                f"Firing job {job_id} missed its run time",
                extra={"event": "firing.missed", "job_id": job_id},
            )
        elif event.code == EVENT_JOB_MAX_INSTANCES:
            logger.warning(
                f"Firing job {job_id} skipped; previous run still active",
                extra={"event": "firing.overlap_skipped", "job_id": job_id},
            )
