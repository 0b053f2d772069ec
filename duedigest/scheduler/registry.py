"""Schedule registry: one recurring trigger per active (owner, subject) pair."""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger

from duedigest.domain.models import Owner, Recurrence, Subject
from duedigest.logging import get_logger

from .jobs import run_scheduled_firing

logger = get_logger(__name__, component="scheduler")

TRIGGER_PREFIX = "digest-"


def trigger_key(owner_id: str, subject_id: str) -> str:
    """Deterministic job id for a pair, e.g. ``digest-2-o1-s1``.

    The owner id is length-prefixed so ids containing ``-`` (uuids, or
    ``("a-b", "c")`` against ``("a", "b-c")``) never map to the same key.
    """
    return f"{TRIGGER_PREFIX}{len(owner_id)}-{owner_id}-{subject_id}"


def build_trigger(recurrence: Recurrence) -> CronTrigger:
    """Cron trigger firing at the recurrence's wall-clock time in its timezone.

    DST transitions are resolved by APScheduler against the named zone.
    """
    return CronTrigger(timezone=ZoneInfo(recurrence.timezone), **recurrence.cron_fields())


def last_fire_time(trigger, now: datetime, lookback: timedelta = timedelta(days=8)) -> Optional[datetime]:
    """Latest fire time of ``trigger`` at or before ``now``, or None within ``lookback``."""
    last = None
    fire_time = trigger.get_next_fire_time(None, now - lookback)
    while fire_time is not None and fire_time <= now:
        last = fire_time
        fire_time = trigger.get_next_fire_time(fire_time, fire_time + timedelta(microseconds=1))
    return last


def trigger_signature(trigger) -> tuple:
    """Comparable form of a cron trigger (fields plus zone)."""
    fields = tuple((f.name, str(f)) for f in getattr(trigger, "fields", ()))
    return fields, str(getattr(trigger, "timezone", ""))


@dataclass
class ReconcileResult:
    """Trigger keys touched by one reconciliation pass."""

    installed: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)


class ScheduleRegistry:
    """Install, remove and reconcile recurring triggers.

    Install and remove for the same key are serialized by a per-key lock,
    so concurrent calls for one pair always leave exactly one trigger.
    """

    def __init__(self, scheduler: BaseScheduler, jobstore: str = "default"):
        self.scheduler = scheduler
        self.jobstore = jobstore
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(key, threading.Lock())

    def install(self, owner_id: str, subject_id: str, recurrence: Recurrence) -> str:
        """Replace whatever trigger the pair has with one for ``recurrence``."""
        key = trigger_key(owner_id, subject_id)
        with self._lock_for(key):
            self._remove_job(key)
            job = self.scheduler.add_job(
                run_scheduled_firing,
                trigger=build_trigger(recurrence),
                args=[owner_id, subject_id],
                id=key,
                name=f"Digest {owner_id}/{subject_id}",
                jobstore=self.jobstore,
            )
        logger.info(
            "Schedule installed",
            extra={
                "event": "schedule.installed",
                "trigger_key": key,
                "send_time": recurrence.send_time,
                "send_days": recurrence.send_days,
                "timezone": recurrence.timezone,
                "next_run_time": _iso(getattr(job, "next_run_time", None)),
            },
        )
        return key

    def remove(self, owner_id: str, subject_id: str) -> bool:
        """Delete the pair's trigger. Returns False if none was installed."""
        key = trigger_key(owner_id, subject_id)
        with self._lock_for(key):
            removed = self._remove_job(key)
        if removed:
            logger.info("Schedule removed", extra={"event": "schedule.removed", "trigger_key": key})
        return removed

    def installed_keys(self) -> list[str]:
        return sorted(
            job.id for job in self.scheduler.get_jobs(jobstore=self.jobstore) if job.id.startswith(TRIGGER_PREFIX)
        )

    def get_job(self, owner_id: str, subject_id: str):
        return self.scheduler.get_job(trigger_key(owner_id, subject_id), jobstore=self.jobstore)

    def is_current(self, owner_id: str, subject_id: str, recurrence: Recurrence) -> bool:
        """True if the installed trigger already fires on ``recurrence``."""
        job = self.get_job(owner_id, subject_id)
        if job is None:
            return False
        return trigger_signature(job.trigger) == trigger_signature(build_trigger(recurrence))

    def reconcile(self, active_pairs: Iterable[tuple[Owner, Subject]]) -> ReconcileResult:
        """Heal drift between the active pairs and the installed triggers.

        Missing or outdated triggers are (re)installed, triggers with no
        active pair are removed, and matching triggers are left alone so their
        next fire time is preserved.
        """
        result = ReconcileResult()
        wanted = {}
        for owner, subject in active_pairs:
            wanted[trigger_key(owner.id, subject.id)] = (owner, subject)

        for key, (owner, subject) in sorted(wanted.items()):
            recurrence = owner.recurrence
            if self.is_current(owner.id, subject.id, recurrence):
                result.unchanged.append(key)
            else:
                self.install(owner.id, subject.id, recurrence)
                result.installed.append(key)

        for key in self.installed_keys():
            if key not in wanted:
                with self._lock_for(key):
                    if self._remove_job(key):
                        result.removed.append(key)

        logger.info(
            "Schedules reconciled",
            extra={
                "event": "schedule.reconciled",
                "installed": len(result.installed),
                "removed": len(result.removed),
                "unchanged": len(result.unchanged),
            },
        )
        return result

    def _remove_job(self, key: str) -> bool:
        try:
            self.scheduler.remove_job(key, jobstore=self.jobstore)
            return True
        except JobLookupError:
            return False


def _iso(value):
    return value.isoformat() if value is not None else None
