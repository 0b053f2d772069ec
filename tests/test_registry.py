"""Tests for the schedule registry and reconciliation."""

import threading
from datetime import datetime, timezone

import pytest
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler

from duedigest.domain.models import Owner, Recurrence, Subject
from duedigest.scheduler import ScheduleRegistry, SchedulerService, build_trigger, trigger_key
from duedigest.scheduler.jobs import run_scheduled_firing


@pytest.fixture
def scheduler():
    sched = BackgroundScheduler(jobstores={"default": MemoryJobStore()}, timezone=timezone.utc)
    sched.start(paused=True)
    yield sched
    sched.shutdown(wait=False)


@pytest.fixture
def registry(scheduler):
    return ScheduleRegistry(scheduler)


def pair(owner_id, subject_id, send_time="15:00", send_days="Mon,Tue,Wed,Thu,Fri", tz="America/Los_Angeles"):
    owner = Owner(id=owner_id, phone="+15551230001", timezone=tz, send_time=send_time, send_days=send_days)
    return owner, Subject(id=subject_id, name="Student", source_domain="school.instructure.com")


class TestTriggers:
    """Cron trigger construction."""

    def test_trigger_key(self):
        assert trigger_key("o1", "s1") == "digest-2-o1-s1"

    def test_trigger_fires_at_local_wall_clock(self):
        trigger = build_trigger(Recurrence(hour=15, minute=0, weekdays="mon,wed", timezone="America/New_York"))

        # Tuesday 2026-02-17 12:00 UTC -> next is Wednesday 15:00 EST (20:00 UTC)
        now = datetime(2026, 2, 17, 12, 0, tzinfo=timezone.utc)
        fire_time = trigger.get_next_fire_time(None, now)

        assert fire_time.astimezone(timezone.utc) == datetime(2026, 2, 18, 20, 0, tzinfo=timezone.utc)

    def test_trigger_follows_daylight_saving(self):
        trigger = build_trigger(Recurrence(hour=15, minute=0, weekdays="mon", timezone="America/New_York"))

        # DST starts 2026-03-08; Monday 2026-03-09 15:00 EDT is 19:00 UTC
        now = datetime(2026, 3, 7, 0, 0, tzinfo=timezone.utc)
        fire_time = trigger.get_next_fire_time(None, now)

        assert fire_time.astimezone(timezone.utc) == datetime(2026, 3, 9, 19, 0, tzinfo=timezone.utc)


class TestInstallAndRemove:
    """One trigger per key."""

    def test_install_is_idempotent(self, registry, scheduler):
        registry.install("o1", "s1", Recurrence())
        registry.install("o1", "s1", Recurrence())

        assert registry.installed_keys() == ["digest-2-o1-s1"]
        job = scheduler.get_job("digest-2-o1-s1")
        assert job.func is run_scheduled_firing
        assert list(job.args) == ["o1", "s1"]

    def test_install_replaces_recurrence(self, registry):
        registry.install("o1", "s1", Recurrence(hour=15))
        registry.install("o1", "s1", Recurrence(hour=7))

        assert registry.installed_keys() == ["digest-2-o1-s1"]
        assert registry.is_current("o1", "s1", Recurrence(hour=7))
        assert not registry.is_current("o1", "s1", Recurrence(hour=15))

    def test_remove(self, registry):
        registry.install("o1", "s1", Recurrence())

        assert registry.remove("o1", "s1") is True
        assert registry.installed_keys() == []

    def test_remove_missing_is_noop(self, registry):
        assert registry.remove("o1", "s1") is False

    def test_hyphenated_ids_keep_separate_triggers(self, registry):
        registry.install("a-b", "c", Recurrence(hour=7))
        registry.install("a", "b-c", Recurrence(hour=15))

        assert trigger_key("a-b", "c") != trigger_key("a", "b-c")
        assert len(registry.installed_keys()) == 2

        registry.remove("a", "b-c")

        assert registry.get_job("a", "b-c") is None
        assert list(registry.get_job("a-b", "c").args) == ["a-b", "c"]
        assert registry.is_current("a-b", "c", Recurrence(hour=7))

    def test_concurrent_installs_leave_one_trigger(self, registry):
        recurrences = [Recurrence(hour=h) for h in range(8)]
        threads = [threading.Thread(target=registry.install, args=("o1", "s1", r)) for r in recurrences]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert registry.installed_keys() == ["digest-2-o1-s1"]


class TestReconcile:
    """Drift healing between active pairs and installed triggers."""

    def test_installs_missing_and_removes_orphans(self, registry):
        registry.install("gone", "s9", Recurrence())

        result = registry.reconcile([pair("o1", "s1"), pair("o1", "s2")])

        assert result.installed == ["digest-2-o1-s1", "digest-2-o1-s2"]
        assert result.removed == ["digest-4-gone-s9"]
        assert registry.installed_keys() == ["digest-2-o1-s1", "digest-2-o1-s2"]

    def test_matching_triggers_untouched(self, registry, scheduler):
        registry.install("o1", "s1", pair("o1", "s1")[0].recurrence)
        before = scheduler.get_job("digest-2-o1-s1").next_run_time

        result = registry.reconcile([pair("o1", "s1")])

        assert result.unchanged == ["digest-2-o1-s1"]
        assert result.installed == []
        assert scheduler.get_job("digest-2-o1-s1").next_run_time == before

    def test_changed_recurrence_reinstalled(self, registry):
        registry.install("o1", "s1", Recurrence(hour=15))

        result = registry.reconcile([pair("o1", "s1", send_time="07:00")])

        assert result.installed == ["digest-2-o1-s1"]
        assert registry.is_current("o1", "s1", Recurrence(hour=7))

    def test_reconcile_twice_is_stable(self, registry):
        pairs = [pair("o1", "s1"), pair("o2", "s1", tz="Europe/Berlin")]
        registry.reconcile(pairs)

        second = registry.reconcile(pairs)

        assert second.installed == []
        assert second.removed == []
        assert second.unchanged == ["digest-2-o1-s1", "digest-2-o2-s1"]

    def test_empty_active_set_removes_everything(self, registry):
        registry.install("o1", "s1", Recurrence())
        result = registry.reconcile([])
        assert result.removed == ["digest-2-o1-s1"]


def test_triggers_survive_restart(tmp_path):
    """Triggers written to the SQL job store are there after a restart."""
    url = f"sqlite:///{tmp_path / 'jobs.db'}"

    first = SchedulerService(jobstore_url=url)
    first.scheduler.start(paused=True)
    first.registry.install("o1", "s1", Recurrence(hour=6, weekdays="sat"))
    first.schedule_retry("o1", "s1", "f1", 2, 600.0)
    first.shutdown(wait=False)

    second = SchedulerService(jobstore_url=url)
    second.scheduler.start(paused=True)
    try:
        assert second.registry.installed_keys() == ["digest-2-o1-s1"]
        assert second.registry.is_current("o1", "s1", Recurrence(hour=6, weekdays="sat"))
        assert second.scheduler.get_job("retry-f1") is not None
    finally:
        second.shutdown(wait=False)
