"""Scheduling: durable recurring triggers, retries and the firing runner."""

from .jobs import bind_runner, run_manual_firing, run_retry_firing, run_scheduled_firing, unbind_runner
from .registry import ReconcileResult, ScheduleRegistry, build_trigger, trigger_key
from .runner import FiringRunner
from .service import QueueStats, SchedulerService

__all__ = [
    "FiringRunner",
    "QueueStats",
    "ReconcileResult",
    "ScheduleRegistry",
    "SchedulerService",
    "bind_runner",
    "build_trigger",
    "run_manual_firing",
    "run_retry_firing",
    "run_scheduled_firing",
    "trigger_key",
    "unbind_runner",
]
