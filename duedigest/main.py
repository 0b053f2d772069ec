"""Main entry point for the duedigest service."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import os
import signal
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple

from duedigest.config.environment import EnvironmentConfig
from duedigest.config.exceptions import ConfigurationError
from duedigest.config.loader import load_config
from duedigest.config.models import AppConfig
from duedigest.control import ControlService
from duedigest.credentials import CredentialVault, DatabaseCredentialProvider
from duedigest.delivery import TwilioDeliveryClient
from duedigest.executor import FiringExecutor, FiringState, RetryPolicy
from duedigest.logging import get_logger
from duedigest.logging.config import configure_logging
from duedigest.persistence import SubjectRepository, close_database, get_session, init_database
from duedigest.scheduler import FiringRunner, SchedulerService
from duedigest.source import CanvasSourceClient

logger = get_logger(__name__, component="cli")


@dataclass
class Services:
    """Everything wired together for one process."""

    scheduler: SchedulerService
    runner: FiringRunner
    control: ControlService


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """Load configuration and settle the log level (CLI > environment > file)."""
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif env_config.log_level:
        env_config.log_level = env_config.log_level.upper()
    else:
        env_config.log_level = app_config.logging.level

    return app_config, env_config


def build_services(
    app_config: AppConfig,
    env_config: EnvironmentConfig,
    shutdown_event: Optional[threading.Event] = None,
    jobstore=None,
) -> Services:
    """Construct clients, executor, scheduler and control surface.

    The database must already be initialized.
    """
    credentials = DatabaseCredentialProvider(CredentialVault(env_config.encryption_key))
    source_client = CanvasSourceClient(
        credentials,
        timeout=app_config.source.http_request_timeout,
        user_agent=app_config.source.user_agent,
        per_page=app_config.source.per_page,
    )
    delivery_client = TwilioDeliveryClient(
        env_config.twilio_account_sid,
        env_config.twilio_auth_token,
        env_config.twilio_phone_number,
        status_callback_url=app_config.delivery.status_callback_url,
    )
    retry_policy = RetryPolicy.from_config(app_config.retry)
    executor = FiringExecutor(
        source_client,
        delivery_client,
        retry_policy=retry_policy,
        max_segments=app_config.delivery.max_segments,
    )
    scheduler = SchedulerService(
        config=app_config.scheduler,
        jobstore_url=env_config.jobstore_url,
        jobstore=jobstore,
        history=app_config.history,
        shutdown_event=shutdown_event,
    )
    runner = FiringRunner(executor, retry_policy=retry_policy, schedule_retry=scheduler.schedule_retry)
    control = ControlService(source_client, credentials, scheduler, defaults=app_config.scheduler)
    return Services(scheduler=scheduler, runner=runner, control=control)


def reconcile_schedules(scheduler: SchedulerService):
    with get_session() as session:
        pairs = SubjectRepository(session).list_active_pairs()
    return scheduler.registry.reconcile(pairs)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    parser = argparse.ArgumentParser(
        description="duedigest - scheduled SMS digests of upcoming due items"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml, then config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--fire",
        nargs=2,
        metavar=("OWNER_ID", "SUBJECT_ID"),
        help="Run one firing for the pair immediately and exit",
    )
    mode.add_argument(
        "--reconcile",
        action="store_true",
        help="Reconcile installed triggers with active pairs and exit",
    )
    mode.add_argument(
        "--queue-stats",
        action="store_true",
        help="Print scheduler queue statistics and exit",
    )

    args = parser.parse_args(argv)

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        environment = os.environ.get("ENVIRONMENT", "local")
        configure_logging(
            level=env_config.log_level, format_type=app_config.logging.format, environment=environment
        )

        logger.info(
            "duedigest starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
            },
        )

        init_database(env_config.database_url)

        if args.fire or args.reconcile or args.queue_stats:
            return _run_command(args, app_config, env_config)

        shutdown_event = threading.Event()
        services = build_services(app_config, env_config, shutdown_event=shutdown_event)
        scheduler_service = services.scheduler

        def signal_handler(signum, frame):
            logger.info(
                f"Received signal {signum}, shutting down",
                extra={"event": "service.signal_received", "signal": signum},
            )
            scheduler_service.shutdown(wait=False)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        scheduler_service.start(services.runner)
        reconcile_schedules(scheduler_service)

        logger.info(
            "Scheduler started. Press Ctrl+C to stop",
            extra={"event": "service.daemon_mode.started"},
        )

        try:
            shutdown_event.wait()
        except KeyboardInterrupt:
            logger.info(
                "Keyboard interrupt received, shutting down",
                extra={"event": "service.keyboard_interrupt"},
            )
            scheduler_service.shutdown(wait=False)
        finally:
            close_database()

        logger.info(
            "duedigest stopped",
            extra={"event": "service.stopping", "uptime_seconds": round(time.time() - start_time, 2)},
        )
        return 0

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error during startup",
            extra={"event": "service.startup.failed", "error_type": type(e).__name__, "error": str(e)},
            exc_info=True,
        )
        return 1


def _run_command(args, app_config: AppConfig, env_config: EnvironmentConfig) -> int:
    """One-shot modes. The scheduler is opened paused so that retries and
    reconciled triggers are written to the job store without running there."""
    services = build_services(app_config, env_config)
    scheduler_service = services.scheduler
    scheduler_service.start(services.runner, paused=True)

    try:
        if args.fire:
            owner_id, subject_id = args.fire
            result = scheduler_service.run_now(owner_id, subject_id)
            print(
                f"Firing {result.firing_id}: {result.state.value} "
                f"(items={result.item_count}, sent={result.sent_count}, failed={result.failed_count})"
            )
            if result.error:
                print(f"  error: {result.error}")
            return 0 if result.state is not FiringState.FAILED_TERMINAL else 1

        if args.reconcile:
            outcome = reconcile_schedules(scheduler_service)
            print(
                f"Reconciled: installed={len(outcome.installed)} "
                f"removed={len(outcome.removed)} unchanged={len(outcome.unchanged)}"
            )
            return 0

        stats = scheduler_service.queue_stats()
        for key, value in stats.as_dict().items():
            print(f"{key}={value}")
        return 0
    finally:
        scheduler_service.shutdown(wait=True)
        close_database()


def run() -> None:
    """Console-script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
