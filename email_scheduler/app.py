from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from email_scheduler.dispatcher import Dispatcher
from email_scheduler.logging_setup import configure_logging, flush_logs
from email_scheduler.models import SchedulerState, ServiceSettings
from email_scheduler.scheduler import Scheduler
from email_scheduler.service import SchedulerService
from email_scheduler.settings import ConfigError, load_settings, resolve_config_path
from email_scheduler.smtp_client import SMTPClient

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="email-scheduler",
        description="Send account activation reminders on a test interval or a weekly schedule.",
    )
    parser.add_argument(
        "--config",
        help="Path to the JSON settings file (default: $EMAIL_SCHEDULER_CONFIG or appsettings.json)",
    )
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument(
        "--test-connection",
        action="store_true",
        help="Open and close one SMTP session, then exit",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate the settings and print a summary without sending",
    )
    return parser


def build_service(settings: ServiceSettings) -> SchedulerService:
    state = SchedulerState()
    scheduler = Scheduler(settings.schedule, state)
    dispatcher = Dispatcher(smtp_client=SMTPClient(settings.smtp), state=state)
    return SchedulerService(
        scheduler=scheduler,
        dispatcher=dispatcher,
        recipients=settings.recipients,
        sender=settings.sender,
    )


def install_signal_handlers(cancel_event: threading.Event) -> None:
    def _request_stop(signum, _frame) -> None:
        logger.info("Received signal %s, stopping after the current cycle", signal.Signals(signum).name)
        cancel_event.set()

    signal.signal(signal.SIGINT, _request_stop)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _request_stop)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    config_path = resolve_config_path(args.config)
    try:
        settings = load_settings(config_path)
    except ConfigError as exc:
        logger.error("Invalid settings in %s: %s", config_path, exc)
        return EXIT_CONFIG_ERROR

    if args.dry_run:
        _print_summary(settings)
        return EXIT_OK

    if args.test_connection:
        try:
            SMTPClient(settings.smtp).test_connection()
        except Exception as exc:
            logger.error("SMTP connection test to %s:%s failed: %s", settings.smtp.host, settings.smtp.port, exc)
            return EXIT_FAILURE
        logger.info("SMTP connection test to %s:%s succeeded", settings.smtp.host, settings.smtp.port)
        return EXIT_OK

    cancel_event = threading.Event()
    install_signal_handlers(cancel_event)
    try:
        build_service(settings).run(cancel_event)
    finally:
        flush_logs()
    return EXIT_OK


def _print_summary(settings: ServiceSettings) -> None:
    scheduler = Scheduler(settings.schedule, SchedulerState())
    sendable = [recipient for recipient in settings.recipients if recipient.strip()]
    print(f"SMTP server: {settings.smtp.host}:{settings.smtp.port}")
    print(f"Sender: {settings.sender.name or ''} <{settings.sender.email}>")
    print(f"Schedule: {scheduler.describe()}")
    print(f"Recipients: {len(sendable)} ({len(settings.recipients) - len(sendable)} blank entries skipped)")
    for recipient in sendable:
        print(f"  - {recipient}")


if __name__ == "__main__":
    sys.exit(main())
