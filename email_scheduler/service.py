from __future__ import annotations

import enum
import logging
import threading
from datetime import datetime
from typing import Callable

from email_scheduler.dispatcher import Dispatcher
from email_scheduler.message_builder import format_timestamp
from email_scheduler.models import Sender, SendOutcome
from email_scheduler.scheduler import Scheduler

logger = logging.getLogger(__name__)

POLL_INTERVAL_SEC = 60.0


class ServiceState(enum.Enum):
    IDLE = "idle"
    CHECKING = "checking"
    SENDING = "sending"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


class SchedulerService:
    """Check-send-sleep loop driving the scheduler and the dispatcher.

    One cycle runs at a time. Cancellation is cooperative: ``cancel_event``
    is looked at before each check and around the sleep, so a batch that
    has started always runs to completion.
    """

    def __init__(
        self,
        *,
        scheduler: Scheduler,
        dispatcher: Dispatcher,
        recipients: list[str],
        sender: Sender,
        clock: Callable[[], datetime] = datetime.now,
        sleep_func: Callable[[float], None] | None = None,
        poll_interval_sec: float = POLL_INTERVAL_SEC,
    ):
        self.scheduler = scheduler
        self.dispatcher = dispatcher
        self.recipients = recipients
        self.sender = sender
        self.clock = clock
        self.sleep_func = sleep_func
        self.poll_interval_sec = poll_interval_sec
        self.state = ServiceState.IDLE
        self.check_count = 0
        self.last_outcome: SendOutcome | None = None

    def run(self, cancel_event: threading.Event | None = None) -> None:
        cancel_event = cancel_event or threading.Event()
        self._log_startup()

        try:
            while not cancel_event.is_set():
                self.tick()
                self.state = ServiceState.SLEEPING
                logger.debug("Sleeping for %s seconds before next schedule check", self.poll_interval_sec)
                if self._sleep_with_cancel(self.poll_interval_sec, cancel_event):
                    break
            logger.info("Email Scheduler service was cancelled")
        except Exception as exc:
            logger.exception("Exception in Email Scheduler service: %s", exc)

        self.state = ServiceState.STOPPED
        logger.info("Email Scheduler service stopping at: %s", format_timestamp(self.clock()))

    def tick(self) -> SendOutcome | None:
        """Run one check and, when due, one batch. Returns the batch outcome."""
        self.state = ServiceState.CHECKING
        self.check_count += 1
        now = self.clock()
        logger.info("Schedule check #%s at: %s", self.check_count, format_timestamp(now))

        if not self.scheduler.should_send_now(now):
            logger.info("Not time to send emails yet - waiting for next check")
            return None

        self.state = ServiceState.SENDING
        logger.info("Sending account activation emails to %s recipients", len(self.recipients))
        outcome = self.dispatcher.dispatch(self.recipients, self.sender)
        self.last_outcome = outcome
        if outcome.started_at is not None and outcome.finished_at is not None:
            duration = (outcome.finished_at - outcome.started_at).total_seconds()
            logger.info("Email sending process completed in %.2f seconds", duration)
        return outcome

    def _log_startup(self) -> None:
        logger.info("Email Scheduler service started at: %s", format_timestamp(self.clock()))
        logger.info("Configured recipients: %s", ", ".join(self.recipients))
        if self.scheduler.config.use_test_schedule:
            logger.info("Running in TEST mode - emails will be sent %s", self.scheduler.describe())
        else:
            logger.info("Running in PRODUCTION mode - emails will be sent %s", self.scheduler.describe())

    def _sleep_with_cancel(self, delay_sec: float, cancel_event: threading.Event) -> bool:
        if self.sleep_func is None:
            return cancel_event.wait(timeout=delay_sec)
        self.sleep_func(delay_sec)
        return cancel_event.is_set()
