from __future__ import annotations

import logging
import smtplib
from collections.abc import Iterable
from datetime import datetime
from typing import Callable

from email_scheduler.message_builder import ACTIVATION_SUBJECT, build_activation_message, format_timestamp
from email_scheduler.models import (
    FAILED,
    SENT,
    SKIPPED,
    RecipientResult,
    SchedulerState,
    Sender,
    SendOutcome,
)
from email_scheduler.smtp_client import SMTPClient

logger = logging.getLogger(__name__)


class Dispatcher:
    """Sends one batch of activation reminders over a single SMTP session.

    Every failure is turned into a diagnostic plus a counter; ``dispatch``
    never raises for delivery or connection problems. Whatever happens, the
    batch end time is written to ``state.last_send_time`` so a broken mail
    server cannot cause a send attempt on every tick.
    """

    def __init__(
        self,
        *,
        smtp_client: SMTPClient,
        state: SchedulerState,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.smtp_client = smtp_client
        self.state = state
        self.clock = clock

    def dispatch(self, recipients: Iterable[str], sender: Sender) -> SendOutcome:
        outcome = SendOutcome(started_at=self.clock())
        try:
            self._send_batch(list(recipients), sender, outcome)
        finally:
            finished_at = self.clock()
            outcome.finished_at = finished_at
            self.state.last_send_time = finished_at
        return outcome

    def _send_batch(self, recipients: list[str], sender: Sender, outcome: SendOutcome) -> None:
        if not recipients:
            logger.warning("No recipients configured for account activation emails")
            return

        if not (sender.email or "").strip():
            logger.error("Sender email is not configured; aborting batch")
            outcome.aborted = True
            outcome.error = "Sender email is not configured"
            return

        host, port = self.smtp_client.smtp_config.host, self.smtp_client.smtp_config.port
        logger.info(
            "Starting email sending process at %s with %s recipients",
            format_timestamp(outcome.started_at or self.clock()),
            len(recipients),
        )

        # Anything escaping this block comes from opening the session: each
        # recipient's own errors are captured by _deliver.
        try:
            with self.smtp_client:
                logger.info("Connected to SMTP server %s:%s", host, port)
                for recipient in recipients:
                    outcome.record(self._deliver(recipient, sender))
        except Exception as exc:
            outcome.aborted = True
            outcome.error = str(exc)
            logger.error(
                "SMTP error connecting to server %s:%s: %s (Status: %s)",
                host,
                port,
                exc,
                _status_code(exc),
            )
            return

        logger.info(
            "Email sending process completed. Success: %s, Failures: %s, Skipped: %s",
            outcome.success_count,
            outcome.failure_count,
            outcome.skipped_count,
        )

    def _deliver(self, recipient: str, sender: Sender) -> RecipientResult:
        email = (recipient or "").strip()
        if not email:
            logger.warning("Skipping empty or null recipient email address")
            return RecipientResult(email=recipient or "", status=SKIPPED)

        try:
            sent_at = self.clock()
            message = build_activation_message(sender=sender, recipient_email=email, sent_at=sent_at)
            logger.debug("Created email message to %s with subject '%s'", email, ACTIVATION_SUBJECT)
            self.smtp_client.send(email, message)
        except smtplib.SMTPException as exc:
            status_code = _status_code(exc)
            logger.error("SMTP error sending email to %s: %s (Status: %s)", email, exc, status_code)
            return RecipientResult(email=email, status=FAILED, error=str(exc), status_code=status_code)
        except Exception as exc:
            logger.error("Failed to send email to %s: %s", email, exc)
            return RecipientResult(email=email, status=FAILED, error=str(exc))

        logger.info("Email successfully sent to %s at %s", email, format_timestamp(sent_at))
        return RecipientResult(email=email, status=SENT, sent_at=sent_at)


def _status_code(exc: BaseException) -> int | None:
    if isinstance(exc, smtplib.SMTPResponseException):
        return exc.smtp_code
    if isinstance(exc, smtplib.SMTPRecipientsRefused):
        for code, _ in exc.recipients.values():
            return code
    return None
