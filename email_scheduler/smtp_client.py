from __future__ import annotations

import contextlib
import logging
import smtplib
import time
from email.message import EmailMessage
from types import TracebackType
from typing import Callable

from email_scheduler.models import SMTPConfig

logger = logging.getLogger(__name__)


class SMTPClient:
    """SMTP client that keeps one session open for a whole batch.

    Usage (one session per batch):
        with client:
            for email, msg in batch:
                client.send(email, msg)

    Usage (single shot):
        client.send(email, msg)
    """

    def __init__(self, smtp_config: SMTPConfig, *, sleep_func: Callable[[float], None] = time.sleep):
        self.smtp_config = smtp_config
        self.sleep_func = sleep_func
        self._persistent_server: smtplib.SMTP | None = None
        self._in_session = False

    # -- context manager for connection reuse ----------------------------------

    def __enter__(self) -> SMTPClient:
        """Establish the SMTP session, retrying once after 2 s on transient errors.

        Some servers greylist (RFC 6647) unfamiliar clients and answer the
        first connection with a temporary ``421``. A single retry covers that
        case. Authentication failures are not retried.
        """
        last_error: Exception | None = None
        for attempt in range(2):
            try:
                self._persistent_server = self._connect()
                self._in_session = True
                return self
            except smtplib.SMTPAuthenticationError:
                raise
            except (OSError, smtplib.SMTPException) as exc:
                last_error = exc
                if attempt == 0:
                    logger.debug(
                        "SMTP connect to %s:%s failed (%s), retrying",
                        self.smtp_config.host,
                        self.smtp_config.port,
                        exc,
                    )
                    self.sleep_func(2)
        raise last_error  # type: ignore[misc]

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self._in_session = False
        self._close_persistent()

    # -- public API ------------------------------------------------------------

    def test_connection(self) -> None:
        self._with_server(lambda _: None)

    def send(self, recipient_email: str, message: EmailMessage) -> None:
        def _send(server: smtplib.SMTP) -> None:
            refused = server.send_message(message)
            if recipient_email in refused:
                raise smtplib.SMTPRecipientsRefused(refused)

        if not self._in_session:
            self._with_server(_send)
            return

        if self._persistent_server is None:
            logger.debug("Reopening SMTP session to %s:%s", self.smtp_config.host, self.smtp_config.port)
            self._persistent_server = self._connect()
        try:
            _send(self._persistent_server)
        except smtplib.SMTPServerDisconnected:
            # The message is not resent; the next recipient reopens the session.
            self._drop_persistent()
            raise

    # -- internals -------------------------------------------------------------

    def _connect(self) -> smtplib.SMTP:
        if self.smtp_config.use_ssl and self.smtp_config.use_starttls:
            raise ValueError("SMTP configuration conflict: use_ssl and use_starttls cannot both be enabled")

        if self.smtp_config.use_ssl:
            server = smtplib.SMTP_SSL(
                self.smtp_config.host,
                self.smtp_config.port,
                timeout=self.smtp_config.timeout_sec,
            )
        else:
            server = smtplib.SMTP(
                self.smtp_config.host,
                self.smtp_config.port,
                timeout=self.smtp_config.timeout_sec,
            )

        try:
            if self.smtp_config.use_starttls:
                server.starttls()
            self._login_if_needed(server)
        except BaseException:
            with contextlib.suppress(smtplib.SMTPException, OSError):
                server.close()
            raise
        return server

    def _close_persistent(self) -> None:
        server = self._persistent_server
        self._persistent_server = None
        if server is not None:
            with contextlib.suppress(smtplib.SMTPException, OSError):
                server.quit()

    def _drop_persistent(self) -> None:
        server = self._persistent_server
        self._persistent_server = None
        if server is not None:
            with contextlib.suppress(smtplib.SMTPException, OSError):
                server.close()

    def _with_server(self, callback: Callable[[smtplib.SMTP], None]) -> None:
        server = self._connect()
        try:
            callback(server)
        finally:
            with contextlib.suppress(smtplib.SMTPException, OSError):
                server.quit()

    def _login_if_needed(self, server: smtplib.SMTP) -> None:
        if not self.smtp_config.username or not self.smtp_config.password:
            logger.warning("No SMTP credentials provided - anonymous session will be used")
            return
        logger.debug("Using credentials for user %s", self.smtp_config.username)
        server.login(self.smtp_config.username, self.smtp_config.password)
