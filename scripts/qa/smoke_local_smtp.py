#!/usr/bin/env python3
"""Local SMTP end-to-end smoke test.

Starts a lightweight debug SMTP server and drives the scheduler service
through a few fake-clock ticks to check:
  - the test schedule fires on the first check and then waits the interval
  - one SMTP session per batch
  - blank recipients are skipped, refused recipients counted as failures
  - the activation message reaches the server

Usage:
  python scripts/qa/smoke_local_smtp.py
"""

from __future__ import annotations

import socketserver
import threading
from datetime import datetime, timedelta
from socket import socket

# ── Mini SMTP Server ────────────────────────────────────────────────────────


class MiniSMTPServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True

    def __init__(self, server_address, handler_class):
        super().__init__(server_address, handler_class)
        self.payloads: list[str] = []
        self.sessions = 0


class MiniSMTPHandler(socketserver.StreamRequestHandler):
    def handle(self) -> None:
        self.server.sessions += 1  # type: ignore[attr-defined]
        self.wfile.write(b"220 smoke-smtp ready\r\n")
        self.wfile.flush()
        while True:
            line = self.rfile.readline()
            if not line:
                return
            cmd = line.decode("utf-8", errors="ignore").strip().upper()
            if cmd.startswith("EHLO") or cmd.startswith("HELO"):
                self.wfile.write(b"250-smoke-smtp\r\n250 SIZE 10485760\r\n")
            elif cmd.startswith("RCPT TO") and "REJECT@" in cmd:
                self.wfile.write(b"550 5.1.1 Mailbox unavailable\r\n")
            elif cmd.startswith("MAIL FROM") or cmd.startswith("RCPT TO"):
                self.wfile.write(b"250 OK\r\n")
            elif cmd == "DATA":
                self.wfile.write(b"354 End data\r\n")
                data: list[bytes] = []
                while True:
                    chunk = self.rfile.readline()
                    if chunk in (b".\r\n", b".\n"):
                        break
                    data.append(chunk)
                self.server.payloads.append(b"".join(data).decode("utf-8", errors="ignore"))  # type: ignore[attr-defined]
                self.wfile.write(b"250 queued\r\n")
            elif cmd == "QUIT":
                self.wfile.write(b"221 bye\r\n")
                self.wfile.flush()
                return
            else:
                self.wfile.write(b"250 OK\r\n")
            self.wfile.flush()


def _pick_free_port() -> int:
    with socket() as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


# ── Main ────────────────────────────────────────────────────────────────────


def main() -> None:
    from email_scheduler.dispatcher import Dispatcher
    from email_scheduler.logging_setup import configure_logging
    from email_scheduler.models import ScheduleConfig, SchedulerState, Sender, SMTPConfig
    from email_scheduler.scheduler import Scheduler
    from email_scheduler.service import SchedulerService
    from email_scheduler.smtp_client import SMTPClient

    configure_logging("INFO")

    port = _pick_free_port()
    server = MiniSMTPServer(("127.0.0.1", port), MiniSMTPHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    print(f"[start] local SMTP server on 127.0.0.1:{port}")

    smtp_config = SMTPConfig(
        host="127.0.0.1",
        port=port,
        username="",
        password="",
        use_ssl=False,
        use_starttls=False,
        timeout_sec=5,
    )

    clock_now = [datetime(2024, 1, 3, 12, 0)]
    cancel_event = threading.Event()
    ticks = 5

    def clock() -> datetime:
        return clock_now[0]

    def fake_sleep(seconds: float) -> None:
        clock_now[0] += timedelta(seconds=seconds)
        if clock_now[0] >= datetime(2024, 1, 3, 12, ticks):
            cancel_event.set()

    state = SchedulerState()
    service = SchedulerService(
        scheduler=Scheduler(ScheduleConfig(use_test_schedule=True, test_interval_minutes=2), state),
        dispatcher=Dispatcher(smtp_client=SMTPClient(smtp_config), state=state, clock=clock),
        recipients=["alice@example.com", "", "reject@example.com", "bob@example.com"],
        sender=Sender(email="noreply@example.com", name="Smoke Test"),
        clock=clock,
        sleep_func=fake_sleep,
    )

    print(f"\n[run] {ticks} ticks on a 2-minute test schedule...")
    service.run(cancel_event)

    try:
        outcome = service.last_outcome
        assert outcome is not None, "expected at least one batch"
        print(f"  checks: {service.check_count}, last batch: {outcome.success_count} sent, "
              f"{outcome.failure_count} failed, {outcome.skipped_count} skipped")
        assert service.check_count == ticks
        assert (outcome.success_count, outcome.failure_count, outcome.skipped_count) == (2, 1, 1)
        print("  ✓ batch counters")

        # Batches at minutes 0, 2 and 4: one session each, two delivered messages each.
        assert server.sessions == 3, f"expected 3 sessions, server saw {server.sessions}"
        assert len(server.payloads) == 6, f"expected 6 messages, server saw {len(server.payloads)}"
        assert "Account Activation Reminder" in server.payloads[0]
        print("  ✓ one session per batch, message content")
        assert state.last_send_time == datetime(2024, 1, 3, 12, 4)
        print("  ✓ last send time advanced")
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=1)

    print("\n" + "=" * 50)
    print("✅ Local SMTP smoke test passed!")
    print("=" * 50)


if __name__ == "__main__":
    main()
