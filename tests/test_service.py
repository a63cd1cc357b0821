import threading
import time
from datetime import datetime, timedelta

from email_scheduler.dispatcher import Dispatcher
from email_scheduler.models import ScheduleConfig, SchedulerState, Sender, SendOutcome
from email_scheduler.scheduler import Scheduler
from email_scheduler.service import POLL_INTERVAL_SEC, SchedulerService, ServiceState

SENDER = Sender(email="noreply@example.com", name="Email Scheduler Service")


class SteppingClock:
    """Advances one minute every time the service sleeps."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingDispatcher:
    def __init__(self, state: SchedulerState, clock) -> None:
        self.state = state
        self.clock = clock
        self.calls: list[tuple[list[str], Sender]] = []

    def dispatch(self, recipients, sender) -> SendOutcome:
        self.calls.append((list(recipients), sender))
        now = self.clock()
        self.state.last_send_time = now
        return SendOutcome(success_count=len(recipients), started_at=now, finished_at=now)


def _build_service(config: ScheduleConfig, start: datetime, *, max_sleeps: int):
    state = SchedulerState()
    clock = SteppingClock(start)
    dispatcher = RecordingDispatcher(state, clock)
    cancel_event = threading.Event()
    sleeps: list[float] = []

    def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        clock.advance(seconds)
        if len(sleeps) >= max_sleeps:
            cancel_event.set()

    service = SchedulerService(
        scheduler=Scheduler(config, state),
        dispatcher=dispatcher,  # type: ignore[arg-type]
        recipients=["a@example.com", "b@example.com"],
        sender=SENDER,
        clock=clock,
        sleep_func=fake_sleep,
    )
    return service, dispatcher, cancel_event, sleeps


def test_service_sends_on_test_interval_and_stops_on_cancel() -> None:
    config = ScheduleConfig(use_test_schedule=True, test_interval_minutes=2)
    service, dispatcher, cancel_event, sleeps = _build_service(config, datetime(2024, 1, 3, 12, 0), max_sleeps=5)

    service.run(cancel_event)

    # Checks at minutes 0..4; sends at 0, 2 and 4.
    assert service.check_count == 5
    assert len(dispatcher.calls) == 3
    assert sleeps == [POLL_INTERVAL_SEC] * 5
    assert service.state is ServiceState.STOPPED


def test_service_weekly_schedule_sends_once_in_the_matching_hour() -> None:
    config = ScheduleConfig(use_test_schedule=False, weekly_day=1, weekly_hour=9)
    # Monday 08:58, run for ten ticks across 09:00.
    service, dispatcher, cancel_event, _ = _build_service(config, datetime(2024, 1, 1, 8, 58), max_sleeps=10)

    service.run(cancel_event)

    assert len(dispatcher.calls) == 1
    recipients, sender = dispatcher.calls[0]
    assert recipients == ["a@example.com", "b@example.com"]
    assert sender == SENDER
    assert service.last_outcome is not None
    assert service.last_outcome.success_count == 2


def test_service_does_not_start_when_already_cancelled() -> None:
    config = ScheduleConfig(use_test_schedule=True, test_interval_minutes=1)
    service, dispatcher, cancel_event, sleeps = _build_service(config, datetime(2024, 1, 3, 12, 0), max_sleeps=1)
    cancel_event.set()

    service.run(cancel_event)

    assert service.check_count == 0
    assert dispatcher.calls == []
    assert sleeps == []
    assert service.state is ServiceState.STOPPED


def test_service_swallows_unexpected_errors_and_stops() -> None:
    class BrokenScheduler(Scheduler):
        def should_send_now(self, now: datetime) -> bool:
            raise RuntimeError("clock went backwards")

    state = SchedulerState()
    clock = SteppingClock(datetime(2024, 1, 3, 12, 0))
    dispatcher = RecordingDispatcher(state, clock)
    service = SchedulerService(
        scheduler=BrokenScheduler(ScheduleConfig(use_test_schedule=True), state),
        dispatcher=dispatcher,  # type: ignore[arg-type]
        recipients=["a@example.com"],
        sender=SENDER,
        clock=clock,
        sleep_func=lambda _: None,
    )

    service.run(threading.Event())

    assert service.state is ServiceState.STOPPED
    assert dispatcher.calls == []


def test_service_tick_reports_outcome_only_when_due() -> None:
    config = ScheduleConfig(use_test_schedule=True, test_interval_minutes=60)
    service, dispatcher, _, _ = _build_service(config, datetime(2024, 1, 3, 12, 0), max_sleeps=1)

    first = service.tick()
    second = service.tick()

    assert first is not None
    assert second is None
    assert len(dispatcher.calls) == 1
    assert service.state is ServiceState.CHECKING


def test_service_drives_real_dispatcher_and_updates_shared_state() -> None:
    class FakeSMTPClient:
        def __init__(self) -> None:
            from email_scheduler.models import SMTPConfig

            self.smtp_config = SMTPConfig(host="smtp.example.com", port=587)
            self.sent_targets: list[str] = []

        def __enter__(self):
            return self

        def __exit__(self, *args):
            pass

        def send(self, recipient_email: str, message: object) -> None:
            self.sent_targets.append(recipient_email)

    state = SchedulerState()
    clock = SteppingClock(datetime(2024, 1, 3, 12, 0))
    smtp_client = FakeSMTPClient()
    cancel_event = threading.Event()

    def fake_sleep(seconds: float) -> None:
        clock.advance(seconds)
        cancel_event.set()

    service = SchedulerService(
        scheduler=Scheduler(ScheduleConfig(use_test_schedule=True, test_interval_minutes=1), state),
        dispatcher=Dispatcher(smtp_client=smtp_client, state=state, clock=clock),  # type: ignore[arg-type]
        recipients=["a@example.com", "", "b@example.com"],
        sender=SENDER,
        clock=clock,
        sleep_func=fake_sleep,
    )

    service.run(cancel_event)

    assert smtp_client.sent_targets == ["a@example.com", "b@example.com"]
    assert state.last_send_time == datetime(2024, 1, 3, 12, 0)


def test_service_wakes_from_poll_sleep_when_cancelled() -> None:
    state = SchedulerState()
    clock = SteppingClock(datetime(2024, 1, 3, 12, 0))
    dispatcher = RecordingDispatcher(state, clock)
    service = SchedulerService(
        scheduler=Scheduler(ScheduleConfig(use_test_schedule=True, test_interval_minutes=1), state),
        dispatcher=dispatcher,  # type: ignore[arg-type]
        recipients=["a@example.com"],
        sender=SENDER,
        clock=clock,
        poll_interval_sec=300,
    )
    cancel_event = threading.Event()
    timer = threading.Timer(0.1, cancel_event.set)

    started = time.monotonic()
    timer.start()
    try:
        service.run(cancel_event)
    finally:
        timer.cancel()
    elapsed = time.monotonic() - started

    assert elapsed < 10
    assert service.check_count == 1
    assert len(dispatcher.calls) == 1
    assert service.state is ServiceState.STOPPED
