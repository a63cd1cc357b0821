from datetime import datetime, timedelta

import pytest

from email_scheduler.models import ScheduleConfig, SchedulerState
from email_scheduler.scheduler import Scheduler, day_of_week

# 2024-01-01 is a Monday.
MONDAY_9AM = datetime(2024, 1, 1, 9, 0, 0)


def _scheduler(config: ScheduleConfig, last_send_time: datetime = datetime.min) -> Scheduler:
    return Scheduler(config, SchedulerState(last_send_time=last_send_time))


def test_day_of_week_counts_from_sunday() -> None:
    assert day_of_week(datetime(2023, 12, 31)) == 0  # Sunday
    assert day_of_week(MONDAY_9AM) == 1
    assert day_of_week(datetime(2024, 1, 6)) == 6  # Saturday


def test_test_schedule_fires_on_first_check() -> None:
    scheduler = _scheduler(ScheduleConfig(use_test_schedule=True, test_interval_minutes=60))

    assert scheduler.should_send_now(MONDAY_9AM) is True


def test_test_schedule_waits_for_full_interval() -> None:
    last_send = datetime(2024, 1, 1, 12, 0, 0)
    scheduler = _scheduler(ScheduleConfig(use_test_schedule=True, test_interval_minutes=60), last_send)

    assert scheduler.should_send_now(last_send + timedelta(minutes=59)) is False
    assert scheduler.should_send_now(last_send + timedelta(minutes=59, seconds=59)) is False
    assert scheduler.should_send_now(last_send + timedelta(minutes=60)) is True
    assert scheduler.should_send_now(last_send + timedelta(hours=5)) is True


def test_test_schedule_ignores_weekly_settings() -> None:
    last_send = datetime(2024, 1, 3, 17, 30)  # Wednesday
    config = ScheduleConfig(use_test_schedule=True, test_interval_minutes=1, weekly_day=1, weekly_hour=9)
    scheduler = _scheduler(config, last_send)

    assert scheduler.should_send_now(last_send + timedelta(minutes=1, seconds=15)) is True


def test_weekly_schedule_fires_at_configured_day_and_hour() -> None:
    config = ScheduleConfig(use_test_schedule=False, weekly_day=1, weekly_hour=9)
    scheduler = _scheduler(config, MONDAY_9AM - timedelta(hours=2))

    assert scheduler.should_send_now(MONDAY_9AM) is True
    assert scheduler.should_send_now(MONDAY_9AM.replace(second=45)) is True


@pytest.mark.parametrize(
    "now",
    [
        MONDAY_9AM.replace(minute=1),  # minute != 0
        MONDAY_9AM.replace(hour=10),  # wrong hour
        MONDAY_9AM + timedelta(days=1),  # Tuesday
        MONDAY_9AM - timedelta(days=1),  # Sunday
    ],
)
def test_weekly_schedule_rejects_any_single_mismatch(now: datetime) -> None:
    config = ScheduleConfig(use_test_schedule=False, weekly_day=1, weekly_hour=9)
    scheduler = _scheduler(config, now - timedelta(days=3))

    assert scheduler.should_send_now(now) is False


def test_weekly_schedule_requires_an_hour_since_last_send() -> None:
    config = ScheduleConfig(use_test_schedule=False, weekly_day=1, weekly_hour=9)

    recent = _scheduler(config, MONDAY_9AM - timedelta(minutes=30))
    assert recent.should_send_now(MONDAY_9AM) is False

    exactly_one_hour = _scheduler(config, MONDAY_9AM - timedelta(hours=1))
    assert exactly_one_hour.should_send_now(MONDAY_9AM) is True


def test_weekly_schedule_supports_sunday() -> None:
    sunday_midnight = datetime(2024, 1, 7, 0, 0)
    scheduler = _scheduler(ScheduleConfig(use_test_schedule=False, weekly_day=0, weekly_hour=0))

    assert scheduler.should_send_now(sunday_midnight) is True


def test_should_send_now_does_not_touch_state() -> None:
    state = SchedulerState()
    scheduler = Scheduler(ScheduleConfig(use_test_schedule=True, test_interval_minutes=1), state)

    scheduler.should_send_now(MONDAY_9AM)

    assert state.last_send_time == datetime.min


def test_describe_reports_mode() -> None:
    assert _scheduler(ScheduleConfig(use_test_schedule=True, test_interval_minutes=5)).describe() == (
        "every 5 minute(s)"
    )
    assert _scheduler(ScheduleConfig(weekly_day=3, weekly_hour=7)).describe() == "weekly on Wednesday at 07:00"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"test_interval_minutes": 0},
        {"weekly_day": 7},
        {"weekly_day": -1},
        {"weekly_hour": 24},
    ],
)
def test_schedule_config_rejects_out_of_range_values(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        ScheduleConfig(**kwargs)
