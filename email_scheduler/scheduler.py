from __future__ import annotations

import logging
from datetime import datetime, timedelta

from email_scheduler.models import ScheduleConfig, SchedulerState

logger = logging.getLogger(__name__)

# Indexed with 0 = Sunday, matching ScheduleConfig.weekly_day.
DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")

PRODUCTION_MIN_GAP = timedelta(hours=1)


def day_of_week(timestamp: datetime) -> int:
    """Return the weekday with Sunday as 0 (``datetime.weekday`` uses Monday as 0)."""
    return (timestamp.weekday() + 1) % 7


class Scheduler:
    """Decides whether a batch is due. Never writes ``state``."""

    def __init__(self, config: ScheduleConfig, state: SchedulerState):
        self.config = config
        self.state = state

    def should_send_now(self, now: datetime) -> bool:
        elapsed = now - self.state.last_send_time

        if self.config.use_test_schedule:
            elapsed_minutes = elapsed.total_seconds() / 60
            should_send = elapsed_minutes >= self.config.test_interval_minutes
            if should_send:
                logger.info(
                    "Test schedule triggered: %s minutes elapsed since last send (threshold: %s)",
                    _format_elapsed(elapsed_minutes),
                    self.config.test_interval_minutes,
                )
            return should_send

        should_send = (
            day_of_week(now) == self.config.weekly_day
            and now.hour == self.config.weekly_hour
            and now.minute == 0
            and elapsed >= PRODUCTION_MIN_GAP
        )
        if should_send:
            logger.info("Weekly schedule triggered: Day %s, Hour %s", DAY_NAMES[day_of_week(now)], now.hour)
        return should_send

    def describe(self) -> str:
        if self.config.use_test_schedule:
            return f"every {self.config.test_interval_minutes} minute(s)"
        return f"weekly on {DAY_NAMES[self.config.weekly_day]} at {self.config.weekly_hour:02d}:00"


def _format_elapsed(elapsed_minutes: float) -> str:
    # datetime.min as "never sent" produces an enormous elapsed value.
    if elapsed_minutes > 1e9:
        return "never"
    return f"{elapsed_minutes:.2f}"
