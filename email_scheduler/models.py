from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

SENT = "sent"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass(frozen=True)
class ScheduleConfig:
    use_test_schedule: bool = False
    test_interval_minutes: int = 1
    # 0 = Sunday ... 6 = Saturday
    weekly_day: int = 1
    weekly_hour: int = 9

    def __post_init__(self) -> None:
        if self.test_interval_minutes <= 0:
            raise ValueError("test_interval_minutes must be > 0")
        if not 0 <= self.weekly_day <= 6:
            raise ValueError("weekly_day must be between 0 (Sunday) and 6 (Saturday)")
        if not 0 <= self.weekly_hour <= 23:
            raise ValueError("weekly_hour must be between 0 and 23")


@dataclass
class SchedulerState:
    """Process-lifetime scheduling state. Only the dispatcher writes it."""

    last_send_time: datetime = datetime.min


@dataclass(frozen=True)
class Sender:
    email: str
    name: str | None = "Email Scheduler Service"


@dataclass(frozen=True)
class SMTPConfig:
    host: str = "smtp.gmail.com"
    port: int = 587
    username: str = ""
    password: str = ""
    use_ssl: bool = False
    use_starttls: bool = True
    timeout_sec: int = 30


@dataclass(frozen=True)
class RecipientResult:
    email: str
    status: str
    error: str | None = None
    status_code: int | None = None
    sent_at: datetime | None = None


@dataclass
class SendOutcome:
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    aborted: bool = False
    error: str | None = None
    results: list[RecipientResult] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def record(self, result: RecipientResult) -> None:
        self.results.append(result)
        if result.status == SENT:
            self.success_count += 1
        elif result.status == FAILED:
            self.failure_count += 1
        else:
            self.skipped_count += 1


@dataclass(frozen=True)
class ServiceSettings:
    schedule: ScheduleConfig
    smtp: SMTPConfig
    sender: Sender
    recipients: list[str]
