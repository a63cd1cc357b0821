"""Settings loading for the scheduler service.

Settings come from a JSON file holding an ``EmailSettings`` object::

    {
      "EmailSettings": {
        "Recipients": ["user@example.com"],
        "SmtpServer": "smtp.gmail.com",
        "SmtpPort": 587,
        "SenderEmail": "noreply@example.com",
        "UseTestSchedule": false,
        "WeeklyScheduleDay": 1,
        "WeeklyScheduleHour": 9
      }
    }

Keys are matched case-insensitively and ignoring underscores, so
``smtp_port`` and ``SmtpPort`` are the same setting.
"""
from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from email_scheduler.models import ScheduleConfig, Sender, ServiceSettings, SMTPConfig
from email_scheduler.recipients_loader import RecipientLoadError, load_recipients

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "EMAIL_SCHEDULER_CONFIG"
PASSWORD_ENV_VAR = "EMAIL_SCHEDULER_SMTP_PASSWORD"
DEFAULT_CONFIG_FILE = "appsettings.json"
SECTION_NAME = "EmailSettings"
IMPLICIT_TLS_PORT = 465

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ConfigError(ValueError):
    """Raised when the settings file is missing or invalid."""


def resolve_config_path(path: str | Path | None = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return Path(DEFAULT_CONFIG_FILE)


def load_settings(path: str | Path | None = None) -> ServiceSettings:
    config_path = resolve_config_path(path)
    data = _read_json(config_path)

    section = data.get(SECTION_NAME, data)
    if not isinstance(section, Mapping):
        raise ConfigError(f"'{SECTION_NAME}' must be an object")

    return build_settings(section, base_dir=config_path.parent)


def build_settings(section: Mapping[str, Any], *, base_dir: Path | None = None) -> ServiceSettings:
    values = {_normalize_key(key): value for key, value in section.items()}

    schedule = _build_schedule(values)
    smtp = _build_smtp(values)
    sender_email = values.get("senderemail", "noreply@example.com")
    sender_name = str(values.get("sendername", "Email Scheduler Service") or "").strip()
    sender = Sender(
        email=_validate_email(str(sender_email or ""), field_name="SenderEmail"),
        name=sender_name or None,
    )
    recipients = _build_recipients(values, base_dir=base_dir or Path.cwd())

    return ServiceSettings(schedule=schedule, smtp=smtp, sender=sender, recipients=recipients)


def _build_schedule(values: Mapping[str, Any]) -> ScheduleConfig:
    return ScheduleConfig(
        use_test_schedule=_parse_bool(values.get("usetestschedule", False), field_name="UseTestSchedule"),
        test_interval_minutes=_parse_int(
            values.get("testintervalminutes", 1),
            field_name="TestIntervalMinutes",
            minimum=1,
        ),
        weekly_day=_parse_int(
            values.get("weeklyscheduleday", 1),
            field_name="WeeklyScheduleDay",
            minimum=0,
            maximum=6,
        ),
        weekly_hour=_parse_int(
            values.get("weeklyschedulehour", 9),
            field_name="WeeklyScheduleHour",
            minimum=0,
            maximum=23,
        ),
    )


def _build_smtp(values: Mapping[str, Any]) -> SMTPConfig:
    host = str(values.get("smtpserver", "smtp.gmail.com")).strip()
    if not host:
        raise ConfigError("SmtpServer must not be empty")
    port = _parse_int(values.get("smtpport", 587), field_name="SmtpPort", minimum=1, maximum=65535)

    # EnableSsl means "secure the connection": implicit TLS on 465,
    # STARTTLS anywhere else unless UseStartTls says otherwise.
    enable_ssl = _parse_bool(values.get("enablessl", True), field_name="EnableSsl")
    if "usestarttls" in values:
        use_starttls = _parse_bool(values["usestarttls"], field_name="UseStartTls")
        use_ssl = enable_ssl and not use_starttls
    else:
        use_ssl = enable_ssl and port == IMPLICIT_TLS_PORT
        use_starttls = enable_ssl and port != IMPLICIT_TLS_PORT

    password = os.environ.get(PASSWORD_ENV_VAR) or str(values.get("password") or "")

    return SMTPConfig(
        host=host,
        port=port,
        username=str(values.get("username") or ""),
        password=password,
        use_ssl=use_ssl,
        use_starttls=use_starttls,
        timeout_sec=_parse_int(values.get("timeoutseconds", 30), field_name="TimeoutSeconds", minimum=1),
    )


def _build_recipients(values: Mapping[str, Any], *, base_dir: Path) -> list[str]:
    raw_recipients = values.get("recipients") or []
    if not isinstance(raw_recipients, list):
        raise ConfigError("Recipients must be a list of email addresses")
    # Blank entries are kept; the dispatcher skips them at send time.
    recipients = ["" if item is None else str(item) for item in raw_recipients]

    recipients_file = values.get("recipientsfile")
    if recipients_file:
        path = Path(str(recipients_file))
        if not path.is_absolute():
            path = base_dir / path
        try:
            result = load_recipients(path)
        except RecipientLoadError as exc:
            raise ConfigError(str(exc)) from exc
        if result.stats.invalid_rows:
            logger.warning("Ignored %s invalid rows in %s", result.stats.invalid_rows, path)
        recipients.extend(result.recipients)

    return recipients


def _read_json(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"Settings file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Settings file is not valid JSON: {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Settings file must contain a JSON object: {path}")
    return data


def _normalize_key(key: str) -> str:
    return str(key).replace("_", "").replace("-", "").lower()


def _validate_email(email: str, *, field_name: str) -> str:
    normalized = email.strip()
    if not normalized:
        raise ConfigError(f"{field_name} must not be empty")
    if not EMAIL_RE.match(normalized):
        raise ConfigError(f"{field_name} is not a valid email address")
    return normalized


def _parse_int(value: Any, *, field_name: str, minimum: int | None = None, maximum: int | None = None) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be an integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be an integer") from exc

    if minimum is not None and parsed < minimum:
        raise ConfigError(f"{field_name} must be >= {minimum}")
    if maximum is not None and parsed > maximum:
        raise ConfigError(f"{field_name} must be <= {maximum}")
    return parsed


def _parse_bool(value: Any, *, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off", ""}:
            return False
    raise ConfigError(f"{field_name} must be a boolean")
