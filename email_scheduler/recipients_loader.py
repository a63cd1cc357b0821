from __future__ import annotations

import json
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
EMAIL_HEADERS = {"email", "e-mail", "mail", "address", "email address", "recipient"}


class RecipientLoadError(ValueError):
    """Raised when recipient data cannot be parsed safely."""


@dataclass(frozen=True)
class RecipientStats:
    total_rows: int
    valid_rows: int
    invalid_rows: int
    duplicate_rows: int
    empty_rows: int


@dataclass(frozen=True)
class RecipientLoadResult:
    recipients: list[str]
    stats: RecipientStats


def load_recipients(
    file_path: str | Path,
    *,
    raise_on_invalid: bool = False,
) -> RecipientLoadResult:
    path = Path(file_path)
    if not path.exists():
        raise RecipientLoadError(f"Recipient file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".json":
        rows = _load_json_rows(path)
    elif suffix in {".xlsx", ".xlsm"}:
        rows = _load_xlsx_rows(path)
    elif suffix in {".txt", ".csv", ""}:
        rows = _load_text_rows(path)
    else:
        raise RecipientLoadError(f"Unsupported recipient file format: {suffix}")

    return _normalize_rows(rows, raise_on_invalid=raise_on_invalid)


def _load_json_rows(path: Path) -> list[tuple[int, object]]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except json.JSONDecodeError as exc:
        raise RecipientLoadError(f"Recipient file is not valid JSON: {path}: {exc}") from exc

    # {"email": "name"} maps are accepted; only the keys matter here.
    if isinstance(payload, dict):
        return list(enumerate(payload.keys(), start=1))

    if isinstance(payload, list):
        rows: list[tuple[int, object]] = []
        for index, item in enumerate(payload, start=1):
            if isinstance(item, dict):
                rows.append((index, item.get("email")))
            elif item is None or isinstance(item, str):
                rows.append((index, item))
            else:
                raise RecipientLoadError(f"Invalid JSON row at index {index}: expected string or object")
        return rows

    raise RecipientLoadError("Invalid JSON format: expected object or list")


def _load_xlsx_rows(path: Path) -> list[tuple[int, object]]:
    from openpyxl import load_workbook

    workbook = load_workbook(filename=path, read_only=True, data_only=True)
    try:
        worksheet = workbook.worksheets[0]
        value_rows = list(worksheet.iter_rows(values_only=True))
    finally:
        workbook.close()

    if not value_rows:
        return []

    email_idx = _detect_email_column(value_rows[0])
    if email_idx is None:
        first_cell = _cell_to_text(value_rows[0][0] if value_rows[0] else None).strip()
        if not _looks_like_email(first_cell):
            raise RecipientLoadError(
                "Unable to detect XLSX columns. Use an 'email' header or place addresses in column A."
            )
        email_idx, data_rows, first_row_number = 0, value_rows, 1
    else:
        data_rows, first_row_number = value_rows[1:], 2

    return [
        (row_number, row[email_idx] if len(row) > email_idx else None)
        for row_number, row in enumerate(data_rows, start=first_row_number)
    ]


def _load_text_rows(path: Path) -> list[tuple[int, object]]:
    rows: list[tuple[int, object]] = []
    with path.open("r", encoding="utf-8") as handle:
        for row_number, line in enumerate(handle, start=1):
            if line.lstrip().startswith("#"):
                continue
            # Tolerate "email,name" lines from simple CSV exports.
            rows.append((row_number, line.split(",", 1)[0]))
    return rows


def _detect_email_column(row: Iterable[object]) -> int | None:
    for idx, value in enumerate(row):
        if _cell_to_text(value).strip().lower() in EMAIL_HEADERS:
            return idx
    return None


def _normalize_rows(
    rows: list[tuple[int, object]],
    *,
    raise_on_invalid: bool,
) -> RecipientLoadResult:
    seen: set[str] = set()
    recipients: list[str] = []
    invalid_messages: list[str] = []
    duplicate_rows = 0
    empty_rows = 0

    for row_number, raw_email in rows:
        email = _cell_to_text(raw_email).strip()

        if not email:
            empty_rows += 1
            continue

        if not _looks_like_email(email):
            invalid_messages.append(f"row {row_number}: invalid email '{email}'")
            continue

        email_key = email.lower()
        if email_key in seen:
            duplicate_rows += 1
            continue

        seen.add(email_key)
        recipients.append(email)

    if raise_on_invalid and invalid_messages:
        details = "; ".join(invalid_messages[:20])
        raise RecipientLoadError(f"Recipient file contains invalid rows: {details}")

    stats = RecipientStats(
        total_rows=len(rows),
        valid_rows=len(recipients),
        invalid_rows=len(invalid_messages),
        duplicate_rows=duplicate_rows,
        empty_rows=empty_rows,
    )
    return RecipientLoadResult(recipients=recipients, stats=stats)


def _cell_to_text(value: object) -> str:
    if value is None:
        return ""
    return str(value)


def _looks_like_email(value: str) -> bool:
    return bool(EMAIL_RE.match(value))
