"""Input normalization and validation helpers."""

from __future__ import annotations

import re
from datetime import date, datetime, time
from typing import Optional, Union


TIME_24H_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
TIME_12H_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?\s*([AP])\.?\s?M\.?$", re.IGNORECASE)
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_time(value: Optional[str]) -> Optional[str]:
    """Normalize a time-of-day string to 24-hour ``HH:MM``.

    Accepts ``HH:MM``, ``HH:MM:SS`` and 12-hour ``h:MM AM/PM``. Anything
    else, including out-of-range values, yields None.
    """
    if value is None:
        return None
    if isinstance(value, time):
        return f"{value.hour:02d}:{value.minute:02d}"

    text = str(value).strip()
    if not text:
        return None

    match = TIME_24H_RE.match(text)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        seconds = int(match.group(3) or 0)
        if hours > 23 or minutes > 59 or seconds > 59:
            return None
        return f"{hours:02d}:{minutes:02d}"

    match = TIME_12H_RE.match(text)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        seconds = int(match.group(3) or 0)
        if not 1 <= hours <= 12 or minutes > 59 or seconds > 59:
            return None
        if match.group(4).upper() == "P":
            hours = hours if hours == 12 else hours + 12
        elif hours == 12:
            hours = 0
        return f"{hours:02d}:{minutes:02d}"

    return None


def parse_time_of_day(value: Optional[str]) -> Optional[time]:
    """Parse a time-of-day string into a ``time``, or None."""
    normalized = normalize_time(value)
    if normalized is None:
        return None
    hours, minutes = normalized.split(":")
    return time(int(hours), int(minutes))


def parse_date(value: Union[str, date, None]) -> Optional[date]:
    """Parse an ISO calendar date. Timestamps are truncated to their date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO timestamp into a naive local datetime.

    Aware values (including a trailing ``Z``) are converted to local time so
    every timestamp in the process compares against ``datetime.now()``.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def normalize_email(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def validate_email(value: Optional[str]) -> bool:
    if not value:
        return False
    return bool(EMAIL_RE.match(value.strip()))
