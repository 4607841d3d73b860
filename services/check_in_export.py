"""CSV export of the checked-in attendee list."""

from __future__ import annotations

import csv
import io
from datetime import date, datetime
from typing import Iterable, Optional

from core.constants import ExportDefaults
from database.models import Event, Participant


def export_check_in_csv(participants: Iterable[Participant], now: Optional[datetime] = None) -> str:
    """Render ``participants`` in the given order as CSV text with a header row."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(ExportDefaults.CSV_HEADERS)
    for participant in participants:
        writer.writerow([
            participant.full_name,
            participant.email,
            participant.phone,
            participant.check_in_time(now).strftime(ExportDefaults.TIMESTAMP_FORMAT),
        ])
    return buffer.getvalue()


def export_filename(event: Optional[Event], today: Optional[date] = None) -> str:
    today = today or date.today()
    slug = "".join(ch if ch.isalnum() else "-" for ch in (event.title if event else "")).strip("-").lower()
    return f"checkins-{slug or 'event'}-{today.isoformat()}.csv"
