"""Data access layer models implemented with handcrafted queries.

Rows are normalized here, at the store boundary: status strings become
canonical enums, dates and timestamps become ``date``/``datetime`` objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping, Optional

from core.constants import EventStatus, ParticipantStatus
from utils.validators import parse_date, parse_timestamp


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(slots=True)
class Event:
    id: str
    title: str = ""
    date: Optional[date] = None
    time: Optional[str] = None
    end_time: Optional[str] = None
    status: Optional[EventStatus] = None
    max_participants: Optional[int] = None
    owner_id: Optional[str] = None
    location: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Event":
        return cls(
            id=str(row["id"]),
            title=row.get("title") or "",
            date=parse_date(row.get("date")),
            time=_optional_str(row.get("time")),
            end_time=_optional_str(row.get("end_time")),
            status=EventStatus.normalize(row.get("status")),
            max_participants=_optional_int(row.get("max_participants")),
            owner_id=_optional_str(row.get("owner_id")),
            location=_optional_str(row.get("location")),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


@dataclass(slots=True)
class Participant:
    id: str
    event_id: str
    email: str = ""
    user_id: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    status: ParticipantStatus = ParticipantStatus.REGISTERED
    checked_in_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Participant":
        return cls(
            id=str(row["id"]),
            event_id=str(row["event_id"]),
            email=row.get("email") or "",
            user_id=_optional_str(row.get("user_id")),
            first_name=row.get("first_name") or "",
            last_name=row.get("last_name") or "",
            phone=row.get("phone") or "",
            status=ParticipantStatus.normalize(row.get("status")),
            # Older schemas have no checked_in_at column at all
            checked_in_at=parse_timestamp(row.get("checked_in_at")),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_checked_in(self) -> bool:
        return self.status is ParticipantStatus.ATTENDED or self.checked_in_at is not None

    @property
    def is_active(self) -> bool:
        return self.status is ParticipantStatus.REGISTERED

    def check_in_time(self, now: Optional[datetime] = None) -> datetime:
        """When the participant checked in, as best the record can tell."""
        return self.checked_in_at or self.updated_at or now or datetime.now()


@dataclass(slots=True)
class Registration:
    """A participant row joined with the event it belongs to."""
    event: Event
    status: ParticipantStatus
    participant_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status is ParticipantStatus.REGISTERED
