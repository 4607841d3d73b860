"""Application-wide constants and canonical status enums."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class EventStatus(str, Enum):
    """Event lifecycle status."""
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def normalize(cls, value: Optional[str]) -> Optional["EventStatus"]:
        """Map a stored status string to its canonical variant.

        Returns None for missing or unknown values so the caller can
        fall back to a derived status.
        """
        if value is None:
            return None
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class ParticipantStatus(str, Enum):
    """Participant registration status."""
    REGISTERED = "registered"
    ATTENDED = "attended"
    CANCELLED = "cancelled"

    @classmethod
    def normalize(cls, value: Optional[str]) -> "ParticipantStatus":
        """Map a stored status string to its canonical variant.

        Legacy ``checked-in`` rows are attendances; null and unknown values
        are active registrations.
        """
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.REGISTERED
        cleaned = str(value).strip().lower().replace("_", "-")
        if cleaned in LEGACY_ATTENDED_STATUSES:
            return cls.ATTENDED
        try:
            return cls(cleaned)
        except ValueError:
            return cls.REGISTERED


# Status strings older rows use for an attended participant
LEGACY_ATTENDED_STATUSES = frozenset({"checked-in", "checkedin"})

TERMINAL_EVENT_STATUSES = frozenset({EventStatus.CANCELLED, EventStatus.COMPLETED})


class ScanType(str, Enum):
    """Kinds of decoded QR payloads."""
    USER_PROFILE = "user_profile"
    EVENT_CHECKIN = "event_checkin"
    CUSTOM_EVENT_MESSAGE = "custom_event_message"
    UNKNOWN = "unknown"

    @classmethod
    def normalize(cls, value: Optional[str]) -> "ScanType":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


class RecordState(str, Enum):
    """Reconciliation state of a cached roster record."""
    SYNCED = "synced"            # matches the last store read
    RECONCILING = "reconciling"  # write issued, verification pending
    OPTIMISTIC = "optimistic"    # write issued, verification never confirmed


class SortField(str, Enum):
    """Sort keys for the checked-in list."""
    TIME = "time"
    NAME = "name"
    EMAIL = "email"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class StatusUpdateDefaults:
    """Auto status updater configuration."""
    INTERVAL_SECONDS = 60.0


class CheckInDefaults:
    """Check-in write verification."""
    VERIFY_ATTEMPTS = 3
    VERIFY_DELAY = 0.2  # seconds, multiplied by attempt number


class CacheDefaults:
    """Event lookup cache."""
    EVENT_TTL = 30  # seconds
    EVENT_SIZE = 1000


class DatabaseDefaults:
    """Default database configuration."""
    POOL_SIZE = 5
    BUSY_TIMEOUT = 5000  # milliseconds


class ExportDefaults:
    """Check-in list export."""
    CSV_HEADERS = ("Name", "Email", "Phone", "Check-in Time")
    TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
