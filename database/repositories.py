"""Database access layer helpers."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from core.exceptions import RepositoryError

from .base_repository import BaseRepository

EVENT_COLUMNS = frozenset({
    "id", "owner_id", "title", "date", "time", "end_time", "location",
    "status", "max_participants", "created_at", "updated_at",
})

PARTICIPANT_COLUMNS = frozenset({
    "id", "event_id", "user_id", "email", "first_name", "last_name", "phone",
    "status", "checked_in_at", "created_at", "updated_at",
})


def to_db_value(value: Any) -> Any:
    """Convert Python values into what SQLite stores."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    return value


def _clean(values: Mapping[str, Any], allowed: frozenset) -> Dict[str, Any]:
    unknown = set(values) - allowed
    if unknown:
        raise RepositoryError(f"Unknown columns: {', '.join(sorted(unknown))}")
    return {column: to_db_value(value) for column, value in values.items()}


class EventRepository(BaseRepository):
    """Repository for event operations."""

    async def get(self, event_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one("SELECT * FROM events WHERE id=?", (event_id,))

    async def list_by_owner(self, owner_id: str) -> List[Dict[str, Any]]:
        return await self.fetch_all(
            "SELECT * FROM events WHERE owner_id=? ORDER BY date, time",
            (owner_id,)
        )

    async def create(self, values: Mapping[str, Any]) -> None:
        await self.insert("events", _clean(values, EVENT_COLUMNS))

    async def patch(self, event_id: str, values: Mapping[str, Any]) -> int:
        return await self.update("events", "id", event_id, _clean(values, EVENT_COLUMNS))


class ParticipantRepository(BaseRepository):
    """Repository for participant operations."""

    async def get(self, participant_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one("SELECT * FROM participants WHERE id=?", (participant_id,))

    async def list_by_event(self, event_id: str) -> List[Dict[str, Any]]:
        return await self.fetch_all(
            "SELECT * FROM participants WHERE event_id=? ORDER BY created_at, rowid",
            (event_id,)
        )

    async def list_active_for_user(self, user_id: str, excluding_event_id: Optional[str]) -> List[Dict[str, Any]]:
        """Active registrations of a user joined with their events.

        NULL status comes from registrations made before statuses existed
        and counts as active.
        """
        rows = await self.fetch_all(
            """
            SELECT p.id AS participant_id, p.status AS participant_status, e.*
            FROM participants p
            JOIN events e ON e.id = p.event_id
            WHERE p.user_id = ?
              AND p.event_id != ?
              AND (p.status IS NULL OR LOWER(p.status) = 'registered')
            ORDER BY e.date, e.time
            """,
            (user_id, excluding_event_id or "")
        )
        return rows

    async def create(self, values: Mapping[str, Any]) -> None:
        await self.insert("participants", _clean(values, PARTICIPANT_COLUMNS))

    async def patch(self, participant_id: str, values: Mapping[str, Any]) -> int:
        return await self.update(
            "participants", "id", participant_id, _clean(values, PARTICIPANT_COLUMNS)
        )
