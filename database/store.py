"""Data store contract consumed by the services, and its SQLite implementation.

Services depend only on :class:`DataStore`. Every method raises a
:class:`~core.exceptions.StoreError` subclass on failure:

* ``NotFoundError`` when the addressed row does not exist,
* ``SchemaMismatchError`` when the deployed schema lacks a written column,
* ``TransientStoreError`` for anything else the driver raises.
"""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Protocol

from core.constants import ParticipantStatus
from core.exceptions import (
    NotFoundError,
    RepositoryError,
    SchemaMismatchError,
    StoreError,
    TransientStoreError,
)
from core.logger import get_logger
from utils.metrics import metrics

from .connection import SQLitePool
from .models import Event, Participant, Registration
from .repositories import EventRepository, ParticipantRepository

if TYPE_CHECKING:
    from services.cache import EventCache

logger = get_logger(__name__)

Patch = Mapping[str, Any]


class DataStore(Protocol):
    async def fetch_event(self, event_id: str) -> Event: ...

    async def fetch_events_by_owner(self, owner_id: str) -> List[Event]: ...

    async def fetch_roster(self, event_id: str) -> List[Participant]: ...

    async def fetch_participant(self, participant_id: str) -> Participant: ...

    async def fetch_active_registrations(
        self, user_id: str, excluding_event_id: Optional[str]
    ) -> List[Registration]: ...

    async def update_participant(self, participant_id: str, patch: Patch) -> Participant: ...

    async def insert_participant(self, record: Patch) -> Participant: ...

    async def update_event(self, event_id: str, patch: Patch) -> Event: ...

    async def insert_event(self, record: Patch) -> Event: ...


def new_id() -> str:
    return uuid.uuid4().hex


def _missing_column(error: sqlite3.OperationalError) -> Optional[str]:
    """Column name when SQLite rejected a statement for an unknown column."""
    message = str(error)
    for marker in ("no such column: ", "has no column named "):
        if marker in message:
            return message.split(marker, 1)[1].strip()
    return None


class SQLiteDataStore:
    """:class:`DataStore` over the SQLite repositories."""

    def __init__(
        self,
        pool: SQLitePool,
        event_cache: Optional[EventCache] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.events = EventRepository(pool)
        self.participants = ParticipantRepository(pool)
        self.event_cache = event_cache
        self.clock = clock

    @asynccontextmanager
    async def _operation(self, name: str) -> AsyncIterator[None]:
        """Translate driver failures into the store error taxonomy."""
        with metrics.track_store(name):
            try:
                yield
            except StoreError:
                raise
            except sqlite3.OperationalError as e:
                column = _missing_column(e)
                if column is not None:
                    raise SchemaMismatchError(f"{name}: {e}", field=column) from e
                logger.error(f"Store operation {name} failed: {e}", exc_info=True)
                raise TransientStoreError(f"{name} failed: {e}") from e
            except (sqlite3.Error, RepositoryError, OSError) as e:
                logger.error(f"Store operation {name} failed: {e}", exc_info=True)
                raise TransientStoreError(f"{name} failed: {e}") from e

    async def _event_row(self, event_id: str) -> Optional[Dict[str, Any]]:
        if self.event_cache is None:
            return await self.events.get(event_id)
        return await self.event_cache.get_or_load(event_id, lambda: self.events.get(event_id))

    async def fetch_event(self, event_id: str) -> Event:
        async with self._operation("fetch_event"):
            row = await self._event_row(event_id)
        if row is None:
            raise NotFoundError("Event", event_id)
        return Event.from_row(row)

    async def fetch_events_by_owner(self, owner_id: str) -> List[Event]:
        async with self._operation("fetch_events_by_owner"):
            rows = await self.events.list_by_owner(owner_id)
        return [Event.from_row(row) for row in rows]

    async def fetch_roster(self, event_id: str) -> List[Participant]:
        async with self._operation("fetch_roster"):
            rows = await self.participants.list_by_event(event_id)
        return [Participant.from_row(row) for row in rows]

    async def fetch_participant(self, participant_id: str) -> Participant:
        async with self._operation("fetch_participant"):
            row = await self.participants.get(participant_id)
        if row is None:
            raise NotFoundError("Participant", participant_id)
        return Participant.from_row(row)

    async def fetch_active_registrations(
        self, user_id: str, excluding_event_id: Optional[str]
    ) -> List[Registration]:
        async with self._operation("fetch_active_registrations"):
            rows = await self.participants.list_active_for_user(user_id, excluding_event_id)
        return [
            Registration(
                event=Event.from_row(row),
                status=ParticipantStatus.normalize(row.get("participant_status")),
                participant_id=row.get("participant_id"),
            )
            for row in rows
        ]

    async def update_participant(self, participant_id: str, patch: Patch) -> Participant:
        values = dict(patch)
        values["updated_at"] = self.clock()
        async with self._operation("update_participant"):
            changed = await self.participants.patch(participant_id, values)
            if not changed:
                raise NotFoundError("Participant", participant_id)
            row = await self.participants.get(participant_id)
        if row is None:
            raise NotFoundError("Participant", participant_id)
        return Participant.from_row(row)

    async def insert_participant(self, record: Patch) -> Participant:
        values = dict(record)
        values.setdefault("id", new_id())
        now = self.clock()
        values.setdefault("created_at", now)
        values.setdefault("updated_at", now)
        async with self._operation("insert_participant"):
            await self.participants.create(values)
            row = await self.participants.get(values["id"])
        if row is None:
            raise TransientStoreError(f"Inserted participant {values['id']} could not be read back")
        return Participant.from_row(row)

    async def update_event(self, event_id: str, patch: Patch) -> Event:
        values = dict(patch)
        values["updated_at"] = self.clock()
        async with self._operation("update_event"):
            try:
                changed = await self.events.patch(event_id, values)
            finally:
                if self.event_cache is not None:
                    self.event_cache.invalidate(event_id)
            if not changed:
                raise NotFoundError("Event", event_id)
            row = await self.events.get(event_id)
        if row is None:
            raise NotFoundError("Event", event_id)
        return Event.from_row(row)

    async def insert_event(self, record: Patch) -> Event:
        values = dict(record)
        values.setdefault("id", new_id())
        now = self.clock()
        values.setdefault("created_at", now)
        values.setdefault("updated_at", now)
        async with self._operation("insert_event"):
            await self.events.create(values)
            row = await self.events.get(values["id"])
        if row is None:
            raise TransientStoreError(f"Inserted event {values['id']} could not be read back")
        return Event.from_row(row)
