"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Set

import pytest

from core.constants import EventStatus, ParticipantStatus
from core.exceptions import NotFoundError, SchemaMismatchError, TransientStoreError
from database import SQLiteDataStore, init_db_pool, run_migrations
from database.models import Event, Participant, Registration
from database.store import new_id
from services.cache import EventCache


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeStore:
    """In-memory DataStore with fault injection.

    Attributes:
        without_checked_in_at: Behave like a schema lacking the column
        fail_writes: Exception raised by every participant write
        fail_operations: Operation names that raise TransientStoreError
        stale_reads: Verification reads that still return the pre-write row
        fail_event_updates_after: Event updates allowed before failing
        write_gate: When set, participant writes wait on it
    """

    def __init__(self, clock: FixedClock):
        self.clock = clock
        self.events: Dict[str, Event] = {}
        self.participants: Dict[str, Participant] = {}
        self.calls: List[str] = []
        self.without_checked_in_at = False
        self.fail_writes: Optional[Exception] = None
        self.fail_operations: Set[str] = set()
        self.stale_reads = 0
        self.fail_event_updates_after: Optional[int] = None
        self.write_gate: Optional[asyncio.Event] = None
        self._previous: Dict[str, Participant] = {}

    # Seeding helpers

    def add_event(self, **fields: Any) -> Event:
        fields.setdefault("id", new_id())
        event = Event(**fields)
        self.events[event.id] = event
        return event

    def add_participant(self, event_id: str, **fields: Any) -> Participant:
        fields.setdefault("id", new_id())
        fields.setdefault("created_at", self.clock())
        participant = Participant(event_id=event_id, **fields)
        self.participants[participant.id] = participant
        return participant

    def count(self, operation: str) -> int:
        return self.calls.count(operation)

    # DataStore

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_operations:
            raise TransientStoreError(f"{operation} failed: injected")

    async def fetch_event(self, event_id: str) -> Event:
        self._enter("fetch_event")
        if event_id not in self.events:
            raise NotFoundError("Event", event_id)
        return replace(self.events[event_id])

    async def fetch_events_by_owner(self, owner_id: str) -> List[Event]:
        self._enter("fetch_events_by_owner")
        return [replace(e) for e in self.events.values() if e.owner_id == owner_id]

    async def fetch_roster(self, event_id: str) -> List[Participant]:
        self._enter("fetch_roster")
        return [replace(p) for p in self.participants.values() if p.event_id == event_id]

    async def fetch_participant(self, participant_id: str) -> Participant:
        self._enter("fetch_participant")
        if participant_id not in self.participants:
            raise NotFoundError("Participant", participant_id)
        if self.stale_reads > 0 and participant_id in self._previous:
            self.stale_reads -= 1
            return replace(self._previous[participant_id])
        return replace(self.participants[participant_id])

    async def fetch_active_registrations(
        self, user_id: str, excluding_event_id: Optional[str]
    ) -> List[Registration]:
        self._enter("fetch_active_registrations")
        registrations = []
        for participant in self.participants.values():
            if participant.user_id != user_id or participant.event_id == excluding_event_id:
                continue
            if not participant.is_active or participant.event_id not in self.events:
                continue
            registrations.append(Registration(
                event=replace(self.events[participant.event_id]),
                status=participant.status,
                participant_id=participant.id,
            ))
        return registrations

    async def _participant_write(self, fields: Mapping[str, Any]) -> None:
        if self.write_gate is not None:
            await self.write_gate.wait()
        if self.fail_writes is not None:
            raise self.fail_writes
        if self.without_checked_in_at and "checked_in_at" in fields:
            raise SchemaMismatchError("no such column: checked_in_at", field="checked_in_at")

    @staticmethod
    def _participant_fields(values: Mapping[str, Any]) -> Dict[str, Any]:
        fields = dict(values)
        if "status" in fields:
            fields["status"] = ParticipantStatus.normalize(fields["status"])
        return fields

    async def update_participant(self, participant_id: str, patch: Mapping[str, Any]) -> Participant:
        self._enter("update_participant")
        await self._participant_write(patch)
        if participant_id not in self.participants:
            raise NotFoundError("Participant", participant_id)
        current = self.participants[participant_id]
        self._previous[participant_id] = current
        updated = replace(current, updated_at=self.clock(), **self._participant_fields(patch))
        self.participants[participant_id] = updated
        return replace(updated)

    async def insert_participant(self, record: Mapping[str, Any]) -> Participant:
        self._enter("insert_participant")
        await self._participant_write(record)
        fields = self._participant_fields(record)
        fields.setdefault("id", new_id())
        fields.setdefault("created_at", self.clock())
        fields.setdefault("updated_at", self.clock())
        participant = Participant(**fields)
        self.participants[participant.id] = participant
        return replace(participant)

    async def update_event(self, event_id: str, patch: Mapping[str, Any]) -> Event:
        self._enter("update_event")
        if self.fail_event_updates_after is not None:
            if self.fail_event_updates_after <= 0:
                raise TransientStoreError("update_event failed: injected")
            self.fail_event_updates_after -= 1
        if event_id not in self.events:
            raise NotFoundError("Event", event_id)
        fields = dict(patch)
        if "status" in fields:
            fields["status"] = EventStatus.normalize(fields["status"])
        updated = replace(self.events[event_id], updated_at=self.clock(), **fields)
        self.events[event_id] = updated
        return replace(updated)

    async def insert_event(self, record: Mapping[str, Any]) -> Event:
        self._enter("insert_event")
        fields = dict(record)
        fields.setdefault("id", new_id())
        if "status" in fields:
            fields["status"] = EventStatus.normalize(fields["status"])
        event = Event(**fields)
        self.events[event.id] = event
        return replace(event)


@pytest.fixture
def clock():
    """Clock fixed at 2025-06-01 10:30, a Sunday morning."""
    return FixedClock(datetime(2025, 6, 1, 10, 30))


@pytest.fixture
def today(clock):
    return clock().date()


@pytest.fixture
def store(clock):
    return FakeStore(clock)


@pytest.fixture
def live_event(store, today):
    """An event running today from 09:00 to 17:00."""
    return store.add_event(
        id="evt-live",
        title="Spring Meetup",
        date=today,
        time="09:00",
        end_time="17:00",
        status=EventStatus.ONGOING,
        owner_id="owner-1",
    )


@pytest.fixture
def future_event(store, today):
    return store.add_event(
        id="evt-future",
        title="Summer Gala",
        date=today + timedelta(days=30),
        time="18:00",
        status=EventStatus.UPCOMING,
        owner_id="owner-1",
    )


@pytest.fixture
async def sqlite_store(tmp_path, clock):
    """SQLiteDataStore over a fresh database file."""
    pool = await init_db_pool(str(tmp_path / "events.sqlite"), pool_size=2, busy_timeout_ms=1000)
    await run_migrations(pool)
    yield SQLiteDataStore(pool, event_cache=EventCache(ttl=30), clock=clock)
    await pool.close()


@pytest.fixture
async def legacy_sqlite_store(tmp_path, clock):
    """SQLiteDataStore over a schema created before checked_in_at existed."""
    pool = await init_db_pool(str(tmp_path / "legacy.sqlite"), pool_size=1, busy_timeout_ms=1000)
    await run_migrations(pool, with_checked_in_at=False)
    yield SQLiteDataStore(pool, clock=clock)
    await pool.close()
