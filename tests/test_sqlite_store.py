"""Integration tests for the SQLite data store."""

import logging
import sqlite3
from datetime import date

import pytest

from core.constants import EventStatus, ParticipantStatus
from core.exceptions import NotFoundError, SchemaMismatchError, TransientStoreError
from database import init_db_pool, run_migrations
from database.store import _missing_column
from services.check_in import CheckInOutcome, CheckInReconciler, ManualCheckInRequest
from services.conflict_detector import ConflictDetector
from services.status_engine import EventStatusService


async def seed(store, today):
    event = await store.insert_event({
        "id": "evt-1",
        "owner_id": "owner-1",
        "title": "Spring Meetup",
        "date": today,
        "time": "09:00",
        "end_time": "17:00",
        "status": EventStatus.UPCOMING,
    })
    participant = await store.insert_participant({
        "id": "p-1",
        "event_id": event.id,
        "user_id": "u-1",
        "email": "alice@example.com",
        "first_name": "Alice",
        "status": ParticipantStatus.REGISTERED,
    })
    return event, participant


@pytest.mark.integration
@pytest.mark.asyncio
async def test_round_trip(sqlite_store, today, clock):
    """Test rows come back as normalized models."""
    event, participant = await seed(sqlite_store, today)

    fetched = await sqlite_store.fetch_event(event.id)
    assert fetched.date == today
    assert fetched.status is EventStatus.UPCOMING
    assert fetched.created_at == clock()

    roster = await sqlite_store.fetch_roster(event.id)
    assert [p.id for p in roster] == [participant.id]
    assert roster[0].status is ParticipantStatus.REGISTERED
    assert roster[0].checked_in_at is None

    assert [e.id for e in await sqlite_store.fetch_events_by_owner("owner-1")] == [event.id]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_update_participant(sqlite_store, today, clock):
    """Test patches persist and missing rows raise NotFoundError."""
    _, participant = await seed(sqlite_store, today)

    updated = await sqlite_store.update_participant(
        participant.id, {"status": ParticipantStatus.ATTENDED, "checked_in_at": clock()}
    )
    assert updated.status is ParticipantStatus.ATTENDED
    assert updated.checked_in_at == clock()

    with pytest.raises(NotFoundError):
        await sqlite_store.update_participant("ghost", {"status": ParticipantStatus.ATTENDED})
    with pytest.raises(NotFoundError):
        await sqlite_store.fetch_participant("ghost")


@pytest.mark.integration
@pytest.mark.asyncio
async def test_event_cache_invalidated_on_update(sqlite_store, today):
    """Test cached events never outlive a write."""
    event, _ = await seed(sqlite_store, today)
    await sqlite_store.fetch_event(event.id)
    await sqlite_store.fetch_event(event.id)
    assert sqlite_store.event_cache.stats()["hits"] == 1

    await sqlite_store.update_event(event.id, {"status": EventStatus.CANCELLED})

    assert (await sqlite_store.fetch_event(event.id)).status is EventStatus.CANCELLED


@pytest.mark.integration
@pytest.mark.asyncio
async def test_legacy_statuses_are_normalized(sqlite_store, today):
    """Test legacy strings and NULL become canonical statuses."""
    event, participant = await seed(sqlite_store, today)
    await sqlite_store.participants.execute(
        "UPDATE participants SET status='checked-in' WHERE id=?", (participant.id,)
    )
    await sqlite_store.insert_participant({"id": "p-2", "event_id": event.id, "email": "b@example.com"})
    await sqlite_store.participants.execute("UPDATE participants SET status=NULL WHERE id='p-2'")

    statuses = {p.id: p.status for p in await sqlite_store.fetch_roster(event.id)}
    assert statuses == {"p-1": ParticipantStatus.ATTENDED, "p-2": ParticipantStatus.REGISTERED}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_active_registrations_include_null_status(sqlite_store, today):
    """Test conflict lookups see legacy NULL-status registrations."""
    await seed(sqlite_store, today)
    await sqlite_store.participants.execute("UPDATE participants SET status=NULL WHERE id='p-1'")
    await sqlite_store.insert_event({"id": "evt-2", "title": "Clash", "date": today, "time": "9:00 AM"})

    registrations = await sqlite_store.fetch_active_registrations("u-1", "evt-2")
    assert [r.event.id for r in registrations] == ["evt-1"]
    assert registrations[0].is_active

    result = await ConflictDetector(sqlite_store).check_for_conflict("u-1", "evt-2")
    assert result.has_conflict
    assert result.conflicting_event.id == "evt-1"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_legacy_schema_reports_mismatch(legacy_sqlite_store, today, clock):
    """Test a missing checked_in_at column surfaces as SchemaMismatchError."""
    _, participant = await seed(legacy_sqlite_store, today)

    with pytest.raises(SchemaMismatchError) as excinfo:
        await legacy_sqlite_store.update_participant(participant.id, {"checked_in_at": clock()})
    assert excinfo.value.field == "checked_in_at"

    with pytest.raises(SchemaMismatchError):
        await legacy_sqlite_store.insert_participant(
            {"event_id": "evt-1", "email": "x@example.com", "checked_in_at": clock()}
        )


@pytest.mark.integration
@pytest.mark.asyncio
async def test_check_in_flow_on_legacy_schema(legacy_sqlite_store, today, clock):
    """Test check-in, walk-in and undo against a schema without checked_in_at."""
    event, participant = await seed(legacy_sqlite_store, today)
    reconciler = CheckInReconciler(legacy_sqlite_store, clock=clock, verify_delay=0)
    await reconciler.load_roster(event.id)

    checked = await reconciler.process_scan('{"type": "user_profile", "userId": "u-1"}')
    assert checked.outcome is CheckInOutcome.CHECKED_IN
    assert checked.schema_fallback
    assert checked.participant.checked_in_at == clock()

    walk_in = await reconciler.manual_check_in(event.id, ManualCheckInRequest(email="new@example.com"))
    assert walk_in.outcome is CheckInOutcome.WALK_IN_CREATED

    await reconciler.undo_check_in(participant.id, confirmed=True)
    stored = await legacy_sqlite_store.fetch_participant(participant.id)
    assert stored.status is ParticipantStatus.REGISTERED

    await reconciler.reload()
    assert [p.email for p in reconciler.checked_in_list()] == ["new@example.com"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_check_in_flow_persists(sqlite_store, today, clock):
    """Test the scan scenario end to end on the real store."""
    event, participant = await seed(sqlite_store, today)
    reconciler = CheckInReconciler(sqlite_store, clock=clock, verify_delay=0)
    await reconciler.load_roster(event.id)
    payload = '{"type": "user_profile", "email": "ALICE@example.com"}'

    assert (await reconciler.process_scan(payload)).outcome is CheckInOutcome.CHECKED_IN
    assert (await reconciler.process_scan(payload)).outcome is CheckInOutcome.ALREADY_CHECKED_IN

    stored = await sqlite_store.fetch_participant(participant.id)
    assert stored.status is ParticipantStatus.ATTENDED
    assert stored.checked_in_at == clock()

    await reconciler.undo_check_in(participant.id, confirmed=True)
    stored = await sqlite_store.fetch_participant(participant.id)
    assert stored.status is ParticipantStatus.REGISTERED
    assert stored.checked_in_at is None
    assert reconciler.checked_in_list() == []


@pytest.mark.integration
@pytest.mark.asyncio
async def test_status_updates_persist(sqlite_store, today):
    """Test batch status updates against SQLite."""
    await seed(sqlite_store, today)
    await sqlite_store.insert_event({"id": "old", "owner_id": "owner-1", "date": date(2020, 1, 1)})
    service = EventStatusService(sqlite_store, clock=sqlite_store.clock)

    first = await service.auto_update_all_statuses("owner-1")
    second = await service.auto_update_all_statuses("owner-1")

    assert sorted(first.updated_event_ids) == ["evt-1", "old"]
    assert second.updated == 0
    assert (await sqlite_store.fetch_event("old")).status is EventStatus.COMPLETED


@pytest.mark.integration
@pytest.mark.asyncio
async def test_driver_errors_become_transient(sqlite_store):
    """Test other driver failures are wrapped."""
    await sqlite_store.events.execute("DROP TABLE participants")
    await sqlite_store.events.execute("DROP TABLE events")

    with pytest.raises(TransientStoreError):
        await sqlite_store.fetch_events_by_owner("owner-1")


def test_missing_column_detection():
    """Test SQLite messages that mean a column does not exist."""
    assert _missing_column(sqlite3.OperationalError("no such column: checked_in_at")) == "checked_in_at"
    assert _missing_column(
        sqlite3.OperationalError("table participants has no column named checked_in_at")
    ) == "checked_in_at"
    assert _missing_column(sqlite3.OperationalError("database is locked")) is None


@pytest.mark.integration
@pytest.mark.asyncio
async def test_active_registrations_ignore_status_case(sqlite_store, today):
    """Test mixed-case registered statuses still count for conflicts."""
    await seed(sqlite_store, today)
    await sqlite_store.participants.execute("UPDATE participants SET status='Registered' WHERE id='p-1'")
    await sqlite_store.insert_event({"id": "evt-2", "title": "Clash", "date": today, "time": "09:00"})

    registrations = await sqlite_store.fetch_active_registrations("u-1", "evt-2")

    assert [r.event.id for r in registrations] == ["evt-1"]
    assert (await ConflictDetector(sqlite_store).check_for_conflict("u-1", "evt-2")).has_conflict


@pytest.mark.integration
@pytest.mark.asyncio
async def test_migrations_log_schema_variant(tmp_path, caplog):
    """Test the applied schema variant is logged."""
    caplog.set_level(logging.DEBUG, logger="database.migrations")
    pool = await init_db_pool(str(tmp_path / "logged.sqlite"), pool_size=1, busy_timeout_ms=1000)
    try:
        await run_migrations(pool, with_checked_in_at=False)
    finally:
        await pool.close()

    assert "Schema applied (checked_in_at column: False)" in caplog.messages
