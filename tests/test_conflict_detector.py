"""Unit tests for ConflictDetector."""

from datetime import date

import pytest

from core.constants import EventStatus, ParticipantStatus
from core.exceptions import TransientStoreError
from database.models import Event
from services.conflict_detector import ConflictDetector, format_conflict_message


DAY = date(2025, 6, 1)


def book(store, user_id, event_id, title, time, day=DAY, status=ParticipantStatus.REGISTERED):
    store.add_event(id=event_id, title=title, date=day, time=time, status=EventStatus.UPCOMING)
    return store.add_participant(event_id, user_id=user_id, email=f"{user_id}@example.com", status=status)


@pytest.mark.asyncio
async def test_conflict_with_normalized_times(store):
    """Test "10:00" and "10:00 AM" on the same day collide."""
    book(store, "u1", "A", "Event A", "10:00")
    store.add_event(id="B", title="Event B", date=DAY, time="10:00 AM")

    result = await ConflictDetector(store).check_for_conflict("u1", "B")

    assert result.has_conflict
    assert result.conflicting_event.id == "A"
    assert result.error is None


@pytest.mark.asyncio
@pytest.mark.parametrize("booked,candidate,expected", [
    ("14:00", "2:00 PM", True),
    ("14:00", "14:30", False),
    ("12:00 AM", "00:00", True),
    ("12:00 PM", "12:00", True),
    ("09:00:00", "9:00", True),
])
async def test_time_normalization(store, booked, candidate, expected):
    """Test time formats compare after normalization."""
    book(store, "u1", "A", "Booked", booked)
    store.add_event(id="B", title="Candidate", date=DAY, time=candidate)

    result = await ConflictDetector(store).check_for_conflict("u1", "B")
    assert result.has_conflict is expected


@pytest.mark.asyncio
async def test_missing_time_never_conflicts(store):
    """Test events without a start time cannot conflict."""
    book(store, "u1", "A", "Booked", "10:00")
    store.add_event(id="B", date=DAY, time=None)
    store.add_event(id="C", date=None, time="10:00")
    store.add_event(id="D", date=DAY, time="soon")

    detector = ConflictDetector(store)
    for event_id in ("B", "C", "D"):
        assert not (await detector.check_for_conflict("u1", event_id)).has_conflict


@pytest.mark.asyncio
async def test_different_day_or_inactive_registration(store):
    """Test other days and cancelled or attended registrations are ignored."""
    book(store, "u1", "A", "Other day", "10:00", day=date(2025, 6, 2))
    book(store, "u1", "C", "Cancelled", "10:00", status=ParticipantStatus.CANCELLED)
    book(store, "u1", "D", "Attended", "10:00", status=ParticipantStatus.ATTENDED)
    store.add_event(id="B", date=DAY, time="10:00")

    result = await ConflictDetector(store).check_for_conflict("u1", "B")
    assert not result.has_conflict


@pytest.mark.asyncio
async def test_other_users_do_not_conflict(store):
    """Test only the user's own registrations count."""
    book(store, "u2", "A", "Someone else", "10:00")
    store.add_event(id="B", date=DAY, time="10:00")

    assert not (await ConflictDetector(store).check_for_conflict("u1", "B")).has_conflict


@pytest.mark.asyncio
async def test_fails_open_on_store_error(store):
    """Test lookup failures report no conflict together with the error."""
    book(store, "u1", "A", "Booked", "10:00")
    store.add_event(id="B", date=DAY, time="10:00")
    store.fail_operations.add("fetch_active_registrations")

    result = await ConflictDetector(store).check_for_conflict("u1", "B")

    assert not result.has_conflict
    assert isinstance(result.error, TransientStoreError)


@pytest.mark.asyncio
async def test_unknown_candidate_fails_open(store):
    """Test a missing candidate event is reported, not raised."""
    result = await ConflictDetector(store).check_for_conflict("u1", "missing")
    assert not result.has_conflict
    assert "not found" in str(result.error)


@pytest.mark.asyncio
async def test_unexpected_errors_are_wrapped(store):
    """Test non-store exceptions become TransientStoreError."""
    class BrokenStore:
        async def fetch_event(self, event_id):
            raise RuntimeError("boom")

    result = await ConflictDetector(BrokenStore()).check_for_conflict("u1", "B")
    assert isinstance(result.error, TransientStoreError)


@pytest.mark.asyncio
async def test_get_conflicting_events(store):
    """Test the list form of the conflict check."""
    book(store, "u1", "A", "Booked", "10:00")
    store.add_event(id="B", date=DAY, time="10:00")
    store.add_event(id="C", date=DAY, time="11:00")

    detector = ConflictDetector(store)
    assert [e.id for e in await detector.get_conflicting_events("u1", "B")] == ["A"]
    assert await detector.get_conflicting_events("u1", "C") == []


def test_format_conflict_message():
    """Test the user-facing conflict explanation."""
    event = Event(id="A", title="Event A", date=DAY, time="10:00")
    message = format_conflict_message(event)
    assert message.startswith('You are already registered for "Event A" on June 1, 2025 at 10:00.')
    assert "multiple events at the same date and time" in message
    assert "already have a registration" in format_conflict_message(None)
