"""Double-booking detection for event registrations.

A user may hold one active registration per date and start time. Conflict
checks are best-effort: any failure reports "no conflict" together with the
error, so a broken lookup never blocks an unrelated registration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

from core.exceptions import ApplicationError, StoreError, TransientStoreError
from core.logger import get_logger
from database.models import Event
from utils.metrics import metrics
from utils.validators import normalize_time

if TYPE_CHECKING:
    from database.store import DataStore

logger = get_logger(__name__)


@dataclass
class ConflictResult:
    has_conflict: bool = False
    conflicting_event: Optional[Event] = None
    error: Optional[ApplicationError] = None


def format_conflict_message(conflicting_event: Optional[Event]) -> str:
    """Human-readable explanation of a conflict."""
    if conflicting_event is None or conflicting_event.date is None:
        return "You already have a registration for an event at this date and time."

    event_date = conflicting_event.date
    readable_date = f"{event_date.strftime('%B')} {event_date.day}, {event_date.year}"
    title = conflicting_event.title or "another event"
    return (
        f'You are already registered for "{title}" on {readable_date} '
        f"at {conflicting_event.time}. You cannot register for multiple events "
        f"at the same date and time."
    )


class ConflictDetector:
    """Finds an active registration of a user that collides with an event."""

    def __init__(self, store: DataStore) -> None:
        self.store = store

    async def check_for_conflict(self, user_id: str, event_id: str) -> ConflictResult:
        """Check whether ``user_id`` is already booked at ``event_id``'s date and time.

        Returns:
            ConflictResult with the first conflicting event, or
            ``has_conflict=False``; lookup failures are reported in ``error``.
        """
        try:
            result = await self._find_conflict(user_id, event_id)
        except StoreError as e:
            logger.warning(f"Conflict check for user {user_id} on event {event_id} failed open: {e}")
            result = ConflictResult(error=e)
        except Exception as e:
            logger.error(
                f"Unexpected error checking conflicts for user {user_id} on event {event_id}: {e}",
                exc_info=True
            )
            result = ConflictResult(error=TransientStoreError(str(e)))

        if result.error is not None:
            metrics.record_conflict_check("error")
        else:
            metrics.record_conflict_check("conflict" if result.has_conflict else "clear")
        return result

    async def _find_conflict(self, user_id: str, event_id: str) -> ConflictResult:
        target = await self.store.fetch_event(event_id)
        if target.date is None or not target.time:
            return ConflictResult()

        target_time = normalize_time(target.time)
        if target_time is None:
            logger.debug(f"Event {event_id} has unparseable time {target.time!r}; no conflict possible")
            return ConflictResult()

        registrations = await self.store.fetch_active_registrations(user_id, event_id)
        for registration in registrations:
            if not registration.is_active:
                continue
            event = registration.event
            if event.id == event_id or event.date is None:
                continue
            if event.date == target.date and normalize_time(event.time) == target_time:
                logger.info(f"User {user_id} already registered for event {event.id} at {event.date} {target_time}")
                return ConflictResult(has_conflict=True, conflicting_event=event)

        return ConflictResult()

    async def get_conflicting_events(self, user_id: str, event_id: str) -> List[Event]:
        result = await self.check_for_conflict(user_id, event_id)
        return [result.conflicting_event] if result.has_conflict and result.conflicting_event else []
