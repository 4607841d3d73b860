"""Event lifecycle status derivation and batch status maintenance."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Callable, List, Optional

from core.constants import TERMINAL_EVENT_STATUSES, EventStatus
from core.exceptions import ApplicationError, StoreError, TransientStoreError
from core.logger import get_logger
from database.models import Event
from utils.metrics import metrics
from utils.validators import parse_time_of_day

if TYPE_CHECKING:
    from database.store import DataStore

logger = get_logger(__name__)


def _event_window(event_date: date, event: Event) -> tuple[datetime, datetime]:
    """Start and end of an event on its own day.

    A missing start means the whole day; a missing end, or one that is not
    after the start, runs to midnight.
    """
    day_start = datetime.combine(event_date, time.min)
    day_end = day_start + timedelta(days=1)

    start_time = parse_time_of_day(event.time)
    start = datetime.combine(event_date, start_time) if start_time else day_start

    end_time = parse_time_of_day(event.end_time)
    end = datetime.combine(event_date, end_time) if end_time else day_end
    if end <= start:
        end = day_end
    return start, end


def calculate_status(event: Event, now: Optional[datetime] = None) -> EventStatus:
    """Derive the lifecycle status of ``event`` at ``now``.

    An explicit cancellation always wins. Events without a date keep their
    stored status, since there is nothing to derive it from.
    """
    if event.status is EventStatus.CANCELLED:
        return EventStatus.CANCELLED

    if event.date is None:
        return event.status or EventStatus.UPCOMING

    now = now or datetime.now()
    today = now.date()
    if event.date > today:
        return EventStatus.UPCOMING
    if event.date < today:
        return EventStatus.COMPLETED

    start, end = _event_window(event.date, event)
    if now < start:
        return EventStatus.UPCOMING
    if now < end:
        return EventStatus.ONGOING
    return EventStatus.COMPLETED


def is_checkable(event: Event, now: Optional[datetime] = None) -> bool:
    """Whether check-in actions make sense for ``event`` right now.

    The event must be happening today (or be flagged ongoing) and must not
    be cancelled or completed.
    """
    if event.status in TERMINAL_EVENT_STATUSES:
        return False
    today = (now or datetime.now()).date()
    return event.date == today or event.status is EventStatus.ONGOING


@dataclass
class StatusUpdateResult:
    updated: int = 0
    checked: int = 0
    error: Optional[ApplicationError] = None
    updated_event_ids: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str:
        if self.error is not None:
            return f"Failed to update event statuses: {self.error}"
        if self.updated:
            return f"Updated {self.updated} event statuses"
        return "All event statuses are already up to date"


class EventStatusService:
    """Keeps stored event statuses in line with their derived status."""

    def __init__(self, store: DataStore, clock: Callable[[], datetime] = datetime.now) -> None:
        self.store = store
        self.clock = clock

    def calculate_status(self, event: Event) -> EventStatus:
        return calculate_status(event, self.clock())

    def is_checkable(self, event: Event) -> bool:
        return is_checkable(event, self.clock())

    async def auto_update_all_statuses(self, owner_id: str) -> StatusUpdateResult:
        """Recompute every event of ``owner_id`` and persist the changed ones.

        Running it twice in a row updates nothing the second time. A failure
        part-way keeps the count of events already written.
        """
        result = StatusUpdateResult()
        try:
            events = await self.store.fetch_events_by_owner(owner_id)
            now = self.clock()
            result.checked = len(events)
            for event in events:
                derived = calculate_status(event, now)
                if derived is event.status:
                    continue
                await self.store.update_event(event.id, {"status": derived})
                result.updated += 1
                result.updated_event_ids.append(event.id)
                previous = event.status.value if event.status else None
                logger.debug(f"Event {event.id} status {previous} -> {derived.value}")
        except StoreError as e:
            logger.error(f"Status update for owner {owner_id} failed: {e}")
            result.error = e
        except Exception as e:
            logger.error(f"Unexpected error updating statuses for owner {owner_id}: {e}", exc_info=True)
            result.error = TransientStoreError(str(e))

        metrics.record_status_update(result.updated, failed=result.error is not None)
        return result

    async def update_event_status(self, event_id: str, status: EventStatus) -> StatusUpdateResult:
        """Persist an explicit status, e.g. a cancellation."""
        result = StatusUpdateResult(checked=1)
        try:
            event = await self.store.fetch_event(event_id)
            if event.status is not status:
                await self.store.update_event(event_id, {"status": status})
                result.updated = 1
                result.updated_event_ids.append(event_id)
        except StoreError as e:
            logger.error(f"Failed to set status of event {event_id}: {e}")
            result.error = e
        except Exception as e:
            logger.error(f"Unexpected error setting status of event {event_id}: {e}", exc_info=True)
            result.error = TransientStoreError(str(e))
        return result
