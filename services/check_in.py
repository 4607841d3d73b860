"""QR and manual check-in against a cached event roster.

The roster of the selected event is loaded once and kept in a
:class:`RosterCache`; scans are matched against the cache, never against a
fresh read, so a read racing ahead of our own write cannot undo it. The
store stays the source of truth: every write goes to the store first and
the cache is only touched once the write succeeded.

Check-in is at-most-once on a best-effort basis. A record whose write is
in flight is marked ``RECONCILING`` and further scans of it are answered
with "already checked in"; two scans reaching the store for the same
participant would write the same terminal state twice, which is harmless.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Tuple

from core.constants import (
    CheckInDefaults,
    ParticipantStatus,
    RecordState,
    SortField,
    SortOrder,
)
from core.exceptions import (
    ApplicationError,
    NotFoundError,
    SchemaMismatchError,
    ScanPayloadError,
    StoreError,
    TransientStoreError,
    ValidationError,
    VerificationTimeoutError,
)
from core.logger import get_logger
from database.models import Event, Participant
from services.check_in_export import export_check_in_csv, export_filename
from services.scan_payload import ScanPayload, parse_scan_payload
from services.status_engine import is_checkable
from utils.metrics import metrics
from utils.validators import normalize_email, validate_email

if TYPE_CHECKING:
    from database.store import DataStore

logger = get_logger(__name__)


class CheckInOutcome(str, Enum):
    CHECKED_IN = "checked_in"
    ALREADY_CHECKED_IN = "already_checked_in"
    WALK_IN_CREATED = "walk_in_created"
    UNCHECKED = "unchecked"
    NOT_CHECKED_IN = "not_checked_in"
    CONFIRMATION_REQUIRED = "confirmation_required"
    NOT_REGISTERED = "not_registered"
    INVALID_PAYLOAD = "invalid_payload"
    INVALID_INPUT = "invalid_input"
    NO_EVENT_SELECTED = "no_event_selected"
    EVENT_NOT_CHECKABLE = "event_not_checkable"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass
class CheckInResult:
    success: bool
    outcome: CheckInOutcome
    message: str
    participant: Optional[Participant] = None
    error: Optional[ApplicationError] = None
    degraded: bool = False
    schema_fallback: bool = False


@dataclass
class RosterResult:
    success: bool
    event: Optional[Event] = None
    participants: List[Participant] = field(default_factory=list)
    message: str = ""
    error: Optional[ApplicationError] = None
    reloaded: bool = False


@dataclass
class ManualCheckInRequest:
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: str = ""


class RosterCache:
    """Roster of the selected event plus a reconciliation state per record."""

    def __init__(self) -> None:
        self.event: Optional[Event] = None
        self._records: Dict[str, Participant] = {}
        self._states: Dict[str, RecordState] = {}

    @property
    def event_id(self) -> Optional[str]:
        return self.event.id if self.event else None

    def replace(self, event: Event, participants: Iterable[Participant]) -> None:
        """Install a freshly read roster.

        Records with a write in flight keep their cached copy, the read may
        predate the write's commit.
        """
        same_event = self.event_id == event.id
        in_flight = {
            pid: self._records[pid]
            for pid, state in self._states.items()
            if same_event and state is RecordState.RECONCILING and pid in self._records
        }
        self.event = event
        self._records = {}
        self._states = {}
        for participant in participants:
            if participant.id in in_flight:
                self._records[participant.id] = in_flight[participant.id]
                self._states[participant.id] = RecordState.RECONCILING
            else:
                self._records[participant.id] = participant
                self._states[participant.id] = RecordState.SYNCED

    def clear(self) -> None:
        self.event = None
        self._records.clear()
        self._states.clear()

    def participants(self) -> List[Participant]:
        return list(self._records.values())

    def get(self, participant_id: str) -> Optional[Participant]:
        return self._records.get(participant_id)

    def put(self, participant: Participant, state: RecordState = RecordState.SYNCED) -> None:
        self._records[participant.id] = participant
        self._states[participant.id] = state

    def state(self, participant_id: str) -> Optional[RecordState]:
        return self._states.get(participant_id)

    def set_state(self, participant_id: str, state: RecordState) -> None:
        self._states[participant_id] = state

    def find_by_email(self, email: str) -> Optional[Participant]:
        wanted = normalize_email(email)
        if not wanted:
            return None
        for participant in self._records.values():
            if normalize_email(participant.email) == wanted:
                return participant
        return None

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._records


def match_scan(payload: ScanPayload, roster: Iterable[Participant]) -> Optional[Participant]:
    """First roster entry with the payload's user id or (case-insensitive) email."""
    user_id = payload.user_id
    email = normalize_email(payload.email)
    for participant in roster:
        if user_id and participant.user_id == user_id:
            return participant
        if email and normalize_email(participant.email) == email:
            return participant
    return None


def checked_in_list(roster: Iterable[Participant]) -> List[Participant]:
    """Participants that attended, by status or by check-in timestamp."""
    return [participant for participant in roster if participant.is_checked_in]


def _describe(participant: Participant) -> str:
    return participant.email or participant.full_name or participant.id


class CheckInReconciler:
    """Check-in workflow for the currently selected event."""

    def __init__(
        self,
        store: DataStore,
        clock: Callable[[], datetime] = datetime.now,
        verify_attempts: int = CheckInDefaults.VERIFY_ATTEMPTS,
        verify_delay: float = CheckInDefaults.VERIFY_DELAY,
        enforce_checkable: bool = True,
    ) -> None:
        self.store = store
        self.clock = clock
        self.verify_attempts = max(1, verify_attempts)
        self.verify_delay = verify_delay
        self.enforce_checkable = enforce_checkable
        self.cache = RosterCache()
        self._requested_event_id: Optional[str] = None
        self._email_locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._email_lock_users: Dict[Tuple[str, str], int] = {}

    @property
    def selected_event(self) -> Optional[Event]:
        return self.cache.event

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    async def load_roster(self, event_id: str, force: bool = False) -> RosterResult:
        """Select ``event_id`` and load its roster.

        The store is only read when the selection changes or ``force`` is
        set; otherwise the cached roster is returned as is.
        """
        if not force and self.cache.event_id == event_id:
            return RosterResult(
                success=True,
                event=self.cache.event,
                participants=self.cache.participants(),
                message="Roster already loaded",
            )

        self._requested_event_id = event_id
        try:
            event = await self.store.fetch_event(event_id)
            roster = await self.store.fetch_roster(event_id)
        except StoreError as e:
            return self._roster_failure(event_id, e)
        except Exception as e:
            logger.error(f"Unexpected error loading roster of event {event_id}: {e}", exc_info=True)
            return self._roster_failure(event_id, TransientStoreError(str(e)))

        if self._requested_event_id != event_id:
            # A later selection superseded this load while it was in flight
            logger.debug(f"Discarding stale roster load for event {event_id}")
            return RosterResult(success=False, message="Roster load superseded by a newer selection")

        self.cache.replace(event, roster)
        logger.info(f"Loaded roster of event {event_id}: {len(roster)} participants")
        return RosterResult(
            success=True,
            event=event,
            participants=self.cache.participants(),
            message=f"Loaded {len(roster)} participants",
            reloaded=True,
        )

    def _roster_failure(self, event_id: str, error: ApplicationError) -> RosterResult:
        logger.error(f"Failed to load roster of event {event_id}: {error}")
        if self._requested_event_id == event_id:
            self.cache.clear()
        if isinstance(error, NotFoundError):
            message = "Event not found"
        else:
            message = f"Failed to load participants: {error}"
        return RosterResult(success=False, message=message, error=error)

    async def reload(self) -> RosterResult:
        """Re-read the selected event's roster from the store."""
        event_id = self.cache.event_id
        if event_id is None:
            return RosterResult(success=False, message="Please select an event first.")
        return await self.load_roster(event_id, force=True)

    def match_scan(self, payload: ScanPayload, roster: Optional[Iterable[Participant]] = None) -> Optional[Participant]:
        return match_scan(payload, self.cache.participants() if roster is None else roster)

    def checked_in_list(self, roster: Optional[Iterable[Participant]] = None) -> List[Participant]:
        return checked_in_list(self.cache.participants() if roster is None else roster)

    def display_list(
        self,
        query: str = "",
        sort_by: Any = SortField.TIME,
        order: Any = SortOrder.DESC,
        roster: Optional[Iterable[Participant]] = None,
    ) -> List[Participant]:
        """Checked-in participants filtered by name/email and sorted for display."""
        try:
            sort_field = SortField(sort_by)
            sort_order = SortOrder(order)
        except ValueError as e:
            raise ValidationError(f"Unsupported sort option: {e}") from e

        needle = (query or "").strip().lower()
        now = self.clock()
        entries = [
            participant
            for participant in self.checked_in_list(roster)
            if not needle
            or needle in participant.email.lower()
            or needle in participant.full_name.lower()
        ]

        if sort_field is SortField.TIME:
            key: Callable[[Participant], Any] = lambda p: p.check_in_time(now)
        elif sort_field is SortField.NAME:
            key = lambda p: p.full_name.lower()
        else:
            key = lambda p: p.email.lower()
        return sorted(entries, key=key, reverse=sort_order is SortOrder.DESC)

    def export_csv(self, query: str = "", sort_by: Any = SortField.TIME, order: Any = SortOrder.DESC) -> str:
        return export_check_in_csv(self.display_list(query, sort_by, order), now=self.clock())

    def export_name(self) -> str:
        """File name for the selected event's export, dated today."""
        return export_filename(self.cache.event, self.clock().date())

    # ------------------------------------------------------------------
    # Check-in
    # ------------------------------------------------------------------

    async def process_scan(self, data: Any) -> CheckInResult:
        """Handle one decoded QR code for the selected event."""
        event = self.cache.event
        if event is None:
            return self._finish(CheckInResult(
                success=False,
                outcome=CheckInOutcome.NO_EVENT_SELECTED,
                message="Please select an event first.",
            ))

        try:
            payload = parse_scan_payload(data)
        except ScanPayloadError as e:
            return self._finish(CheckInResult(
                success=False,
                outcome=CheckInOutcome.INVALID_PAYLOAD,
                message="Invalid QR code format",
                error=e,
            ))

        if not payload.identifies_user:
            return self._finish(CheckInResult(
                success=False,
                outcome=CheckInOutcome.INVALID_PAYLOAD,
                message="Invalid QR code. Please scan a user QR code.",
            ))

        not_checkable = self._check_window(event)
        if not_checkable is not None:
            return self._finish(not_checkable)

        participant = self.match_scan(payload)
        if participant is None:
            who = payload.email or payload.user_id
            return self._finish(CheckInResult(
                success=False,
                outcome=CheckInOutcome.NOT_REGISTERED,
                message=f"{who} is not registered for this event",
            ))
        return await self.check_in(participant)

    async def check_in(self, participant: Participant) -> CheckInResult:
        """Mark ``participant`` as attended.

        Already checked-in participants, and ones whose check-in is still
        being confirmed, are a no-op.
        """
        cached = self.cache.get(participant.id)
        current = cached or participant
        if current.is_checked_in or self.cache.state(participant.id) is RecordState.RECONCILING:
            return self._finish(CheckInResult(
                success=True,
                outcome=CheckInOutcome.ALREADY_CHECKED_IN,
                message=f"{_describe(current)} is already checked in",
                participant=current,
            ))

        tracked = self.cache.event_id == participant.event_id
        previous_state = self.cache.state(participant.id)
        if tracked:
            self.cache.set_state(participant.id, RecordState.RECONCILING)

        now = self.clock()
        try:
            written, schema_fallback = await self._write_check_in(participant.id, now)
        except Exception as e:
            if tracked:
                self.cache.set_state(participant.id, previous_state or RecordState.SYNCED)
            return self._write_failure(current, "check in", e)

        verified = await self._verify(participant.id, ParticipantStatus.ATTENDED)
        degraded = verified is None
        if verified is not None:
            record = verified
            state = RecordState.SYNCED
        else:
            logger.warning(str(VerificationTimeoutError(
                f"Check-in of participant {participant.id} not confirmed after "
                f"{self.verify_attempts} reads; keeping local value"
            )))
            record = replace(written if written.status is ParticipantStatus.ATTENDED else current,
                             status=ParticipantStatus.ATTENDED)
            state = RecordState.OPTIMISTIC

        if record.checked_in_at is None:
            # Schema without the column: remember the time locally
            record = replace(record, checked_in_at=now)

        if tracked and self.cache.event_id == participant.event_id:
            self.cache.put(record, state)

        logger.info(f"Checked in participant {participant.id} ({_describe(record)}) to event {participant.event_id}")
        return self._finish(CheckInResult(
            success=True,
            outcome=CheckInOutcome.CHECKED_IN,
            message=f"Successfully checked in {_describe(record)}",
            participant=record,
            degraded=degraded,
            schema_fallback=schema_fallback,
        ))

    async def manual_check_in(self, event_id: str, identity: ManualCheckInRequest) -> CheckInResult:
        """Check in by email, registering a walk-in when nobody matches."""
        email = (identity.email or "").strip()
        if not validate_email(email):
            return self._finish(CheckInResult(
                success=False,
                outcome=CheckInOutcome.INVALID_INPUT,
                message="A valid email address is required",
                error=ValidationError(f"Invalid email: {email!r}"),
            ))

        roster = await self.load_roster(event_id)
        if not roster.success or roster.event is None:
            return self._finish(CheckInResult(
                success=False,
                outcome=CheckInOutcome.NOT_FOUND if isinstance(roster.error, NotFoundError) else CheckInOutcome.FAILED,
                message=roster.message,
                error=roster.error,
            ))

        not_checkable = self._check_window(roster.event)
        if not_checkable is not None:
            return self._finish(not_checkable)

        async with self._email_lock(event_id, email):
            existing = self.cache.find_by_email(email)
            if existing is None:
                try:
                    existing = await self._find_registered(event_id, email)
                except Exception as e:
                    placeholder = Participant(id="", event_id=event_id, email=email)
                    return self._write_failure(placeholder, "check in", e)
            if existing is not None:
                return await self.check_in(existing)
            return await self._create_walk_in(event_id, email, identity)

    async def _find_registered(self, event_id: str, email: str) -> Optional[Participant]:
        """Look ``email`` up in the stored roster, which may be newer than the cache."""
        wanted = normalize_email(email)
        for participant in await self.store.fetch_roster(event_id):
            if normalize_email(participant.email) == wanted:
                if self.cache.event_id == event_id and participant.id not in self.cache:
                    self.cache.put(participant, RecordState.SYNCED)
                logger.debug(f"Found {email} registered for event {event_id} after roster load")
                return participant
        return None

    async def _create_walk_in(self, event_id: str, email: str, identity: ManualCheckInRequest) -> CheckInResult:
        now = self.clock()
        record = {
            "event_id": event_id,
            "user_id": None,
            "email": email,
            "first_name": identity.first_name.strip() or "User",
            "last_name": identity.last_name.strip(),
            "phone": identity.phone.strip(),
            "status": ParticipantStatus.ATTENDED,
            "checked_in_at": now,
        }
        schema_fallback = False
        try:
            try:
                created = await self.store.insert_participant(record)
            except SchemaMismatchError as e:
                logger.warning(f"Store rejected walk-in fields ({e}); inserting without checked_in_at")
                record.pop("checked_in_at")
                schema_fallback = True
                created = await self.store.insert_participant(record)
        except Exception as e:
            placeholder = Participant(id="", event_id=event_id, email=email)
            return self._write_failure(placeholder, "check in", e)

        if created.checked_in_at is None:
            created = replace(created, checked_in_at=now)
        if self.cache.event_id == event_id:
            self.cache.put(created, RecordState.SYNCED)

        logger.info(f"Registered walk-in {email} as attended for event {event_id}")
        return self._finish(CheckInResult(
            success=True,
            outcome=CheckInOutcome.WALK_IN_CREATED,
            message=f"Successfully checked in {email}",
            participant=created,
            schema_fallback=schema_fallback,
        ))

    async def undo_check_in(self, participant_id: str, confirmed: bool = False) -> CheckInResult:
        """Reset a participant to registered.

        The attendee has to be scanned again afterwards, so the caller must
        pass ``confirmed=True``; without it nothing is written.
        """
        participant = self.cache.get(participant_id)
        if participant is None:
            try:
                participant = await self.store.fetch_participant(participant_id)
            except NotFoundError as e:
                return self._finish(CheckInResult(
                    success=False,
                    outcome=CheckInOutcome.NOT_FOUND,
                    message="Participant not found",
                    error=e,
                ))
            except Exception as e:
                return self._write_failure(
                    Participant(id=participant_id, event_id=""), "remove check-in for", e
                )

        if not participant.is_checked_in:
            return self._finish(CheckInResult(
                success=True,
                outcome=CheckInOutcome.NOT_CHECKED_IN,
                message=f"{_describe(participant)} is not checked in",
                participant=participant,
            ))

        if not confirmed:
            return CheckInResult(
                success=False,
                outcome=CheckInOutcome.CONFIRMATION_REQUIRED,
                message=f"Remove check-in for {_describe(participant)}? They will have to be scanned again.",
                participant=participant,
            )

        schema_fallback = False
        try:
            try:
                updated = await self.store.update_participant(
                    participant_id,
                    {"status": ParticipantStatus.REGISTERED, "checked_in_at": None},
                )
            except SchemaMismatchError as e:
                logger.warning(f"Store rejected check-in reset fields ({e}); resetting status only")
                schema_fallback = True
                updated = await self.store.update_participant(
                    participant_id, {"status": ParticipantStatus.REGISTERED}
                )
        except Exception as e:
            return self._write_failure(participant, "remove check-in for", e)

        if updated.checked_in_at is not None:
            updated = replace(updated, checked_in_at=None)
        if self.cache.event_id == updated.event_id:
            self.cache.put(updated, RecordState.SYNCED)

        logger.info(f"Removed check-in of participant {participant_id}")
        return self._finish(CheckInResult(
            success=True,
            outcome=CheckInOutcome.UNCHECKED,
            message=f"Removed check-in for {_describe(updated)}",
            participant=updated,
            schema_fallback=schema_fallback,
        ))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _write_check_in(self, participant_id: str, now: datetime) -> Tuple[Participant, bool]:
        patch = {"status": ParticipantStatus.ATTENDED, "checked_in_at": now}
        try:
            return await self.store.update_participant(participant_id, patch), False
        except SchemaMismatchError as e:
            logger.warning(f"Store rejected check-in fields ({e}); writing status only")
            return await self.store.update_participant(
                participant_id, {"status": ParticipantStatus.ATTENDED}
            ), True

    async def _verify(self, participant_id: str, expected: ParticipantStatus) -> Optional[Participant]:
        """Re-read until the store shows ``expected``; None when it never does."""
        for attempt in range(1, self.verify_attempts + 1):
            try:
                record = await self.store.fetch_participant(participant_id)
                if record.status is expected:
                    return record
            except StoreError as e:
                logger.debug(f"Verification read {attempt} of participant {participant_id} failed: {e}")
            if attempt < self.verify_attempts:
                await asyncio.sleep(self.verify_delay * attempt)
        return None

    def _check_window(self, event: Event) -> Optional[CheckInResult]:
        if not self.enforce_checkable or is_checkable(event, self.clock()):
            return None
        title = event.title or "this event"
        return CheckInResult(
            success=False,
            outcome=CheckInOutcome.EVENT_NOT_CHECKABLE,
            message=f"Check-in is not open for {title}",
        )

    @asynccontextmanager
    async def _email_lock(self, event_id: str, email: str) -> AsyncIterator[None]:
        """Serialize walk-ins per (event, email); the entry is dropped once unused."""
        key = (event_id, normalize_email(email))
        lock = self._email_locks.get(key)
        if lock is None:
            lock = self._email_locks[key] = asyncio.Lock()
        self._email_lock_users[key] = self._email_lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._email_lock_users[key] -= 1
            if not self._email_lock_users[key]:
                del self._email_lock_users[key]
                del self._email_locks[key]

    def _write_failure(self, participant: Participant, action: str, error: BaseException) -> CheckInResult:
        if isinstance(error, NotFoundError):
            logger.error(f"Failed to {action} {_describe(participant)}: {error}")
            return self._finish(CheckInResult(
                success=False,
                outcome=CheckInOutcome.NOT_FOUND,
                message="Participant not found",
                participant=participant,
                error=error,
            ))
        if isinstance(error, StoreError):
            store_error: ApplicationError = error
            logger.error(f"Failed to {action} {_describe(participant)}: {error}")
        else:
            store_error = TransientStoreError(str(error))
            logger.error(f"Unexpected error trying to {action} {_describe(participant)}: {error}", exc_info=True)
        return self._finish(CheckInResult(
            success=False,
            outcome=CheckInOutcome.FAILED,
            message=f"Failed to {action} {_describe(participant)}: {store_error}",
            participant=participant,
            error=store_error,
        ))

    @staticmethod
    def _finish(result: CheckInResult) -> CheckInResult:
        metrics.record_check_in(result.outcome.value)
        return result
