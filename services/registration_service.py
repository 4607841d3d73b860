"""Participant registration with duplicate, capacity and conflict checks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

from core.constants import TERMINAL_EVENT_STATUSES, ParticipantStatus
from core.exceptions import ApplicationError, NotFoundError, StoreError, TransientStoreError, ValidationError
from core.logger import get_logger
from database.models import Event, Participant
from services.conflict_detector import ConflictDetector, format_conflict_message
from utils.validators import validate_email

if TYPE_CHECKING:
    from database.store import DataStore

logger = get_logger(__name__)


class RegistrationOutcome(str, Enum):
    REGISTERED = "registered"
    CANCELLED = "cancelled"
    ALREADY_REGISTERED = "already_registered"
    EVENT_FULL = "event_full"
    EVENT_CLOSED = "event_closed"
    CONFLICT = "conflict"
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass
class RegistrationRequest:
    user_id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: str = ""


@dataclass
class RegistrationResult:
    success: bool
    outcome: RegistrationOutcome
    message: str
    participant: Optional[Participant] = None
    conflicting_event: Optional[Event] = None
    error: Optional[ApplicationError] = None


class RegistrationService:
    """Registers users for events."""

    def __init__(self, store: DataStore, conflict_detector: Optional[ConflictDetector] = None) -> None:
        self.store = store
        self.conflict_detector = conflict_detector or ConflictDetector(store)

    async def register(self, event_id: str, request: RegistrationRequest) -> RegistrationResult:
        if not request.user_id or not validate_email(request.email):
            return RegistrationResult(
                success=False,
                outcome=RegistrationOutcome.INVALID_INPUT,
                message="A user id and a valid email address are required",
                error=ValidationError("Invalid registration request"),
            )

        try:
            event = await self.store.fetch_event(event_id)
            roster = await self.store.fetch_roster(event_id)
        except NotFoundError as e:
            return RegistrationResult(
                success=False, outcome=RegistrationOutcome.NOT_FOUND, message="Event not found", error=e
            )
        except Exception as e:
            return self._failure(f"load event {event_id}", e)

        if event.status in TERMINAL_EVENT_STATUSES:
            return RegistrationResult(
                success=False,
                outcome=RegistrationOutcome.EVENT_CLOSED,
                message=f"Registration is closed, the event is {event.status.value}",
            )

        active = [p for p in roster if p.status is not ParticipantStatus.CANCELLED]
        if any(p.user_id == request.user_id for p in active):
            return RegistrationResult(
                success=False,
                outcome=RegistrationOutcome.ALREADY_REGISTERED,
                message="You are already registered for this event",
            )

        if event.max_participants is not None and len(active) >= event.max_participants:
            return RegistrationResult(
                success=False,
                outcome=RegistrationOutcome.EVENT_FULL,
                message="This event is full",
            )

        conflict = await self.conflict_detector.check_for_conflict(request.user_id, event_id)
        if conflict.has_conflict:
            return RegistrationResult(
                success=False,
                outcome=RegistrationOutcome.CONFLICT,
                message=format_conflict_message(conflict.conflicting_event),
                conflicting_event=conflict.conflicting_event,
            )

        try:
            participant = await self.store.insert_participant({
                "event_id": event_id,
                "user_id": request.user_id,
                "email": request.email.strip(),
                "first_name": request.first_name.strip(),
                "last_name": request.last_name.strip(),
                "phone": request.phone.strip(),
                "status": ParticipantStatus.REGISTERED,
            })
        except Exception as e:
            return self._failure(f"register user {request.user_id} for event {event_id}", e)

        logger.info(f"User {request.user_id} registered for event {event_id}")
        return RegistrationResult(
            success=True,
            outcome=RegistrationOutcome.REGISTERED,
            message="Registration successful",
            participant=participant,
        )

    async def cancel_registration(self, participant_id: str) -> RegistrationResult:
        try:
            participant = await self.store.update_participant(
                participant_id, {"status": ParticipantStatus.CANCELLED}
            )
        except NotFoundError as e:
            return RegistrationResult(
                success=False, outcome=RegistrationOutcome.NOT_FOUND, message="Registration not found", error=e
            )
        except Exception as e:
            return self._failure(f"cancel registration {participant_id}", e)

        logger.info(f"Registration {participant_id} cancelled")
        return RegistrationResult(
            success=True,
            outcome=RegistrationOutcome.CANCELLED,
            message="Registration cancelled",
            participant=participant,
        )

    async def is_user_registered(self, event_id: str, user_id: str) -> bool:
        """Whether ``user_id`` holds a non-cancelled registration for ``event_id``.

        Lookup failures are logged and answered with ``False``.
        """
        try:
            roster = await self.store.fetch_roster(event_id)
        except StoreError as e:
            logger.error(f"Error checking registration of user {user_id} for event {event_id}: {e}")
            return False
        return any(
            p.user_id == user_id and p.status is not ParticipantStatus.CANCELLED for p in roster
        )

    @staticmethod
    def _failure(action: str, error: BaseException) -> RegistrationResult:
        if isinstance(error, StoreError):
            store_error: ApplicationError = error
            logger.error(f"Failed to {action}: {error}")
        else:
            store_error = TransientStoreError(str(error))
            logger.error(f"Unexpected error trying to {action}: {error}", exc_info=True)
        return RegistrationResult(
            success=False,
            outcome=RegistrationOutcome.FAILED,
            message=f"Registration failed: {store_error}",
            error=store_error,
        )
