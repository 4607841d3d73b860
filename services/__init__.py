"""Services package."""

from .cache import EventCache
from .status_engine import EventStatusService, StatusUpdateResult, calculate_status, is_checkable
from .conflict_detector import ConflictDetector, ConflictResult, format_conflict_message
from .scan_payload import ScanPayload, parse_scan_payload
from .check_in import (
    CheckInOutcome,
    CheckInReconciler,
    CheckInResult,
    ManualCheckInRequest,
    RosterCache,
    RosterResult,
)
from .check_in_export import export_check_in_csv, export_filename
from .status_updater import AutoStatusUpdater, StatusUpdateNotice
from .registration_service import (
    RegistrationOutcome,
    RegistrationRequest,
    RegistrationResult,
    RegistrationService,
)

__all__ = [
    "EventCache",
    "EventStatusService",
    "StatusUpdateResult",
    "calculate_status",
    "is_checkable",
    "ConflictDetector",
    "ConflictResult",
    "format_conflict_message",
    "ScanPayload",
    "parse_scan_payload",
    "CheckInOutcome",
    "CheckInReconciler",
    "CheckInResult",
    "ManualCheckInRequest",
    "RosterCache",
    "RosterResult",
    "export_check_in_csv",
    "export_filename",
    "AutoStatusUpdater",
    "StatusUpdateNotice",
    "RegistrationOutcome",
    "RegistrationRequest",
    "RegistrationResult",
    "RegistrationService",
]
