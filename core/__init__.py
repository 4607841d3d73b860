"""Core application components."""

from core.logger import setup_logger, get_logger
from core.constants import (
    EventStatus,
    ParticipantStatus,
    ScanType,
    RecordState,
    SortField,
    SortOrder,
    StatusUpdateDefaults,
    CheckInDefaults,
    CacheDefaults,
    DatabaseDefaults,
    ExportDefaults,
)
from core.exceptions import (
    ApplicationError,
    ConfigurationError,
    DatabaseError,
    RepositoryError,
    StoreError,
    NotFoundError,
    SchemaMismatchError,
    TransientStoreError,
    ServiceError,
    VerificationTimeoutError,
    ValidationError,
    ScanPayloadError,
)

# ApplicationInitializer is imported from core.app_initializer directly,
# it depends on config which itself imports core.constants.

__all__ = [
    # Logging
    'setup_logger',
    'get_logger',
    # Constants
    'EventStatus',
    'ParticipantStatus',
    'ScanType',
    'RecordState',
    'SortField',
    'SortOrder',
    'StatusUpdateDefaults',
    'CheckInDefaults',
    'CacheDefaults',
    'DatabaseDefaults',
    'ExportDefaults',
    # Exceptions
    'ApplicationError',
    'ConfigurationError',
    'DatabaseError',
    'RepositoryError',
    'StoreError',
    'NotFoundError',
    'SchemaMismatchError',
    'TransientStoreError',
    'ServiceError',
    'VerificationTimeoutError',
    'ValidationError',
    'ScanPayloadError',
]
