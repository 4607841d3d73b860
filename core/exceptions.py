"""Application-wide exception classes."""

from __future__ import annotations


class ApplicationError(Exception):
    """Base exception for all application errors."""
    pass


class ConfigurationError(ApplicationError):
    """Raised when configuration is invalid."""
    pass


class DatabaseError(ApplicationError):
    """Base exception for database-related errors."""
    pass


class RepositoryError(DatabaseError):
    """Raised when repository operation fails."""
    pass


class StoreError(DatabaseError):
    """Base exception for data store contract failures."""
    pass


class NotFoundError(StoreError):
    """Raised when an event, participant or roster entry does not exist."""

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class SchemaMismatchError(StoreError):
    """Raised when the backing store rejects a field it does not have."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class TransientStoreError(StoreError):
    """Raised when a store read or write fails for an unexpected reason."""
    pass


class ServiceError(ApplicationError):
    """Base exception for service-level errors."""
    pass


class VerificationTimeoutError(ServiceError):
    """Post-write re-read never confirmed the new state."""
    pass


class ValidationError(ApplicationError):
    """Raised when data validation fails."""
    pass


class ScanPayloadError(ValidationError):
    """Raised when a decoded QR payload cannot be parsed."""
    pass
